"""Kanora: music library ingestion pipeline and streaming API."""

__version__ = "0.1.0"
