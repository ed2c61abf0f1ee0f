from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from sqlalchemy import ForeignKey, Index, Integer, String
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class TimestampMixin:
    """Mixin to add created_at and updated_at columns for auditing."""

    created_at: Mapped[datetime] = mapped_column(
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class ScanStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Artist(Base, TimestampMixin):
    """A performer as it appears in file tags."""

    __tablename__ = "artists"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String, unique=True, index=True)
    sort_name: Mapped[str] = mapped_column(String, index=True)

    # Relationships
    albums: Mapped[List["Album"]] = relationship(back_populates="artist")


class Album(Base, TimestampMixin):
    """A release owned by exactly one Artist."""

    __tablename__ = "albums"
    __table_args__ = (
        Index("idx_album_title_artist", "title", "artist_id", unique=True),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(String, index=True)
    sort_title: Mapped[str] = mapped_column(String, index=True)
    artist_id: Mapped[int] = mapped_column(ForeignKey("artists.id"))
    year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    cover_art_path: Mapped[Optional[str]] = mapped_column(
        String, nullable=True
    )

    # Relationships
    artist: Mapped["Artist"] = relationship(back_populates="albums")
    tracks: Mapped[List["Track"]] = relationship(back_populates="album")

    @property
    def has_cover_art(self) -> bool:
        return bool(self.cover_art_path)


class Track(Base, TimestampMixin):
    """A single audio file in the catalog.

    content_hash is the deduplication key: two files with identical bytes map
    to one Track no matter where they live on disk.
    """

    __tablename__ = "tracks"
    __table_args__ = (
        Index("idx_track_album_disc_number", "album_id", "disc_number", "track_number"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(String, index=True)
    sort_title: Mapped[str] = mapped_column(String)
    album_id: Mapped[int] = mapped_column(ForeignKey("albums.id"), index=True)
    artist_id: Mapped[int] = mapped_column(ForeignKey("artists.id"), index=True)
    track_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    disc_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    duration_seconds: Mapped[int] = mapped_column(Integer, default=0)
    path: Mapped[str] = mapped_column(String, index=True)
    format: Mapped[str] = mapped_column(String)
    bitrate: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    file_size_bytes: Mapped[int] = mapped_column(Integer, default=0)
    content_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True)

    # Relationships
    album: Mapped["Album"] = relationship(back_populates="tracks")
    artist: Mapped["Artist"] = relationship()


class ScanRun(Base):
    """A pollable execution of a library scan or an inbox watch session."""

    __tablename__ = "scan_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    status: Mapped[str] = mapped_column(
        String, default=ScanStatus.PENDING.value, index=True
    )
    progress: Mapped[int] = mapped_column(Integer, default=0)
    current_file: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    total_files: Mapped[int] = mapped_column(Integer, default=0)
    processed_files: Mapped[int] = mapped_column(Integer, default=0)
    error_count: Mapped[int] = mapped_column(Integer, default=0)
    started_at: Mapped[datetime] = mapped_column(
        default=lambda: datetime.now(timezone.utc)
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)


class SystemSetting(Base, TimestampMixin):
    """Persistent storage for dynamic application settings."""

    __tablename__ = "system_settings"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(String)
    description: Mapped[Optional[str]] = mapped_column(String, nullable=True)
