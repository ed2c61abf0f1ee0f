from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class ScanRequest(BaseModel):
    """Manual scan request; no paths means the configured library root."""
    paths: Optional[List[str]] = None


class ScanStarted(BaseModel):
    scan_id: str
    paths: List[str]


class ScanRunOut(BaseModel):
    """Pollable progress of a scan or inbox watch session."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    status: str
    progress: int
    current_file: Optional[str] = None
    total_files: int
    processed_files: int
    error_count: int
    started_at: datetime
    completed_at: Optional[datetime] = None


class WatcherStatus(BaseModel):
    status: str
    inbox: str
    scan_id: Optional[str] = None


class ArtistOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    sort_name: str


class AlbumOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    sort_title: str
    artist_id: int
    year: Optional[int] = None
    has_cover_art: bool = False


class TrackOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    album_id: int
    artist_id: int
    track_number: Optional[int] = None
    disc_number: Optional[int] = None
    duration_seconds: int
    format: str
    bitrate: Optional[int] = None
    file_size_bytes: int


class ArtistDetail(ArtistOut):
    albums: List[AlbumOut]


class AlbumDetail(AlbumOut):
    artist: ArtistOut
    tracks: List[TrackOut]


class LibrarySettings(BaseModel):
    auto_organize: bool
    enable_transcoding: bool


class LibrarySettingsUpdate(BaseModel):
    auto_organize: Optional[bool] = None
    enable_transcoding: Optional[bool] = None
