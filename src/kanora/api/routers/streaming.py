from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import Response
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from kanora.api.deps import get_db, get_streaming_service
from kanora.core.exceptions import (
    BitrateOutOfRange,
    FileMissing,
    TranscodeFailed,
    UnsupportedFormat,
)
from kanora.core.models import Album, Track
from kanora.services.streaming import StreamingService
from kanora.worker.catalog import CatalogStore

router = APIRouter()


async def _get_track_or_404(db: AsyncSession, track_id: int) -> Track:
    track = await db.get(Track, track_id)
    if not track:
        raise HTTPException(status_code=404, detail="Track not found")
    return track


@router.get("/tracks/{track_id}")
async def stream_track(
    track_id: int,
    range_header: Optional[str] = Header(default=None, alias="Range"),
    db: AsyncSession = Depends(get_db),
    streaming: StreamingService = Depends(get_streaming_service),
) -> Response:
    """Stream the original file, honouring HTTP byte ranges for seeking."""
    track = await _get_track_or_404(db, track_id)
    try:
        return streaming.stream_file(track, range_header)
    except FileMissing as e:
        logger.warning(f"Stream of track {track_id} failed: {e}")
        raise HTTPException(status_code=404, detail=e.message)


@router.get("/tracks/{track_id}/download")
async def download_track(
    track_id: int,
    db: AsyncSession = Depends(get_db),
    streaming: StreamingService = Depends(get_streaming_service),
) -> Response:
    track = await _get_track_or_404(db, track_id)
    try:
        return streaming.stream_file(track, as_download=True)
    except FileMissing as e:
        raise HTTPException(status_code=404, detail=e.message)


@router.get("/tracks/{track_id}/transcode")
async def transcode_track(
    track_id: int,
    format: str = "mp3",
    bitrate: int = 320,
    db: AsyncSession = Depends(get_db),
    streaming: StreamingService = Depends(get_streaming_service),
) -> Response:
    """Transcode on the fly through ffmpeg (mp3, ogg or aac; 64-320 kbps)."""
    track = await _get_track_or_404(db, track_id)
    if not await CatalogStore(db).get_transcoding_setting():
        raise HTTPException(status_code=403, detail="Transcoding is disabled")

    try:
        return await streaming.stream_transcoded(track, format, bitrate)
    except (UnsupportedFormat, BitrateOutOfRange) as e:
        raise HTTPException(status_code=400, detail=e.message)
    except FileMissing as e:
        raise HTTPException(status_code=404, detail=e.message)
    except TranscodeFailed as e:
        raise HTTPException(status_code=502, detail=e.message)


@router.get("/tracks/{track_id}/art")
async def get_album_art(
    track_id: int,
    db: AsyncSession = Depends(get_db),
    streaming: StreamingService = Depends(get_streaming_service),
) -> Response:
    track = await _get_track_or_404(db, track_id)
    album = await db.get(Album, track.album_id)
    try:
        return streaming.album_art(album)
    except FileMissing:
        raise HTTPException(status_code=404, detail="Album art not found")
