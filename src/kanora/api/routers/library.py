from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from kanora.api.deps import get_db
from kanora.api.schemas import (
    AlbumDetail,
    AlbumOut,
    ArtistDetail,
    ArtistOut,
    TrackOut,
)
from kanora.core.models import Album, Artist, Track

router = APIRouter()


@router.get("/artists", response_model=List[ArtistOut])
async def list_artists(
    skip: int = 0,
    limit: int = 100,
    q: Optional[str] = None,
    order: str = "asc",
    db: AsyncSession = Depends(get_db),
):
    """List artists ordered by sort name."""
    if order not in ("asc", "desc"):
        raise HTTPException(status_code=400, detail="order must be 'asc' or 'desc'")

    stmt = select(Artist)
    if q:
        stmt = stmt.where(Artist.name.ilike(f"%{q}%"))
    sort_col = Artist.sort_name.desc() if order == "desc" else Artist.sort_name.asc()
    stmt = stmt.order_by(sort_col).offset(skip).limit(limit)

    result = await db.execute(stmt)
    return result.scalars().all()


@router.get("/artists/{artist_id}", response_model=ArtistDetail)
async def get_artist(artist_id: int, db: AsyncSession = Depends(get_db)):
    stmt = (
        select(Artist)
        .options(selectinload(Artist.albums))
        .where(Artist.id == artist_id)
    )
    result = await db.execute(stmt)
    artist = result.scalar_one_or_none()
    if not artist:
        raise HTTPException(status_code=404, detail="Artist not found")

    albums = sorted(artist.albums, key=lambda a: (a.year or 0, a.sort_title))
    return ArtistDetail(
        id=artist.id,
        name=artist.name,
        sort_name=artist.sort_name,
        albums=[AlbumOut.model_validate(a) for a in albums],
    )


@router.get("/albums", response_model=List[AlbumOut])
async def list_albums(
    artist_id: Optional[int] = None,
    skip: int = 0,
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
):
    stmt = select(Album)
    if artist_id is not None:
        stmt = stmt.where(Album.artist_id == artist_id)
    stmt = stmt.order_by(Album.sort_title).offset(skip).limit(limit)
    result = await db.execute(stmt)
    return result.scalars().all()


@router.get("/albums/{album_id}", response_model=AlbumDetail)
async def get_album(album_id: int, db: AsyncSession = Depends(get_db)):
    """Album with its artist and tracks in disc/track order."""
    stmt = (
        select(Album)
        .options(selectinload(Album.artist), selectinload(Album.tracks))
        .where(Album.id == album_id)
    )
    result = await db.execute(stmt)
    album = result.scalar_one_or_none()
    if not album:
        raise HTTPException(status_code=404, detail="Album not found")

    tracks = sorted(
        album.tracks,
        key=lambda t: (t.disc_number or 1, t.track_number or 0, t.sort_title),
    )
    return AlbumDetail(
        id=album.id,
        title=album.title,
        sort_title=album.sort_title,
        artist_id=album.artist_id,
        year=album.year,
        has_cover_art=album.has_cover_art,
        artist=ArtistOut.model_validate(album.artist),
        tracks=[TrackOut.model_validate(t) for t in tracks],
    )


@router.get("/tracks", response_model=List[TrackOut])
async def list_tracks(
    album_id: Optional[int] = None,
    artist_id: Optional[int] = None,
    skip: int = 0,
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
):
    stmt = select(Track)
    if album_id is not None:
        stmt = stmt.where(Track.album_id == album_id)
    if artist_id is not None:
        stmt = stmt.where(Track.artist_id == artist_id)
    stmt = (
        stmt.order_by(
            Track.album_id, Track.disc_number, Track.track_number, Track.sort_title
        )
        .offset(skip)
        .limit(limit)
    )
    result = await db.execute(stmt)
    return result.scalars().all()


@router.get("/tracks/{track_id}", response_model=TrackOut)
async def get_track(track_id: int, db: AsyncSession = Depends(get_db)):
    track = await db.get(Track, track_id)
    if not track:
        raise HTTPException(status_code=404, detail="Track not found")
    return track
