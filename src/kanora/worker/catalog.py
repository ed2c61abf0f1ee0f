"""Catalog store adapter used by the library scanner.

All writes for a single imported file happen inside one `transaction()`
block: the artist, album and track either all land or none of them do.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from kanora.core.config import settings
from kanora.core.exceptions import CatalogWriteFailed
from kanora.core.models import Album, Artist, SystemSetting, Track
from kanora.core.utils import generate_sort_name

AUTO_ORGANIZE_KEY = "auto_organize"
ENABLE_TRANSCODING_KEY = "enable_transcoding"

_TRUE_VALUES = {"1", "true", "yes", "on"}


class CatalogStore:
    """Find-or-create and insert operations over one AsyncSession."""

    def __init__(self, session: AsyncSession):
        self.session = session

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["CatalogStore"]:
        """Commit on success; roll back and raise CatalogWriteFailed otherwise."""
        try:
            yield self
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.warning(f"Catalog transaction rolled back: {e}")
            raise CatalogWriteFailed(f"Catalog write failed: {e}") from e
        except BaseException:
            await self.session.rollback()
            raise

    async def has_content_hash(self, content_hash: str) -> bool:
        stmt = select(Track.id).where(Track.content_hash == content_hash).limit(1)
        res = await self.session.execute(stmt)
        return res.scalar_one_or_none() is not None

    async def find_or_create_artist(self, name: str) -> Artist:
        """Get or create an artist by exact display name."""
        stmt = select(Artist).where(Artist.name == name)
        res = await self.session.execute(stmt)
        artist = res.scalar_one_or_none()

        if not artist:
            artist = Artist(name=name, sort_name=generate_sort_name(name))
            self.session.add(artist)
            await self.session.flush()

        return artist

    async def find_or_create_album(
        self,
        title: str,
        artist_id: int,
        year: Optional[int] = None,
        cover_art_path: Optional[str] = None,
    ) -> Album:
        """Get or create an album keyed by (title, artist_id).

        An existing album gains a year or cover path it did not have yet.
        """
        stmt = select(Album).where(
            Album.title == title, Album.artist_id == artist_id
        )
        res = await self.session.execute(stmt)
        album = res.scalar_one_or_none()

        if not album:
            album = Album(
                title=title,
                sort_title=generate_sort_name(title),
                artist_id=artist_id,
                year=year,
                cover_art_path=cover_art_path,
            )
            self.session.add(album)
            await self.session.flush()
        else:
            if year and not album.year:
                album.year = year
            if cover_art_path and not album.cover_art_path:
                album.cover_art_path = cover_art_path

        return album

    async def insert_track(self, fields: Dict[str, Any]) -> Track:
        """Insert a Track row. sort_title is derived when not supplied."""
        values = dict(fields)
        values.setdefault("sort_title", generate_sort_name(values["title"]))
        track = Track(**values)
        self.session.add(track)
        await self.session.flush()
        return track

    async def update_track_path(self, track_id: int, path: str) -> None:
        await self.session.execute(
            update(Track).where(Track.id == track_id).values(path=path)
        )

    async def get_setting_bool(self, key: str, default: bool) -> bool:
        """Read a boolean system setting, falling back to `default`."""
        setting = await self.session.get(SystemSetting, key)
        if setting is None:
            return default
        return setting.value.strip().lower() in _TRUE_VALUES

    async def get_auto_organize_setting(self) -> bool:
        return await self.get_setting_bool(AUTO_ORGANIZE_KEY, settings.AUTO_ORGANIZE)

    async def get_transcoding_setting(self) -> bool:
        return await self.get_setting_bool(
            ENABLE_TRANSCODING_KEY, settings.ENABLE_TRANSCODING
        )

    async def set_setting(
        self, key: str, value: str, description: Optional[str] = None
    ) -> SystemSetting:
        """Upsert a system setting (caller commits)."""
        setting = await self.session.get(SystemSetting, key)
        if setting is None:
            setting = SystemSetting(key=key, value=value, description=description)
            self.session.add(setting)
        else:
            setting.value = value
            if description is not None:
                setting.description = description
        await self.session.flush()
        return setting
