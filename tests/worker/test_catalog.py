import pytest
from sqlalchemy import func, select

from kanora.core.exceptions import CatalogWriteFailed
from kanora.core.models import Album, Artist, Track
from kanora.worker.catalog import AUTO_ORGANIZE_KEY, CatalogStore


def _track_fields(album_id, artist_id, content_hash="a" * 64, **overrides):
    fields = {
        "title": "The Song",
        "album_id": album_id,
        "artist_id": artist_id,
        "track_number": 1,
        "disc_number": 1,
        "duration_seconds": 200,
        "path": "/music/song.mp3",
        "format": "mp3",
        "bitrate": 320000,
        "file_size_bytes": 1024,
        "content_hash": content_hash,
    }
    fields.update(overrides)
    return fields


async def _count(session, model):
    return (await session.execute(select(func.count()).select_from(model))).scalar()


class TestCatalogStore:
    async def test_find_or_create_artist_is_idempotent(self, db_session):
        catalog = CatalogStore(db_session)
        first = await catalog.find_or_create_artist("The Beatles")
        second = await catalog.find_or_create_artist("The Beatles")
        assert first.id == second.id
        assert first.sort_name == "beatles"
        assert await _count(db_session, Artist) == 1

    async def test_album_keyed_by_title_and_artist(self, db_session):
        catalog = CatalogStore(db_session)
        a1 = await catalog.find_or_create_artist("One")
        a2 = await catalog.find_or_create_artist("Two")
        album1 = await catalog.find_or_create_album("Greatest Hits", a1.id)
        album2 = await catalog.find_or_create_album("Greatest Hits", a2.id)
        again = await catalog.find_or_create_album("Greatest Hits", a1.id)
        assert album1.id != album2.id
        assert again.id == album1.id

    async def test_existing_album_gains_year_and_cover(self, db_session):
        catalog = CatalogStore(db_session)
        artist = await catalog.find_or_create_artist("Artist")
        album = await catalog.find_or_create_album("Album", artist.id)
        assert album.year is None
        again = await catalog.find_or_create_album(
            "Album", artist.id, year=2001, cover_art_path="/x/cover.jpg"
        )
        assert again.year == 2001
        assert again.cover_art_path == "/x/cover.jpg"
        kept = await catalog.find_or_create_album("Album", artist.id, year=1999)
        assert kept.year == 2001

    async def test_insert_track_and_hash_lookup(self, db_session):
        catalog = CatalogStore(db_session)
        async with catalog.transaction():
            artist = await catalog.find_or_create_artist("Artist")
            album = await catalog.find_or_create_album("Album", artist.id)
            track = await catalog.insert_track(_track_fields(album.id, artist.id))
        assert track.id is not None
        assert track.sort_title == "song"
        assert await catalog.has_content_hash("a" * 64)
        assert not await catalog.has_content_hash("b" * 64)

    async def test_update_track_path(self, db_session):
        catalog = CatalogStore(db_session)
        async with catalog.transaction():
            artist = await catalog.find_or_create_artist("Artist")
            album = await catalog.find_or_create_album("Album", artist.id)
            track = await catalog.insert_track(_track_fields(album.id, artist.id))
        async with catalog.transaction():
            await catalog.update_track_path(track.id, "/library/artist/album/song.mp3")
        path = (
            await db_session.execute(select(Track.path).where(Track.id == track.id))
        ).scalar_one()
        assert path == "/library/artist/album/song.mp3"


class TestTransactionAtomicity:
    async def test_error_rolls_back_artist_and_album(self, db_session):
        catalog = CatalogStore(db_session)
        with pytest.raises(RuntimeError):
            async with catalog.transaction():
                artist = await catalog.find_or_create_artist("Ghost")
                await catalog.find_or_create_album("Phantom", artist.id)
                raise RuntimeError("crash before track insert")

        assert await _count(db_session, Artist) == 0
        assert await _count(db_session, Album) == 0

    async def test_duplicate_hash_raises_catalog_write_failed(self, db_session):
        catalog = CatalogStore(db_session)
        async with catalog.transaction():
            artist = await catalog.find_or_create_artist("Artist")
            album = await catalog.find_or_create_album("Album", artist.id)
            await catalog.insert_track(_track_fields(album.id, artist.id))

        with pytest.raises(CatalogWriteFailed):
            async with catalog.transaction():
                other = await catalog.find_or_create_artist("Other Artist")
                other_album = await catalog.find_or_create_album("Other", other.id)
                await catalog.insert_track(
                    _track_fields(other_album.id, other.id, path="/elsewhere.mp3")
                )

        assert await _count(db_session, Track) == 1
        assert await _count(db_session, Artist) == 1
        assert await _count(db_session, Album) == 1


class TestSettings:
    async def test_defaults_when_unset(self, db_session):
        catalog = CatalogStore(db_session)
        assert await catalog.get_auto_organize_setting() is True
        assert await catalog.get_transcoding_setting() is True

    async def test_set_setting_overrides_default(self, db_session):
        catalog = CatalogStore(db_session)
        await catalog.set_setting(AUTO_ORGANIZE_KEY, "false")
        await db_session.commit()
        assert await catalog.get_auto_organize_setting() is False
        await catalog.set_setting(AUTO_ORGANIZE_KEY, "TRUE")
        assert await catalog.get_auto_organize_setting() is True
        assert await catalog.get_setting_bool("missing", default=False) is False
