import sys

import pytest

from kanora.services.streaming import StreamingService
from kanora.worker.catalog import ENABLE_TRANSCODING_KEY, CatalogStore

DATA = bytes(i % 256 for i in range(1000))


@pytest.fixture
async def track_ids(session_factory, tmp_path):
    """One track on disk with cover art, one whose file has vanished."""
    audio = tmp_path / "music" / "song.mp3"
    audio.parent.mkdir()
    audio.write_bytes(DATA)
    cover = tmp_path / "music" / "cover.jpg"
    cover.write_bytes(b"\xff\xd8\xff fake jpeg")

    async with session_factory() as session:
        catalog = CatalogStore(session)
        async with catalog.transaction():
            artist = await catalog.find_or_create_artist("Artist")
            album = await catalog.find_or_create_album("Album", artist.id, None, str(cover))
            bare = await catalog.find_or_create_album("No Cover", artist.id)
            present = await catalog.insert_track(
                {
                    "title": "Song",
                    "album_id": album.id,
                    "artist_id": artist.id,
                    "duration_seconds": 1,
                    "path": str(audio),
                    "format": "mp3",
                    "file_size_bytes": len(DATA),
                    "content_hash": "1" * 64,
                }
            )
            missing = await catalog.insert_track(
                {
                    "title": "Gone",
                    "album_id": bare.id,
                    "artist_id": artist.id,
                    "duration_seconds": 1,
                    "path": str(tmp_path / "music" / "gone.flac"),
                    "format": "flac",
                    "file_size_bytes": 10,
                    "content_hash": "2" * 64,
                }
            )
    return present.id, missing.id


@pytest.mark.asyncio
async def test_range_request(client, track_ids):
    track_id, _ = track_ids
    response = await client.get(
        f"/api/v1/stream/tracks/{track_id}", headers={"Range": "bytes=100-199"}
    )
    assert response.status_code == 206
    assert response.headers["content-range"] == "bytes 100-199/1000"
    assert response.headers["content-length"] == "100"
    assert response.headers["content-type"] == "audio/mpeg"
    assert response.content == DATA[100:200]


@pytest.mark.asyncio
async def test_full_stream(client, track_ids):
    track_id, _ = track_ids
    response = await client.get(f"/api/v1/stream/tracks/{track_id}")
    assert response.status_code == 200
    assert response.headers["content-length"] == "1000"
    assert response.headers["accept-ranges"] == "bytes"
    assert response.content == DATA


@pytest.mark.asyncio
async def test_unsatisfiable_range(client, track_ids):
    track_id, _ = track_ids
    response = await client.get(
        f"/api/v1/stream/tracks/{track_id}", headers={"Range": "bytes=5000-"}
    )
    assert response.status_code == 416
    assert response.headers["content-range"] == "bytes */1000"


@pytest.mark.asyncio
async def test_missing_file_is_404(client, track_ids):
    _, missing_id = track_ids
    response = await client.get(f"/api/v1/stream/tracks/{missing_id}")
    assert response.status_code == 404
    assert "File not found" in response.json()["detail"]


@pytest.mark.asyncio
async def test_unknown_track_is_404(client):
    response = await client.get("/api/v1/stream/tracks/12345")
    assert response.status_code == 404
    assert response.json()["detail"] == "Track not found"


@pytest.mark.asyncio
async def test_download(client, track_ids):
    track_id, _ = track_ids
    response = await client.get(f"/api/v1/stream/tracks/{track_id}/download")
    assert response.status_code == 200
    assert response.headers["content-disposition"] == 'attachment; filename="song.mp3"'
    assert response.content == DATA


@pytest.mark.asyncio
async def test_transcode_validation(client, track_ids):
    track_id, _ = track_ids
    response = await client.get(
        f"/api/v1/stream/tracks/{track_id}/transcode", params={"format": "wma"}
    )
    assert response.status_code == 400
    assert "Unsupported format" in response.json()["detail"]

    response = await client.get(
        f"/api/v1/stream/tracks/{track_id}/transcode", params={"bitrate": 16}
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_transcode_streams_output(client, track_ids, monkeypatch):
    track_id, _ = track_ids

    def fake_command(self, source, muxer, codec, bitrate_kbps):
        return [sys.executable, "-c", "import sys; sys.stdout.buffer.write(b'ogg!' * 100)"]

    monkeypatch.setattr(StreamingService, "build_command", fake_command)
    response = await client.get(
        f"/api/v1/stream/tracks/{track_id}/transcode",
        params={"format": "ogg", "bitrate": 128},
    )
    assert response.status_code == 200
    assert response.headers["content-type"] == "audio/ogg"
    assert response.content == b"ogg!" * 100


@pytest.mark.asyncio
async def test_transcode_failure_is_502(client, track_ids, monkeypatch):
    track_id, _ = track_ids

    def failing_command(self, source, muxer, codec, bitrate_kbps):
        return [sys.executable, "-c", "import sys; sys.exit(3)"]

    monkeypatch.setattr(StreamingService, "build_command", failing_command)
    response = await client.get(f"/api/v1/stream/tracks/{track_id}/transcode")
    assert response.status_code == 502


@pytest.mark.asyncio
async def test_transcode_disabled_is_403(client, track_ids, session_factory):
    track_id, _ = track_ids
    async with session_factory() as session:
        await CatalogStore(session).set_setting(ENABLE_TRANSCODING_KEY, "false")
        await session.commit()

    response = await client.get(f"/api/v1/stream/tracks/{track_id}/transcode")
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_album_art(client, track_ids):
    track_id, missing_id = track_ids
    response = await client.get(f"/api/v1/stream/tracks/{track_id}/art")
    assert response.status_code == 200
    assert response.headers["content-type"] == "image/jpeg"
    assert response.headers["cache-control"] == "public, max-age=86400"
    assert response.content == b"\xff\xd8\xff fake jpeg"

    response = await client.get(f"/api/v1/stream/tracks/{missing_id}/art")
    assert response.status_code == 404
