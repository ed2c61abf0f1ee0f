import pytest
from mutagen.id3 import TALB, TDRC, TIT2, TPE1, TPE2, TPOS, TRCK
from mutagen.wave import WAVE

from kanora.core.exceptions import FileUnreadable, MetadataUnreadable
from kanora.worker.metadata import (
    UNKNOWN_ALBUM,
    UNKNOWN_ARTIST,
    extract_metadata,
    parse_position,
    parse_year,
)


def _tag_wav(path, **frames):
    audio = WAVE(path)
    audio.add_tags()
    for frame in frames.values():
        audio.tags.add(frame)
    audio.save()


class TestParsers:
    @pytest.mark.parametrize(
        "value, expected",
        [("3", 3), ("03", 3), ("3/12", 3), (" 7 / 9", 7), ("0", None), ("x", None), (None, None)],
    )
    def test_parse_position(self, value, expected):
        assert parse_position(value) == expected

    @pytest.mark.parametrize(
        "value, expected",
        [("2003", 2003), ("2003-05-01", 2003), ("May 1999", 1999), ("", None), ("n/a", None)],
    )
    def test_parse_year(self, value, expected):
        assert parse_year(value) == expected


class TestExtractMetadata:
    def test_untagged_file_uses_defaults(self, tmp_path, make_wav):
        path = make_wav(tmp_path / "My Song.wav")
        meta = extract_metadata(path)
        assert meta.title == "My Song"
        assert meta.artist == UNKNOWN_ARTIST
        assert meta.album == UNKNOWN_ALBUM
        assert meta.year is None
        assert meta.track_number is None
        assert meta.format == "wav"
        assert meta.duration_seconds == 0

    def test_duration_is_floored(self, tmp_path, make_wav):
        # 8000 Hz mono, 12000 frames -> 1.5 s
        path = make_wav(tmp_path / "long.wav", frames=12000)
        assert extract_metadata(path).duration_seconds == 1

    def test_tagged_file(self, tmp_path, make_wav):
        path = make_wav(tmp_path / "tagged.wav")
        _tag_wav(
            path,
            title=TIT2(encoding=3, text="Paranoid Android"),
            artist=TPE1(encoding=3, text="Radiohead"),
            album=TALB(encoding=3, text="OK Computer"),
            track=TRCK(encoding=3, text="2/12"),
            disc=TPOS(encoding=3, text="1/1"),
            date=TDRC(encoding=3, text="1997"),
        )
        meta = extract_metadata(path)
        assert meta.title == "Paranoid Android"
        assert meta.artist == "Radiohead"
        assert meta.album == "OK Computer"
        assert meta.track_number == 2
        assert meta.disc_number == 1
        assert meta.year == 1997

    def test_album_artist_fallback(self, tmp_path, make_wav):
        path = make_wav(tmp_path / "va.wav")
        _tag_wav(path, albumartist=TPE2(encoding=3, text="Various Artists"))
        meta = extract_metadata(path)
        assert meta.artist == "Various Artists"
        assert meta.title == "va"

    def test_corrupt_file_raises(self, tmp_path):
        path = tmp_path / "bad.mp3"
        path.write_bytes(b"this is not an mp3 file " * 200)
        with pytest.raises(MetadataUnreadable) as exc_info:
            extract_metadata(path)
        assert exc_info.value.retryable is False

    def test_unknown_container_raises(self, tmp_path):
        path = tmp_path / "notes.flac"
        path.write_bytes(b"plain text")
        with pytest.raises(MetadataUnreadable):
            extract_metadata(path)

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileUnreadable):
            extract_metadata(tmp_path / "gone.wav")
