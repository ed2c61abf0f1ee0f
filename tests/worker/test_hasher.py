import hashlib

import pytest

from kanora.core.exceptions import FileUnreadable
from kanora.worker.hasher import hash_file


def test_hash_matches_sha256(tmp_path):
    data = b"kanora" * 10000
    f = tmp_path / "a.bin"
    f.write_bytes(data)
    assert hash_file(f) == hashlib.sha256(data).hexdigest()


def test_hash_independent_of_chunk_size(tmp_path):
    f = tmp_path / "a.bin"
    f.write_bytes(bytes(range(256)) * 300)
    assert hash_file(f, chunk_size=7) == hash_file(f, chunk_size=65536)


def test_hash_ignores_path(tmp_path):
    a = tmp_path / "one" / "a.mp3"
    b = tmp_path / "two" / "renamed.flac"
    a.parent.mkdir()
    b.parent.mkdir()
    a.write_bytes(b"same bytes")
    b.write_bytes(b"same bytes")
    assert hash_file(a) == hash_file(b)


def test_empty_file(tmp_path):
    f = tmp_path / "empty"
    f.write_bytes(b"")
    assert hash_file(f) == hashlib.sha256(b"").hexdigest()


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileUnreadable) as exc_info:
        hash_file(tmp_path / "nope.mp3")
    assert "nope.mp3" in exc_info.value.message
    assert exc_info.value.retryable is True
