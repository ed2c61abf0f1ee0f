import hashlib
from pathlib import Path
from typing import Union

from kanora.core.config import settings
from kanora.core.exceptions import FileUnreadable


def hash_file(
    file_path: Union[str, Path], chunk_size: int = settings.HASH_CHUNK_SIZE
) -> str:
    """Calculate the SHA-256 content hash of a file. Blocking I/O.

    The file is read in fixed-size chunks so large lossless files never sit
    in memory. Path and mtime do not influence the digest.

    Args:
        file_path: File to hash.
        chunk_size: Bytes per read.

    Returns:
        Lower-case hex digest (64 characters).

    Raises:
        FileUnreadable: If the file is missing or a read fails midway.
    """
    digest = hashlib.sha256()
    try:
        with open(file_path, "rb") as f:
            for chunk in iter(lambda: f.read(chunk_size), b""):
                digest.update(chunk)
    except OSError as e:
        raise FileUnreadable(str(file_path), str(e)) from e
    return digest.hexdigest()
