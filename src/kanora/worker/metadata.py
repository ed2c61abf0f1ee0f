"""Audio metadata extraction built on Mutagen.

Tags are read through Mutagen's "easy" interfaces (EasyID3, EasyMP4, Vorbis
comments). Containers without an easy wrapper, such as WAV with an embedded
ID3 chunk, expose raw ID3 frames, so every field also lists its ID3 frame id.
"""

import math
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

import mutagen
from loguru import logger

from kanora.core.exceptions import FileUnreadable, MetadataUnreadable

UNKNOWN_ARTIST = "Unknown Artist"
UNKNOWN_ALBUM = "Unknown Album"

_TAG_KEYS = {
    "title": ("title", "TIT2"),
    "artist": ("artist", "TPE1"),
    "albumartist": ("albumartist", "TPE2"),
    "album": ("album", "TALB"),
    "tracknumber": ("tracknumber", "TRCK"),
    "discnumber": ("discnumber", "TPOS"),
    "date": ("date", "TDRC", "TYER"),
}

_LEADING_INT = re.compile(r"^\s*(\d+)")
_YEAR = re.compile(r"(\d{4})")


@dataclass
class AudioMetadata:
    """Normalized tag and stream information for one audio file."""

    title: str
    artist: str
    album: str
    year: Optional[int]
    track_number: Optional[int]
    disc_number: Optional[int]
    duration_seconds: int
    bitrate: Optional[int]
    format: str


def _first_tag(tags: Any, name: str) -> Optional[str]:
    """First non-empty value of a logical tag, or None."""
    if not tags:
        return None
    for key in _TAG_KEYS[name]:
        try:
            value = tags.get(key)
        except (KeyError, ValueError):
            continue
        if value is None:
            continue
        # Raw ID3 frames keep their values in .text
        if hasattr(value, "text"):
            value = value.text
        if isinstance(value, (list, tuple)):
            value = value[0] if value else None
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def parse_position(value: Optional[str]) -> Optional[int]:
    """Parses "3", "03" or "3/12" into 3; anything else into None."""
    if not value:
        return None
    match = _LEADING_INT.match(value)
    if not match:
        return None
    number = int(match.group(1))
    return number if number > 0 else None


def parse_year(value: Optional[str]) -> Optional[int]:
    """Extracts the year from "2003", "2003-05-01" and similar date tags."""
    if not value:
        return None
    match = _YEAR.search(value)
    return int(match.group(1)) if match else None


def extract_metadata(file_path: Union[str, Path]) -> AudioMetadata:
    """Blocking metadata extraction to be run in a thread.

    Absent or malformed tags fall back to defaults: the file stem for the
    title, "Unknown Artist" and "Unknown Album".

    Raises:
        FileUnreadable: The file is gone.
        MetadataUnreadable: Mutagen cannot parse the container at all.
    """
    path = Path(file_path)
    if not os.path.exists(path):
        raise FileUnreadable(str(path), "file does not exist")

    try:
        audio = mutagen.File(path, easy=True)
    except Exception as e:
        logger.debug(f"Mutagen failed on {path}: {type(e).__name__}: {e}")
        raise MetadataUnreadable(str(path), str(e)) from e

    if audio is None:
        raise MetadataUnreadable(str(path), "unrecognized container")

    tags = getattr(audio, "tags", None)
    info = getattr(audio, "info", None)

    title = _first_tag(tags, "title") or path.stem
    artist = (
        _first_tag(tags, "artist")
        or _first_tag(tags, "albumartist")
        or UNKNOWN_ARTIST
    )
    album = _first_tag(tags, "album") or UNKNOWN_ALBUM

    length = getattr(info, "length", None) if info else None
    duration = int(math.floor(length)) if length and length > 0 else 0
    bitrate = getattr(info, "bitrate", None) if info else None

    return AudioMetadata(
        title=title,
        artist=artist,
        album=album,
        year=parse_year(_first_tag(tags, "date")),
        track_number=parse_position(_first_tag(tags, "tracknumber")),
        disc_number=parse_position(_first_tag(tags, "discnumber")),
        duration_seconds=duration,
        bitrate=int(bitrate) if bitrate else None,
        format=path.suffix.lower().lstrip("."),
    )
