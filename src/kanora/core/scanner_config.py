"""Configuration for scanner behavior."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, Optional

from kanora.core.config import settings

SUPPORTED_EXTENSIONS: FrozenSet[str] = frozenset(
    {".mp3", ".flac", ".m4a", ".ogg", ".wav"}
)


@dataclass
class ScannerConfig:
    """Configuration for LibraryScanner behavior.

    Attributes:
        library_root: Destination root for auto-organized files
            (default: settings.MUSIC_LIBRARY_PATH).
        hash_chunk_size: Bytes read per chunk while hashing (default: 64 KiB).
        skip_hidden: Ignore dot-prefixed files and directories (default: True).
        supported_extensions: Lower-cased extensions (with dot) to import.

    Example:
        >>> config = ScannerConfig(library_root=Path("/srv/music"))
        >>> scanner = LibraryScanner(scan_store, config=config)
    """

    library_root: Optional[Path] = None
    hash_chunk_size: int = settings.HASH_CHUNK_SIZE
    skip_hidden: bool = True
    supported_extensions: FrozenSet[str] = field(
        default_factory=lambda: SUPPORTED_EXTENSIONS
    )

    def __post_init__(self):
        """Validate configuration values and set computed defaults.

        Raises:
            ValueError: If any configuration value is invalid.
        """
        if self.library_root is None:
            self.library_root = settings.MUSIC_LIBRARY_PATH
        self.library_root = Path(self.library_root)
        if self.hash_chunk_size < 1:
            raise ValueError("hash_chunk_size must be >= 1")
        if not self.supported_extensions:
            raise ValueError("supported_extensions must not be empty")
        self.supported_extensions = frozenset(
            ext.lower() for ext in self.supported_extensions
        )
