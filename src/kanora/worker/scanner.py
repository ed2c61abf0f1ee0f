"""Library scanner: discovery, per-file import and auto-organize.

The scanner walks one or more root directories, and for every supported
audio file runs the import pipeline:

    hash -> dedupe check -> metadata -> catalog upsert -> optional reorganize

Files are processed strictly one at a time. Per-file failures are logged and
counted on the ScanRun; they never abort the run.

Typical usage example:
    scanner = LibraryScanner(ScanRunStore(AsyncSessionLocal))
    stats = await scanner.scan_library(run.id, ["/srv/music"])
    print(f"Created: {stats.created}, Errors: {stats.errors}")
"""

import asyncio
import math
import os
import shutil
from pathlib import Path
from typing import Iterable, List, Optional, Union

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kanora.core.db import AsyncSessionLocal
from kanora.core.exceptions import (
    CatalogWriteFailed,
    FileUnreadable,
    KanoraError,
    OrganizeMoveFailed,
)
from kanora.core.models import Album, Artist, Track
from kanora.core.scan_store import ScanRunStore
from kanora.core.scanner_config import ScannerConfig
from kanora.core.stats import ScanStats
from kanora.core.utils import generate_sort_name, sanitize_folder_name
from kanora.worker.catalog import CatalogStore
from kanora.worker.hasher import hash_file
from kanora.worker.metadata import extract_metadata

COVER_ART_NAMES = (
    "cover.jpg",
    "folder.jpg",
    "front.jpg",
    "cover.png",
    "folder.png",
)


class LibraryScanner:
    """Recursive audio file scanner with content-hash deduplication.

    Attributes:
        scan_store: Where ScanRun progress is written.
        session_factory: Opens one catalog session per imported file.
        config: ScannerConfig instance (library root, hash chunk size, ...).
    """

    def __init__(
        self,
        scan_store: ScanRunStore,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        config: Optional[ScannerConfig] = None,
    ):
        self.scan_store = scan_store
        self.session_factory = session_factory or AsyncSessionLocal
        self.config = config or ScannerConfig()

    # ========== Discovery ==========

    def is_supported(self, file_path: Union[str, Path]) -> bool:
        return Path(file_path).suffix.lower() in self.config.supported_extensions

    def _is_hidden(self, name: str) -> bool:
        return self.config.skip_hidden and name.startswith(".")

    def _collect_audio_files(self, directory: Path, files: List[Path]) -> None:
        """Blocking recursive walk. Raises FileUnreadable for the root itself."""
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            raise FileUnreadable(str(directory), str(e)) from e

        for entry in entries:
            if self._is_hidden(entry.name):
                continue
            try:
                if entry.is_dir(follow_symlinks=False):
                    self._collect_audio_files(Path(entry.path), files)
                elif entry.is_file() and self.is_supported(entry.name):
                    files.append(Path(entry.path))
            except FileUnreadable as e:
                # Unreadable subdirectories are skipped, only the roots are fatal
                logger.warning(f"Skipping directory: {e}")

    async def discover(self, directories: Iterable[Union[str, Path]]) -> List[Path]:
        """Collect supported audio files under every root, in a stable order."""
        loop = asyncio.get_running_loop()
        files: List[Path] = []
        for directory in directories:
            root = Path(directory)
            if not root.is_dir():
                raise FileUnreadable(str(root), "not a directory")
            await loop.run_in_executor(None, self._collect_audio_files, root, files)
        return files

    # ========== Scan ==========

    async def scan_library(
        self, scan_run_id: str, directories: Iterable[Union[str, Path]]
    ) -> ScanStats:
        """Scan directories and import every supported file.

        Returns:
            ScanStats with the per-run breakdown.

        Raises:
            FileUnreadable: A scan root is missing or unreadable. Per-file
                errors never propagate.
        """
        directories = [str(d) for d in directories]
        logger.info(f"Scan {scan_run_id}: discovering files in {directories}")
        files = await self.discover(directories)

        stats = ScanStats(total=len(files))
        await self.scan_store.update_run(
            scan_run_id,
            total_files=stats.total,
            processed_files=0,
            error_count=0,
            progress=0,
        )
        logger.info(f"Scan {scan_run_id}: {stats.total} audio files found")

        for index, file_path in enumerate(files):
            await self.scan_store.update_run(
                scan_run_id,
                current_file=file_path.name,
                progress=math.floor(index / stats.total * 100),
            )
            try:
                track = await self.import_file(scan_run_id, file_path)
            except Exception as e:
                self._handle_file_error(file_path, e, stats)
                await self.scan_store.update_run(
                    scan_run_id, error_count=stats.errors
                )
                continue

            stats.processed += 1
            if track is None:
                stats.skipped += 1
            else:
                stats.created += 1
                if track.path != os.path.abspath(file_path):
                    stats.organized += 1
            await self.scan_store.update_run(
                scan_run_id, processed_files=stats.processed
            )

        await self.scan_store.update_run(
            scan_run_id,
            progress=100,
            current_file=None,
            processed_files=stats.processed,
            error_count=stats.errors,
        )
        logger.success(f"Scan {scan_run_id} finished: {stats}")
        return stats

    def _handle_file_error(
        self, file_path: Path, error: Exception, stats: ScanStats
    ) -> None:
        """Centralized error handling for file processing."""
        if isinstance(error, OrganizeMoveFailed):
            logger.warning(f"Imported but not organized {file_path}: {error}")
        elif isinstance(error, KanoraError):
            logger.warning(f"Failed to import {file_path}: {error}")
        else:
            logger.opt(exception=error).error(
                f"Unexpected error importing {file_path}: "
                f"{type(error).__name__}: {error}"
            )
        stats.errors += 1

    # ========== Import ==========

    async def import_file(
        self, scan_run_id: Optional[str], file_path: Union[str, Path]
    ) -> Optional[Track]:
        """Import one audio file into the catalog.

        Returns:
            The new Track, or None when the content hash is already cataloged
            (the file is left where it is).

        Raises:
            FileUnreadable, MetadataUnreadable, CatalogWriteFailed,
            OrganizeMoveFailed.
        """
        loop = asyncio.get_running_loop()
        source = Path(os.path.abspath(file_path))

        content_hash = await loop.run_in_executor(
            None, hash_file, source, self.config.hash_chunk_size
        )

        async with self.session_factory() as session:
            catalog = CatalogStore(session)
            if await catalog.has_content_hash(content_hash):
                logger.info(f"Skipping duplicate file: {source}")
                return None

            metadata = await loop.run_in_executor(None, extract_metadata, source)
            try:
                file_size = source.stat().st_size
            except OSError as e:
                raise FileUnreadable(str(source), str(e)) from e
            cover_art = await loop.run_in_executor(
                None, self._find_cover_art, source.parent
            )

            async with catalog.transaction():
                artist = await catalog.find_or_create_artist(metadata.artist)
                album = await catalog.find_or_create_album(
                    metadata.album, artist.id, metadata.year, cover_art
                )
                track = await catalog.insert_track(
                    {
                        "title": metadata.title,
                        "album_id": album.id,
                        "artist_id": artist.id,
                        "track_number": metadata.track_number,
                        "disc_number": metadata.disc_number,
                        "duration_seconds": metadata.duration_seconds,
                        "path": str(source),
                        "format": metadata.format,
                        "bitrate": metadata.bitrate,
                        "file_size_bytes": file_size,
                        "content_hash": content_hash,
                    }
                )
            logger.info(
                f"[{scan_run_id or '-'}] Imported '{track.title}' by "
                f"'{artist.name}' ({source.name})"
            )

            if await catalog.get_auto_organize_setting():
                await self._organize(catalog, track, artist, album, source)

        return track

    def _find_cover_art(self, directory: Path) -> Optional[str]:
        for name in COVER_ART_NAMES:
            candidate = directory / name
            if candidate.is_file():
                return str(candidate)
        return None

    def organized_path(self, artist: Artist, album: Album, source: Path) -> Path:
        """Canonical {library_root}/{artist}/{album}/{filename} location."""
        artist_dir = sanitize_folder_name(
            artist.sort_name or generate_sort_name(artist.name)
        )
        album_dir = sanitize_folder_name(
            album.sort_title or generate_sort_name(album.title)
        )
        return Path(self.config.library_root) / artist_dir / album_dir / source.name

    def _move_file(self, source: Path, destination: Path) -> None:
        """Blocking move that never overwrites an existing destination."""
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            if destination.exists():
                raise OrganizeMoveFailed(
                    str(source), str(destination), "destination already exists"
                )
            shutil.move(str(source), str(destination))
        except OSError as e:
            raise OrganizeMoveFailed(str(source), str(destination), str(e)) from e

    async def _organize(
        self,
        catalog: CatalogStore,
        track: Track,
        artist: Artist,
        album: Album,
        source: Path,
    ) -> None:
        """Move an imported file into the library layout and repoint the track.

        The committed catalog row stands even when the move fails.
        """
        destination = self.organized_path(artist, album, source)
        if destination == source:
            return

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._move_file, source, destination)

        try:
            async with catalog.transaction():
                await catalog.update_track_path(track.id, str(destination))
        except CatalogWriteFailed:
            # Put the file back so the stored path stays valid
            await loop.run_in_executor(None, shutil.move, str(destination), str(source))
            raise
        track.path = str(destination)
        logger.info(f"Organized {source.name} -> {destination}")
