"""Inbox folder watcher.

Monitors the inbox directory with watchdog and turns newly delivered audio
files into ImportFile jobs. Filesystem events are handed from the observer
thread to the event loop through a bounded asyncio.Queue; a debounce task
drains that queue and only submits files once the inbox has been quiet for
`debounce_seconds`, so network copies and archive extraction (many events per
file) become one import wave.
"""

import asyncio
from pathlib import Path
from typing import Callable, Optional, Set, Union

from loguru import logger
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from kanora.core.config import settings
from kanora.core.exceptions import QueueClosed
from kanora.core.models import ScanStatus
from kanora.core.scan_store import ScanRunStore
from kanora.core.scanner_config import SUPPORTED_EXTENSIONS
from kanora.worker.queue import JobQueue


class InboxEventHandler(FileSystemEventHandler):
    """Forwards file events from the observer thread to the watcher."""

    def __init__(self, watcher: "FileWatcher"):
        self.watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher.notify_threadsafe(event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        # Writes in progress re-arm the debounce timer
        if not event.is_directory:
            self.watcher.notify_threadsafe(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher.notify_threadsafe(event.dest_path)


class FileWatcher:
    """Watches an inbox directory and queues debounced import jobs.

    Attributes:
        inbox: Directory being watched.
        queue: JobQueue receiving ImportFile jobs.
        scan_store: Persists the watcher's ScanRun.
        debounce_seconds: Quiet period required before a batch is submitted.
        active_scan_id: ScanRun that imports are filed under while watching.
        batches_submitted: Number of import waves submitted so far.
    """

    def __init__(
        self,
        inbox: Union[str, Path],
        queue: JobQueue,
        scan_store: ScanRunStore,
        debounce_seconds: float = settings.WATCH_DEBOUNCE_SECONDS,
        event_buffer: int = settings.WATCH_EVENT_BUFFER,
        observer_factory: Callable[[], Observer] = Observer,
    ):
        self.inbox = Path(inbox)
        self.queue = queue
        self.scan_store = scan_store
        self.debounce_seconds = debounce_seconds
        self.event_buffer = event_buffer
        self.observer_factory = observer_factory

        self.active_scan_id: Optional[str] = None
        self.batches_submitted = 0
        self.pending_files: Set[str] = set()

        self._events: Optional[asyncio.Queue] = None
        self._debounce_task: Optional[asyncio.Task] = None
        self._observer: Optional[Observer] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def is_active(self) -> bool:
        return self._debounce_task is not None

    def should_import(self, file_path: Union[str, Path]) -> bool:
        """Supported audio file outside any dot-prefixed file or folder."""
        path = Path(file_path)
        if path.suffix.lower() not in SUPPORTED_EXTENSIONS:
            return False
        try:
            parts = path.relative_to(self.inbox).parts
        except ValueError:
            parts = (path.name,)
        return not any(part.startswith(".") for part in parts)

    # ========== Lifecycle ==========

    async def start_watching(self) -> str:
        """Start watching the inbox.

        Returns:
            The active ScanRun id (created on first start, reused after).
        """
        if self.is_active:
            return self.active_scan_id

        self.inbox.mkdir(parents=True, exist_ok=True)
        await self._ensure_scan_run()

        self._loop = asyncio.get_running_loop()
        self._events = asyncio.Queue(maxsize=self.event_buffer)
        self._debounce_task = asyncio.create_task(
            self._debounce_loop(), name="kanora-inbox-debounce"
        )

        try:
            self._observer = self.observer_factory()
            self._observer.schedule(
                InboxEventHandler(self), str(self.inbox), recursive=True
            )
            self._observer.start()
        except Exception:
            logger.exception(f"Could not watch {self.inbox}")
            self._observer = None
            await self._cancel_debounce()
            await self.scan_store.mark_failed(self.active_scan_id)
            self.active_scan_id = None
            raise

        logger.info(f"Started watching {self.inbox} for new music files")
        return self.active_scan_id

    async def stop_watching(self) -> None:
        """Stop the observer and debounce task, then complete the ScanRun.

        Files still waiting out the debounce window are discarded; a later
        scan of the inbox picks them up. Imports already queued keep the run
        Processing until they finish.
        """
        if not self.is_active:
            return

        if self._observer is not None:
            self._observer.stop()
            await asyncio.get_running_loop().run_in_executor(None, self._observer.join)
            self._observer = None

        await self._cancel_debounce()

        if self.pending_files:
            logger.warning(
                f"Discarding {len(self.pending_files)} pending inbox files on stop"
            )
            self.pending_files.clear()

        if self.active_scan_id:
            await self.queue.complete_run_when_drained(self.active_scan_id)
            self.active_scan_id = None

        logger.info("Stopped watching for new music files")

    async def _cancel_debounce(self) -> None:
        self._debounce_task.cancel()
        try:
            await self._debounce_task
        except asyncio.CancelledError:
            pass
        self._debounce_task = None
        self._events = None

    # ========== Events ==========

    def notify_threadsafe(self, file_path: str) -> None:
        """Called from the observer thread for every file event."""
        if self._loop is None or not self.should_import(file_path):
            return
        asyncio.run_coroutine_threadsafe(self.add_event(file_path), self._loop)

    async def add_event(self, file_path: Union[str, Path]) -> bool:
        """Feed one file-add event into the debounce window.

        Returns:
            True if the event was accepted.
        """
        if self._events is None or not self.should_import(file_path):
            return False
        await self._events.put(str(file_path))
        return True

    async def _debounce_loop(self) -> None:
        while True:
            first = await self._events.get()
            self.pending_files.add(first)
            while True:
                try:
                    path = await asyncio.wait_for(
                        self._events.get(), timeout=self.debounce_seconds
                    )
                except asyncio.TimeoutError:
                    break
                self.pending_files.add(path)
            try:
                await self._flush_pending()
            except QueueClosed:
                logger.error("Job queue closed; inbox files were not queued")
                self.pending_files.clear()
            except Exception:
                logger.exception("Failed to queue inbox files")
                self.pending_files.clear()

    async def _flush_pending(self) -> None:
        """Submit every pending file still on disk as an ImportFile job."""
        batch = sorted(p for p in self.pending_files if Path(p).is_file())
        self.pending_files.clear()
        if not batch:
            return

        scan_id = await self._ensure_scan_run()
        # Raise the total first so processed never exceeds it
        await self.scan_store.increment(scan_id, total=len(batch))
        for index, file_path in enumerate(batch):
            try:
                await self.queue.enqueue_file_import(scan_id, file_path)
            except QueueClosed:
                await self.scan_store.increment(scan_id, total=index - len(batch))
                raise
        self.batches_submitted += 1
        logger.info(f"Queued {len(batch)} files for import")

    async def _ensure_scan_run(self) -> str:
        if not self.active_scan_id:
            run = await self.scan_store.create_run(ScanStatus.PROCESSING)
            self.active_scan_id = run.id
        return self.active_scan_id
