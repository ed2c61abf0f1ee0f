import os
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from loguru import logger

from kanora.api.deps import get_file_watcher, get_job_queue, get_scan_store
from kanora.api.schemas import ScanRequest, ScanRunOut, ScanStarted, WatcherStatus
from kanora.core.config import settings
from kanora.core.exceptions import QueueClosed
from kanora.core.scan_store import ScanRunStore
from kanora.worker.queue import JobQueue
from kanora.worker.watcher import FileWatcher

router = APIRouter()


def _validate_scan_paths(paths: List[str]) -> List[str]:
    """Resolve scan roots and reject the request if any is unreadable."""
    resolved = []
    for path in paths:
        full = os.path.abspath(os.path.expanduser(path))
        if not os.path.isdir(full) or not os.access(full, os.R_OK | os.X_OK):
            raise HTTPException(
                status_code=400, detail=f"Directory not readable: {path}"
            )
        resolved.append(full)
    return resolved


@router.post("/scan", status_code=202, response_model=ScanStarted)
async def start_scan(
    scan_request: Optional[ScanRequest] = None,
    queue: JobQueue = Depends(get_job_queue),
):
    """Queue a library scan. Poll /scan/{scan_id} for progress."""
    paths = scan_request.paths if scan_request and scan_request.paths else [str(settings.MUSIC_LIBRARY_PATH)]
    resolved = _validate_scan_paths(paths)
    try:
        scan_id = await queue.enqueue_scan(resolved)
    except QueueClosed as e:
        raise HTTPException(status_code=503, detail=e.message)
    logger.info(f"Scan {scan_id} queued for {resolved}")
    return ScanStarted(scan_id=scan_id, paths=resolved)


@router.get("/scan/{scan_id}", response_model=ScanRunOut)
async def get_scan_status(
    scan_id: str, store: ScanRunStore = Depends(get_scan_store)
):
    run = await store.get_run(scan_id)
    if not run:
        raise HTTPException(status_code=404, detail="Scan not found")
    return run


@router.get("/scans", response_model=List[ScanRunOut])
async def list_scans(limit: int = 20, store: ScanRunStore = Depends(get_scan_store)):
    """Most recent scan runs first."""
    return await store.list_runs(limit=max(1, min(limit, 100)))


@router.post("/inbox/watch/start", response_model=WatcherStatus)
async def start_watching(watcher: FileWatcher = Depends(get_file_watcher)):
    scan_id = await watcher.start_watching()
    return WatcherStatus(status="watching", inbox=str(watcher.inbox), scan_id=scan_id)


@router.post("/inbox/watch/stop", response_model=WatcherStatus)
async def stop_watching(watcher: FileWatcher = Depends(get_file_watcher)):
    await watcher.stop_watching()
    return WatcherStatus(status="stopped", inbox=str(watcher.inbox))
