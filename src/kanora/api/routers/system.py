from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from kanora import __version__
from kanora.api.deps import get_db, get_file_watcher, get_job_queue
from kanora.api.schemas import LibrarySettings, LibrarySettingsUpdate
from kanora.worker.catalog import (
    AUTO_ORGANIZE_KEY,
    ENABLE_TRANSCODING_KEY,
    CatalogStore,
)
from kanora.worker.queue import JobQueue
from kanora.worker.watcher import FileWatcher

router = APIRouter()


@router.get("/health")
async def health_check(
    db: AsyncSession = Depends(get_db),
    queue: JobQueue = Depends(get_job_queue),
    watcher: FileWatcher = Depends(get_file_watcher),
):
    """Check system health, DB connection and pipeline state."""
    try:
        await db.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception as e:
        db_status = f"disconnected: {str(e)}"

    return {
        "status": "ok",
        "database": db_status,
        "version": __version__,
        "queue": {"pending": queue.pending_count, "closed": queue.closed},
        "watcher": {"active": watcher.is_active, "scan_id": watcher.active_scan_id},
    }


async def _read_settings(catalog: CatalogStore) -> LibrarySettings:
    return LibrarySettings(
        auto_organize=await catalog.get_auto_organize_setting(),
        enable_transcoding=await catalog.get_transcoding_setting(),
    )


@router.get("/settings", response_model=LibrarySettings)
async def get_settings(db: AsyncSession = Depends(get_db)):
    return await _read_settings(CatalogStore(db))


@router.put("/settings", response_model=LibrarySettings)
async def update_settings(
    update: LibrarySettingsUpdate, db: AsyncSession = Depends(get_db)
):
    """Persist library settings; omitted fields keep their current value."""
    catalog = CatalogStore(db)
    if update.auto_organize is not None:
        await catalog.set_setting(
            AUTO_ORGANIZE_KEY,
            str(update.auto_organize).lower(),
            "Move imported files into the library layout",
        )
    if update.enable_transcoding is not None:
        await catalog.set_setting(
            ENABLE_TRANSCODING_KEY,
            str(update.enable_transcoding).lower(),
            "Allow on-the-fly transcoding",
        )
    await db.commit()
    return await _read_settings(catalog)
