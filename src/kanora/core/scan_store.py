"""Persistent store for ScanRun progress records."""

import math
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kanora.core.models import ScanRun, ScanStatus


class ScanRunStore:
    """Database-backed store for tracking scan progress.

    Every method opens its own short-lived session and commits immediately,
    so progress written by the job worker is visible to API pollers at once
    and survives a crash of the worker.

    Usage:
        store = ScanRunStore(AsyncSessionLocal)
        run = await store.create_run()
        await store.update_run(run.id, total_files=100)
        await store.increment(run.id, processed=1)
        status = await store.get_run(run.id)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create_run(
        self, status: ScanStatus = ScanStatus.PENDING
    ) -> ScanRun:
        """Insert a new ScanRun and return it."""
        async with self._session_factory() as session:
            run = ScanRun(
                id=str(uuid.uuid4()),
                status=status.value,
                progress=0,
                total_files=0,
                processed_files=0,
                error_count=0,
                started_at=datetime.now(timezone.utc),
            )
            session.add(run)
            await session.commit()
            logger.debug(f"Created scan run {run.id} ({status.value})")
            return run

    async def get_run(self, scan_run_id: str) -> Optional[ScanRun]:
        """Retrieve a ScanRun by id."""
        async with self._session_factory() as session:
            return await session.get(ScanRun, scan_run_id)

    async def list_runs(self, limit: int = 20) -> List[ScanRun]:
        """Most recently started runs first."""
        async with self._session_factory() as session:
            stmt = (
                select(ScanRun)
                .order_by(ScanRun.started_at.desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def update_run(self, scan_run_id: str, **fields) -> None:
        """Overwrite the given columns of a ScanRun."""
        if not fields:
            return
        async with self._session_factory() as session:
            await session.execute(
                update(ScanRun).where(ScanRun.id == scan_run_id).values(**fields)
            )
            await session.commit()

    async def increment(
        self,
        scan_run_id: str,
        processed: int = 0,
        errors: int = 0,
        total: int = 0,
    ) -> None:
        """Atomically bump counters without a read-modify-write round trip."""
        async with self._session_factory() as session:
            await session.execute(
                update(ScanRun)
                .where(ScanRun.id == scan_run_id)
                .values(
                    processed_files=ScanRun.processed_files + processed,
                    error_count=ScanRun.error_count + errors,
                    total_files=ScanRun.total_files + total,
                )
            )
            await session.commit()

    async def record_file_result(
        self, scan_run_id: str, processed: int = 0, errors: int = 0
    ) -> None:
        """Count one finished file and recompute progress from the counters.

        Runs that are already completed or failed are left untouched.
        """
        terminal = (ScanStatus.COMPLETED.value, ScanStatus.FAILED.value)
        async with self._session_factory() as session:
            result = await session.execute(
                update(ScanRun)
                .where(ScanRun.id == scan_run_id, ScanRun.status.notin_(terminal))
                .values(
                    processed_files=ScanRun.processed_files + processed,
                    error_count=ScanRun.error_count + errors,
                )
            )
            if result.rowcount:
                row = (
                    await session.execute(
                        select(
                            ScanRun.total_files,
                            ScanRun.processed_files,
                            ScanRun.error_count,
                        ).where(ScanRun.id == scan_run_id)
                    )
                ).one()
                done = row.processed_files + row.error_count
                progress = (
                    min(100, math.floor(done / row.total_files * 100))
                    if row.total_files
                    else 0
                )
                await session.execute(
                    update(ScanRun)
                    .where(ScanRun.id == scan_run_id)
                    .values(progress=progress)
                )
            await session.commit()

    async def mark_processing(self, scan_run_id: str) -> None:
        await self.update_run(scan_run_id, status=ScanStatus.PROCESSING.value)

    async def mark_completed(self, scan_run_id: str) -> None:
        """Mark a run as finished; a run with errors still completes."""
        await self.update_run(
            scan_run_id,
            status=ScanStatus.COMPLETED.value,
            completed_at=datetime.now(timezone.utc),
        )

    async def mark_failed(self, scan_run_id: str) -> None:
        await self.update_run(
            scan_run_id,
            status=ScanStatus.FAILED.value,
            completed_at=datetime.now(timezone.utc),
        )
