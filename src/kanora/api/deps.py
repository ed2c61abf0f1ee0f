from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from kanora.core.db import AsyncSessionLocal
from kanora.core.scan_store import ScanRunStore
from kanora.services.streaming import StreamingService
from kanora.worker.queue import JobQueue
from kanora.worker.watcher import FileWatcher


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async DB session."""
    async with AsyncSessionLocal() as session:
        yield session


# Pipeline components are built by the application lifespan and kept on
# app.state; tests override these dependencies with their own instances.


def get_scan_store(request: Request) -> ScanRunStore:
    return request.app.state.scan_store


def get_job_queue(request: Request) -> JobQueue:
    return request.app.state.job_queue


def get_file_watcher(request: Request) -> FileWatcher:
    return request.app.state.file_watcher


def get_streaming_service(request: Request) -> StreamingService:
    return request.app.state.streaming_service
