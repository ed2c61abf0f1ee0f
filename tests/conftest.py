import os
import tempfile
import wave
from pathlib import Path

# Point the global settings at a throwaway data dir before kanora is imported
os.environ.setdefault("KANORA_DATA_DIR", tempfile.mkdtemp(prefix="kanora-test-"))

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from kanora.api import deps
from kanora.api.main import app
from kanora.core.db import init_db
from kanora.core.scan_store import ScanRunStore
from kanora.core.scanner_config import ScannerConfig
from kanora.services.streaming import StreamingService
from kanora.worker.queue import JobQueue
from kanora.worker.scanner import LibraryScanner
from kanora.worker.watcher import FileWatcher

# ============================================================================
# TEST DATABASE CONFIGURATION
# ============================================================================
# Each test gets its own SQLite file under tmp_path, shared by the job worker,
# the scan store and request handlers.
# ============================================================================


class FakeObserver:
    """Stands in for watchdog's Observer; tests feed events directly."""

    def __init__(self):
        self.scheduled = []
        self.started = False
        self.stopped = False

    def schedule(self, handler, path, recursive=False):
        self.scheduled.append((handler, path, recursive))

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def join(self, timeout=None):
        pass


def write_wav(path: Path, seed: int = 0, frames: int = 800) -> Path:
    """Write a short mono WAV whose sample bytes (and hash) depend on seed."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with wave.open(str(path), "wb") as w:
        w.setnchannels(1)
        w.setsampwidth(2)
        w.setframerate(8000)
        w.writeframes(bytes([(seed + i) % 256 for i in range(frames * 2)]))
    return path


@pytest.fixture
def make_wav():
    return write_wav


@pytest.fixture
def observer_factory():
    return FakeObserver


@pytest.fixture(scope="function")
async def db_engine(tmp_path):
    """Fresh database file with all tables for each test."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{(tmp_path / 'kanora_test.db').as_posix()}",
        echo=False,
        connect_args={"check_same_thread": False},
    )
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture(scope="function")
async def db_session(session_factory):
    """Provide a test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def scan_store(session_factory):
    return ScanRunStore(session_factory)


@pytest.fixture
def library_root(tmp_path):
    root = tmp_path / "library"
    root.mkdir()
    return root


@pytest.fixture
def scanner(scan_store, session_factory, library_root):
    return LibraryScanner(
        scan_store, session_factory, ScannerConfig(library_root=library_root)
    )


@pytest.fixture
async def job_queue(scanner, scan_store):
    queue = JobQueue(scanner, scan_store, max_attempts=3, backoff_base=0.01)
    queue.start()
    yield queue
    await queue.close()


@pytest.fixture
async def file_watcher(tmp_path, job_queue, scan_store):
    watcher = FileWatcher(
        tmp_path / "inbox",
        job_queue,
        scan_store,
        debounce_seconds=0.05,
        observer_factory=FakeObserver,
    )
    yield watcher
    await watcher.stop_watching()


@pytest.fixture
def streaming_service():
    return StreamingService(chunk_size=256)


@pytest.fixture(scope="function")
async def client(
    session_factory, scan_store, job_queue, file_watcher, streaming_service
):
    """Create an async test client with DB and pipeline overrides."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[deps.get_db] = override_get_db
    app.dependency_overrides[deps.get_scan_store] = lambda: scan_store
    app.dependency_overrides[deps.get_job_queue] = lambda: job_queue
    app.dependency_overrides[deps.get_file_watcher] = lambda: file_watcher
    app.dependency_overrides[deps.get_streaming_service] = lambda: streaming_service
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
