"""FastAPI application entry point for the Kanora API.

The lifespan builds the ingestion pipeline (scan store, scanner, job queue,
inbox watcher) and the streaming service once per process and keeps them on
`app.state`; routers reach them through the dependencies in `api.deps`.

The API includes endpoints for:
- Library scans and inbox watching
- Browsing artists, albums and tracks
- Streaming, transcoding, downloads and album art
- System health and library settings
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from kanora import __version__
from kanora.api.middleware import RequestIDMiddleware
from kanora.api.routers import library, scanner, streaming, system
from kanora.core.config import settings
from kanora.core.db import AsyncSessionLocal, init_db
from kanora.core.logger import setup_logging
from kanora.core.scan_store import ScanRunStore
from kanora.services.streaming import StreamingService
from kanora.worker.queue import JobQueue
from kanora.worker.scanner import LibraryScanner
from kanora.worker.watcher import FileWatcher

# Initialize Logging
setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown."""
    # Startup
    await init_db()
    setup_logging()

    scan_store = ScanRunStore(AsyncSessionLocal)
    library_scanner = LibraryScanner(scan_store, AsyncSessionLocal)
    job_queue = JobQueue(library_scanner, scan_store)
    job_queue.start()

    app.state.scan_store = scan_store
    app.state.job_queue = job_queue
    app.state.file_watcher = FileWatcher(
        settings.MUSIC_INBOX_PATH, job_queue, scan_store
    )
    app.state.streaming_service = StreamingService()

    yield

    # Shutdown
    await app.state.file_watcher.stop_watching()
    await job_queue.close()
    await app.state.streaming_service.shutdown()
    logger.info("Kanora API stopped")


app = FastAPI(
    title="Kanora API",
    version=__version__,
    description="Music Library Ingestion & Streaming API",
    lifespan=lifespan,
)

# CORS - Allow Vite Frontend
origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Range", "Accept-Ranges", "Content-Length", "X-Request-ID"],
)
app.add_middleware(RequestIDMiddleware)

# Include Routers
app.include_router(system.router, prefix="/api/v1/system", tags=["System"])
app.include_router(scanner.router, prefix="/api/v1/scanner", tags=["Scanner"])
app.include_router(library.router, prefix="/api/v1/library", tags=["Library"])
app.include_router(streaming.router, prefix="/api/v1/stream", tags=["Streaming"])


@app.get("/")
async def root():
    return {"message": "Kanora API is running"}
