import argparse
import asyncio
from typing import List

from loguru import logger

from kanora.core.config import settings
from kanora.core.db import AsyncSessionLocal, init_db
from kanora.core.logger import setup_logging
from kanora.core.models import ScanStatus
from kanora.core.scan_store import ScanRunStore
from kanora.worker.queue import JobQueue
from kanora.worker.scanner import LibraryScanner


async def run_scan(paths: List[str]) -> None:
    """Scan directories in the foreground and report the final ScanRun.

    Args:
        paths: Root directories to scan. Defaults to the library root.
    """
    await init_db()
    scan_store = ScanRunStore(AsyncSessionLocal)
    queue = JobQueue(LibraryScanner(scan_store, AsyncSessionLocal), scan_store)
    queue.start()
    try:
        scan_id = await queue.enqueue_scan(paths or [str(settings.MUSIC_LIBRARY_PATH)])
        await queue.join()
    finally:
        await queue.close()

    run = await scan_store.get_run(scan_id)
    if run.status == ScanStatus.FAILED.value:
        logger.error(f"Scan {scan_id} failed")
        return
    logger.success(
        f"Scan {scan_id} {run.status}: {run.processed_files}/{run.total_files} "
        f"files processed, {run.error_count} errors"
    )


def main():
    setup_logging()
    parser = argparse.ArgumentParser(description="Kanora Worker")
    subparsers = parser.add_subparsers(dest="command")

    # Init DB Command
    init_parser = subparsers.add_parser("init-db", help="Initialize Database Tables")
    init_parser.add_argument(
        "--force", action="store_true", help="Drop and re-create all tables"
    )

    # Scan Command
    scan_parser = subparsers.add_parser(
        "scan", help="Scan directories and import audio files"
    )
    scan_parser.add_argument("paths", nargs="*", help="Directories to scan")

    # Serve Command
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)

    args = parser.parse_args()

    if args.command == "init-db":
        asyncio.run(init_db(force=args.force))
        logger.info("Database initialized.")

    elif args.command == "scan":
        asyncio.run(run_scan(args.paths))

    elif args.command == "serve":
        import uvicorn

        uvicorn.run("kanora.api.main:app", host=args.host, port=args.port)

    else:
        parser.print_help()


if __name__ == "__main__":
    main()
