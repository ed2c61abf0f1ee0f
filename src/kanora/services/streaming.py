"""Audio streaming with HTTP range support and ffmpeg transcoding.

Responses are built as Starlette streaming responses so Content-Length and
Content-Range are always set by this module and never renegotiated by the
framework.
"""

import asyncio
import os
import re
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Callable, Dict, List, Optional, Set, Tuple

from fastapi.responses import Response, StreamingResponse
from loguru import logger
from starlette.types import Receive, Scope, Send

from kanora.core.config import settings
from kanora.core.exceptions import (
    BitrateOutOfRange,
    FileMissing,
    TranscodeFailed,
    UnsupportedFormat,
)
from kanora.core.models import Album, Track

MIME_TYPES = {
    "mp3": "audio/mpeg",
    "flac": "audio/flac",
    "m4a": "audio/mp4",
    "ogg": "audio/ogg",
    "wav": "audio/wav",
    "aac": "audio/aac",
}

IMAGE_MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
}

# target format -> (ffmpeg muxer, ffmpeg audio codec)
TRANSCODE_TARGETS = {
    "mp3": ("mp3", "libmp3lame"),
    "ogg": ("ogg", "libvorbis"),
    "aac": ("adts", "aac"),
}

MIN_BITRATE_KBPS = 64
MAX_BITRATE_KBPS = 320

STDERR_TAIL_BYTES = 4096

STREAM_CACHE_CONTROL = "public, max-age=3600"
ART_CACHE_CONTROL = "public, max-age=86400"

_RANGE_RE = re.compile(r"^\s*bytes\s*=\s*(\d*)\s*-\s*(\d*)\s*$", re.IGNORECASE)


class RangeNotSatisfiable(Exception):
    """Range header is malformed or lies outside the file."""


def parse_range_header(range_header: str, file_size: int) -> Tuple[int, int]:
    """Parse a single `bytes=` range into inclusive (start, end) offsets.

    Supports `start-end`, open-ended `start-` (to end of file) and suffix
    `-N` (last N bytes). An end past the file is clamped. Only the first
    range of a multi-range header is honoured.

    Raises:
        RangeNotSatisfiable: The header is malformed or the range is empty.
    """
    first = range_header.split(",", 1)[0]
    match = _RANGE_RE.match(first)
    if not match:
        raise RangeNotSatisfiable(range_header)
    start_s, end_s = match.groups()

    if not start_s:
        if not end_s:
            raise RangeNotSatisfiable(range_header)
        suffix = int(end_s)
        if suffix == 0 or file_size == 0:
            raise RangeNotSatisfiable(range_header)
        return max(0, file_size - suffix), file_size - 1

    start = int(start_s)
    end = int(end_s) if end_s else file_size - 1
    end = min(end, file_size - 1)
    if start >= file_size or start > end:
        raise RangeNotSatisfiable(range_header)
    return start, end


async def iter_file_range(
    f: BinaryIO, start: int, end: int, chunk_size: int = settings.STREAM_CHUNK_SIZE
) -> AsyncIterator[bytes]:
    """Yield bytes [start, end] of an open file, reading in a thread.

    The file is closed when the iterator finishes or is closed.
    """
    loop = asyncio.get_running_loop()
    remaining = end - start + 1
    try:
        await loop.run_in_executor(None, f.seek, start)
        while remaining > 0:
            chunk = await loop.run_in_executor(None, f.read, min(chunk_size, remaining))
            if not chunk:
                break
            remaining -= len(chunk)
            yield chunk
    finally:
        f.close()


async def drain_stderr(stream: asyncio.StreamReader, tail: bytearray) -> None:
    """Read a subprocess stderr to EOF, keeping only its last bytes."""
    while True:
        chunk = await stream.read(STDERR_TAIL_BYTES)
        if not chunk:
            return
        tail.extend(chunk)
        del tail[:-STDERR_TAIL_BYTES]


class ClosingStreamingResponse(StreamingResponse):
    """StreamingResponse that runs `on_close` when the ASGI call ends.

    The callback also runs when the client is gone or sending fails before the
    body iterator was ever started, which a generator's own `finally` cannot
    cover.
    """

    def __init__(self, content, on_close: Callable[[], None], **kwargs):
        super().__init__(content, **kwargs)
        self.on_close = on_close

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            self.on_close()


class StreamingService:
    """Serves catalog tracks over HTTP.

    Attributes:
        ffmpeg_binary: Executable used for transcoding.
        chunk_size: Bytes per read for file and transcoder streaming.
    """

    def __init__(
        self,
        ffmpeg_binary: str = settings.FFMPEG_BINARY,
        chunk_size: int = settings.STREAM_CHUNK_SIZE,
    ):
        self.ffmpeg_binary = ffmpeg_binary
        self.chunk_size = chunk_size
        self._processes: Set[asyncio.subprocess.Process] = set()
        self._stderr_drains: Dict[asyncio.subprocess.Process, asyncio.Task] = {}

    @property
    def active_transcodes(self) -> int:
        return len(self._processes)

    @staticmethod
    def mime_type(fmt: Optional[str]) -> str:
        return MIME_TYPES.get((fmt or "").lower().lstrip("."), "application/octet-stream")

    @staticmethod
    def _file_size(path: Optional[str]) -> int:
        if not path:
            raise FileMissing(path)
        try:
            return os.stat(path).st_size
        except (FileNotFoundError, NotADirectoryError) as e:
            raise FileMissing(path) from e

    @staticmethod
    def _open(path: Optional[str]) -> Tuple[BinaryIO, int]:
        """Open a file for serving and size it from the open handle.

        A file moved away after this point keeps streaming from the handle.
        """
        if not path:
            raise FileMissing(path)
        try:
            f = open(path, "rb")
        except (FileNotFoundError, NotADirectoryError, IsADirectoryError) as e:
            raise FileMissing(path) from e
        try:
            return f, os.fstat(f.fileno()).st_size
        except OSError:
            f.close()
            raise

    def _file_response(
        self, f: BinaryIO, start: int, end: int, status_code: int,
        media_type: str, headers: Dict[str, str],
    ) -> Response:
        return ClosingStreamingResponse(
            iter_file_range(f, start, end, self.chunk_size),
            on_close=f.close,
            status_code=status_code,
            media_type=media_type,
            headers=headers,
        )

    # ========== Direct streaming ==========

    def stream_file(
        self, track: Track, range_header: Optional[str] = None, as_download: bool = False
    ) -> Response:
        """Serve a track's file, honouring a byte range unless downloading.

        Raises:
            FileMissing: The track's file is not on disk.
        """
        path = track.path
        f, file_size = self._open(path)
        fmt = track.format or Path(path).suffix.lstrip(".")
        content_type = self.mime_type(fmt)

        if as_download:
            filename = os.path.basename(path).replace('"', "")
            return self._file_response(
                f, 0, file_size - 1, 200, "application/octet-stream",
                {
                    "Content-Length": str(file_size),
                    "Content-Disposition": f'attachment; filename="{filename}"',
                },
            )

        if range_header:
            try:
                start, end = parse_range_header(range_header, file_size)
            except RangeNotSatisfiable:
                f.close()
                logger.debug(f"Unsatisfiable range '{range_header}' for {path}")
                return Response(
                    status_code=416,
                    headers={"Content-Range": f"bytes */{file_size}"},
                )
            return self._file_response(
                f, start, end, 206, content_type,
                {
                    "Content-Range": f"bytes {start}-{end}/{file_size}",
                    "Accept-Ranges": "bytes",
                    "Content-Length": str(end - start + 1),
                    "Cache-Control": STREAM_CACHE_CONTROL,
                },
            )

        return self._file_response(
            f, 0, file_size - 1, 200, content_type,
            {
                "Content-Length": str(file_size),
                "Accept-Ranges": "bytes",
                "Cache-Control": STREAM_CACHE_CONTROL,
            },
        )

    # ========== Transcoding ==========

    @staticmethod
    def validate_transcode(target_format: str, bitrate_kbps: int) -> Tuple[str, str]:
        """Check the request before any process is started.

        Returns:
            (ffmpeg muxer, ffmpeg codec) for the target format.
        """
        target = TRANSCODE_TARGETS.get((target_format or "").lower())
        if target is None:
            raise UnsupportedFormat(target_format)
        if not MIN_BITRATE_KBPS <= bitrate_kbps <= MAX_BITRATE_KBPS:
            raise BitrateOutOfRange(bitrate_kbps, MIN_BITRATE_KBPS, MAX_BITRATE_KBPS)
        return target

    def build_command(self, source: str, muxer: str, codec: str, bitrate_kbps: int) -> List[str]:
        return [
            self.ffmpeg_binary,
            "-hide_banner",
            "-loglevel", "error",
            "-i", source,
            "-map", "0:a:0",
            "-vn",
            "-c:a", codec,
            "-b:a", f"{bitrate_kbps}k",
            "-f", muxer,
            "pipe:1",
        ]

    async def stream_transcoded(
        self, track: Track, target_format: str = "mp3", bitrate_kbps: int = 320
    ) -> Response:
        """Pipe a track through ffmpeg into the response body.

        The first chunk is read before the response is returned, so a
        transcoder that fails immediately yields a clean error instead of an
        empty 200. Once bytes have been sent a later failure just ends the
        stream. stderr is drained for the whole run so a chatty transcoder
        never blocks on it; its tail becomes the error message.

        Raises:
            UnsupportedFormat, BitrateOutOfRange: Invalid request.
            FileMissing: The source file is not on disk.
            TranscodeFailed: ffmpeg could not be started or produced no output.
        """
        muxer, codec = self.validate_transcode(target_format, bitrate_kbps)
        self._file_size(track.path)
        target_format = target_format.lower()

        cmd = self.build_command(track.path, muxer, codec, bitrate_kbps)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TranscodeFailed(f"Could not start transcoder: {e}") from e
        self._processes.add(proc)
        stderr_tail = bytearray()
        self._stderr_drains[proc] = asyncio.create_task(
            drain_stderr(proc.stderr, stderr_tail)
        )
        logger.info(
            f"Transcoding track {track.id} to {target_format}@{bitrate_kbps}k (pid {proc.pid})"
        )

        try:
            first_chunk = await proc.stdout.read(self.chunk_size)
        except BaseException:
            self._kill(proc)
            raise

        if not first_chunk:
            await proc.wait()
            await self._stderr_drains.pop(proc)
            self._processes.discard(proc)
            message = stderr_tail.decode("utf-8", "replace").strip() or f"exit code {proc.returncode}"
            logger.error(f"Transcoding track {track.id} failed: {message}")
            raise TranscodeFailed(f"Error transcoding audio: {message}")

        return ClosingStreamingResponse(
            self._pipe_transcoder(proc, first_chunk, track.id),
            on_close=lambda: self._kill(proc),
            status_code=200,
            media_type=MIME_TYPES[target_format],
            headers={"Cache-Control": STREAM_CACHE_CONTROL},
        )

    async def _pipe_transcoder(
        self, proc: asyncio.subprocess.Process, first_chunk: bytes, track_id: int
    ) -> AsyncIterator[bytes]:
        """Response body; the finally block kills ffmpeg on client disconnect."""
        try:
            yield first_chunk
            while True:
                chunk = await proc.stdout.read(self.chunk_size)
                if not chunk:
                    break
                yield chunk
            returncode = await proc.wait()
            if returncode != 0:
                logger.warning(
                    f"Transcoder for track {track_id} exited with {returncode} mid-stream"
                )
        finally:
            if proc.returncode is None:
                logger.info(f"Client went away; killing transcoder pid {proc.pid}")
            self._kill(proc)

    def _kill(self, proc: asyncio.subprocess.Process) -> None:
        """Kill a transcoder and stop draining its stderr. Safe to repeat."""
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
        drain = self._stderr_drains.pop(proc, None)
        if drain is not None:
            drain.cancel()
        self._processes.discard(proc)

    async def shutdown(self) -> None:
        """Kill every transcoder still running."""
        procs = list(self._processes)
        for proc in procs:
            self._kill(proc)
        for proc in procs:
            await proc.wait()
        if procs:
            logger.info(f"Killed {len(procs)} running transcoders")

    # ========== Album art ==========

    def album_art(self, album: Optional[Album]) -> Response:
        """Serve an album's cover image.

        Raises:
            FileMissing: No cover recorded or the image is gone.
        """
        cover = album.cover_art_path if album else None
        f, file_size = self._open(cover)
        content_type = IMAGE_MIME_TYPES.get(Path(cover).suffix.lower(), "image/jpeg")
        return self._file_response(
            f, 0, file_size - 1, 200, content_type,
            {
                "Content-Length": str(file_size),
                "Cache-Control": ART_CACHE_CONTROL,
            },
        )
