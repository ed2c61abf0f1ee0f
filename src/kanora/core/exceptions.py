"""Error taxonomy for the ingestion pipeline and the streaming service."""

from typing import Any, Optional


class KanoraError(Exception):
    """Base exception for pipeline and streaming errors.

    `retryable` tells the job queue whether re-running the failed job can
    plausibly succeed.
    """

    retryable = True

    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class FileUnreadable(KanoraError):
    """The source bytes could not be read (missing, permissions, I/O error)."""

    def __init__(self, path: str, reason: Optional[str] = None) -> None:
        detail = f": {reason}" if reason else ""
        super().__init__(f"Cannot read {path}{detail}")
        self.path = path


class MetadataUnreadable(KanoraError):
    """The container could not be parsed at all (corrupt or unknown file)."""

    retryable = False

    def __init__(self, path: str, reason: Optional[str] = None) -> None:
        detail = f": {reason}" if reason else ""
        super().__init__(f"Cannot parse audio container of {path}{detail}")
        self.path = path


class CatalogWriteFailed(KanoraError):
    """The per-file catalog transaction failed and was rolled back."""


class OrganizeMoveFailed(KanoraError):
    """Moving an imported file into the library layout failed.

    The catalog row has already been committed at this point; the track keeps
    its source path.
    """

    retryable = False

    def __init__(self, source: str, destination: str, reason: Optional[str] = None) -> None:
        detail = f": {reason}" if reason else ""
        super().__init__(f"Cannot move {source} to {destination}{detail}")
        self.source = source
        self.destination = destination


class JobExhausted(KanoraError):
    """A job failed on every one of its allowed attempts."""

    retryable = False

    def __init__(self, job_id: str, attempts: int, last_error: Optional[str] = None) -> None:
        super().__init__(
            f"Job {job_id} failed after {attempts} attempts: {last_error}"
        )
        self.job_id = job_id
        self.attempts = attempts
        self.last_error = last_error


class QueueClosed(KanoraError):
    """The job queue no longer accepts submissions."""

    retryable = False


class UnsupportedFormat(KanoraError):
    """Requested transcode target format is not supported."""

    retryable = False

    def __init__(self, target_format: str) -> None:
        super().__init__(f"Unsupported format: {target_format}")
        self.target_format = target_format


class BitrateOutOfRange(KanoraError):
    """Requested transcode bitrate is outside the allowed bounds."""

    retryable = False

    def __init__(self, bitrate: int, minimum: int, maximum: int) -> None:
        super().__init__(
            f"Bitrate must be between {minimum} and {maximum} kbps (got {bitrate})"
        )
        self.bitrate = bitrate


class FileMissing(KanoraError):
    """The file backing a track (or album art) is absent at serve time."""

    retryable = False

    def __init__(self, path: Optional[str]) -> None:
        super().__init__(f"File not found on the server: {path}")
        self.path = path


class TranscodeFailed(KanoraError):
    """The transcoder exited before producing any output."""

    retryable = False
