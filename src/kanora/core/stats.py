"""Statistics tracking for scan runs."""

from dataclasses import dataclass


@dataclass
class ScanStats:
    """In-memory counters for one scan_library call.

    The persisted ScanRun carries the pollable subset; these counters add the
    breakdown that only goes to logs and the CLI.

    Attributes:
        total: Files discovered under the scan roots.
        processed: Files imported or recognized as already cataloged.
        created: New Track rows.
        skipped: Files whose content hash was already cataloged.
        organized: Files moved into the library layout.
        errors: Files that failed to import.
    """

    total: int = 0
    processed: int = 0
    created: int = 0
    skipped: int = 0
    organized: int = 0
    errors: int = 0

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "processed": self.processed,
            "created": self.created,
            "skipped": self.skipped,
            "organized": self.organized,
            "errors": self.errors,
        }

    def __str__(self) -> str:
        return (
            f"ScanStats(total={self.total}, processed={self.processed}, "
            f"created={self.created}, skipped={self.skipped}, "
            f"organized={self.organized}, errors={self.errors})"
        )
