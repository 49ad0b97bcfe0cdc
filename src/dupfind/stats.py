"""Counters collected while scanning."""

import asyncio
import time

import psutil


def get_memory_usage_mb() -> float:
    """Get current memory usage in MB."""
    return psutil.Process().memory_info().rss / 1024 / 1024


class ScanStats:
    """Lock-guarded counters shared by the walkers and the aggregator."""

    COUNTERS = (
        "files_found",
        "dirs_scanned",
        "duplicates_found",
        "duplicates_deleted",
        "duplicates_skipped",
        "bytes_freed",
        "symlinks_skipped",
        "special_files_skipped",
        "errors",
    )

    def __init__(self):
        self.counters = dict.fromkeys(self.COUNTERS, 0)
        self.start_time = time.time()
        self._lock = asyncio.Lock()

    def __getitem__(self, key: str) -> int:
        return self.counters[key]

    async def update(self, **kwargs) -> None:
        """Add each keyword's value to the matching counter."""
        async with self._lock:
            for key, value in kwargs.items():
                if key not in self.counters:
                    raise KeyError(f"Unknown counter: {key}")
                self.counters[key] += value

    def update_nowait(self, **kwargs) -> None:
        """Same as update(), for done-callbacks running on the event loop thread."""
        for key, value in kwargs.items():
            if key not in self.counters:
                raise KeyError(f"Unknown counter: {key}")
            self.counters[key] += value

    def summary(self, peak_workers: int = 0) -> dict:
        """Final statistics, most important first."""
        duration = time.time() - self.start_time
        files_per_sec = self.counters["files_found"] / duration if duration > 0 else 0

        return {
            "duration_seconds": round(duration, 2),
            "files_found": self.counters["files_found"],
            "dirs_scanned": self.counters["dirs_scanned"],
            "duplicates_found": self.counters["duplicates_found"],
            "duplicates_deleted": self.counters["duplicates_deleted"],
            "duplicates_skipped": self.counters["duplicates_skipped"],
            "errors": self.counters["errors"],
            "mb_freed": round(self.counters["bytes_freed"] / (1024 * 1024), 2),
            "bytes_freed": self.counters["bytes_freed"],
            "symlinks_skipped": self.counters["symlinks_skipped"],
            "special_files_skipped": self.counters["special_files_skipped"],
            "files_per_second": round(files_per_sec, 2),
            "peak_workers": peak_workers,
            "peak_memory_mb": round(get_memory_usage_mb(), 1),
        }
