"""Scan orchestration: wires walkers, the event channel and the aggregator together."""

import asyncio
from pathlib import Path
from typing import Optional

import aiofiles.os

from . import __version__
from .aggregator import Aggregator, ConfirmationPrompt
from .errors import RootWalkError, StartupError
from .events import EventChannel
from .logging import log_with_context, setup_logging
from .options import Options
from .stats import ScanStats, get_memory_usage_mb
from .walker import Walker


class DuplicateScanner:
    """
    Finds files sharing a name and size anywhere under one root directory.

    Walkers fan out over the tree within the worker budget and stream their
    findings through one unbuffered channel to a single aggregator, which
    reports or deletes every duplicate.
    """

    def __init__(
        self,
        root_path: str,
        require_confirmation: bool = True,
        delete_duplicates: bool = False,
        max_workers: int = 10,
        log_level: str = "INFO",
        progress_interval: float = 30,
        prompt: Optional[ConfirmationPrompt] = None,
    ):
        """
        Initialize the scanner.

        Args:
            root_path: Root directory to scan
            require_confirmation: Ask before deleting each duplicate
            delete_duplicates: Remove duplicates instead of only reporting them
            max_workers: Maximum concurrent walker tasks, root included (-1 = unbounded)
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
            progress_interval: Seconds between progress log lines
            prompt: Decision service used when confirmation is required

        Raises:
            ValueError: If invalid parameters are provided
        """
        if progress_interval <= 0:
            raise ValueError(f"progress_interval must be > 0, got {progress_interval}")

        self.root_path = Path(root_path).resolve()
        self.options = Options(
            require_confirmation=require_confirmation,
            delete_duplicates=delete_duplicates,
            max_workers=max_workers,
        )
        self.progress_interval = progress_interval
        self.stats = ScanStats()
        self.logger = setup_logging("dupfind", log_level)
        self.aggregator = Aggregator(self.options, self.stats, self.logger, prompt)
        self.walker: Optional[Walker] = None
        self._started = 0.0

    async def _background_progress_reporter(self) -> None:
        """Log progress every progress_interval seconds until cancelled."""
        while True:
            await asyncio.sleep(self.progress_interval)
            active = len(self.walker.active_directories) if self.walker else 0
            log_with_context(
                self.logger,
                "info",
                "Progress update",
                {
                    "category": "progress",
                    "elapsed_seconds": round(asyncio.get_running_loop().time() - self._started, 1),
                    "files_found": self.stats["files_found"],
                    "dirs_scanned": self.stats["dirs_scanned"],
                    "duplicates_found": self.stats["duplicates_found"],
                    "active_workers": self.options.current_workers,
                    "active_directories": active,
                    "memory_mb": round(get_memory_usage_mb(), 1),
                },
            )

    async def start_watch(self) -> dict:
        """
        Scan the tree and handle every duplicate found.

        Returns:
            Dictionary with scan statistics

        Raises:
            StartupError: If the root path is not a readable directory
            RootWalkError: If walking the root directory itself failed
        """
        log_with_context(
            self.logger,
            "info",
            "Starting duplicate scan",
            {
                "category": "scan",
                "version": __version__,
                "root_path": str(self.root_path),
                "progress_interval_seconds": self.progress_interval,
                **self.options.as_dict(),
            },
        )

        if not await aiofiles.os.path.isdir(self.root_path):
            error_msg = f"Root path is not a directory: {self.root_path}"
            log_with_context(self.logger, "error", error_msg, {"category": "scan", "root_path": str(self.root_path)})
            raise StartupError(error_msg)

        self._started = asyncio.get_running_loop().time()
        channel = EventChannel()
        self.walker = Walker(self.options, channel, self.stats, self.logger)
        aggregator_task = asyncio.create_task(self.aggregator.run(channel))
        progress_task = asyncio.create_task(self._background_progress_reporter())

        # The root walk holds the first worker slot
        self.options.current_workers = 1
        root_task = asyncio.create_task(self.walker.walk(self.root_path, worker_id=1))

        try:
            walkers_done = asyncio.create_task(self._wait_for_walkers(root_task))
            await asyncio.wait({walkers_done, aggregator_task}, return_when=asyncio.FIRST_COMPLETED)

            if not walkers_done.done():
                # The aggregator stopped while walkers could still be sending to it
                root_task.cancel()
                self.walker.cancel()
                walkers_done.cancel()
                await asyncio.gather(walkers_done, return_exceptions=True)
                await aggregator_task
                raise RuntimeError("Aggregator exited before the walk finished")

            await channel.close()
            await aggregator_task
        except asyncio.CancelledError:
            # Ctrl-C: stop everything, including a pending confirmation prompt
            root_task.cancel()
            self.walker.cancel()
            aggregator_task.cancel()
            raise
        finally:
            self.options.release()
            progress_task.cancel()
            try:
                await progress_task
            except asyncio.CancelledError:
                pass  # Expected

        root_error = root_task.exception()
        if root_error is not None:
            log_with_context(
                self.logger,
                "critical",
                "Root directory walk failed",
                {
                    "category": "scan",
                    "root_path": str(self.root_path),
                    "error": str(root_error),
                    "error_type": type(root_error).__name__,
                },
            )
            raise RootWalkError(f"Failed to walk root directory {self.root_path}: {root_error}") from root_error

        final_stats = self.stats.summary(peak_workers=self.options.peak_workers)
        log_with_context(self.logger, "info", "Scan completed", {"category": "scan", **final_stats})
        return final_stats

    async def _wait_for_walkers(self, root_task: asyncio.Task) -> None:
        # Branch errors from the root are collected from root_task afterwards
        await asyncio.gather(root_task, return_exceptions=True)
        await self.walker.join()


async def async_main(
    path: str,
    require_confirmation: bool = True,
    delete_duplicates: bool = False,
    max_workers: int = 10,
    log_level: str = "INFO",
    progress_interval: float = 30,
) -> dict:
    """
    Async entry point for the scanner.

    Args:
        path: Root directory to scan
        require_confirmation: Ask before deleting each duplicate
        delete_duplicates: Remove duplicates instead of only reporting them
        max_workers: Maximum concurrent walker tasks (-1 = unbounded)
        log_level: Logging level
        progress_interval: Seconds between progress log lines

    Returns:
        Scan statistics
    """
    scanner = DuplicateScanner(
        root_path=path,
        require_confirmation=require_confirmation,
        delete_duplicates=delete_duplicates,
        max_workers=max_workers,
        log_level=log_level,
        progress_interval=progress_interval,
    )

    return await scanner.start_watch()

