"""Directory walker with admission-controlled fan-out."""

import asyncio
import logging
import os
import stat
from pathlib import Path

import aiofiles.os

from .errors import BranchError, ListingError, StatError
from .events import EventChannel, FileEvent
from .logging import log_with_context
from .options import Options
from .stats import ScanStats


async def async_scandir_names(path: Path) -> list[str]:
    """Async wrapper for os.scandir returning entry names only."""
    loop = asyncio.get_running_loop()

    def _scandir():
        with os.scandir(path) as entries:
            return [entry.name for entry in entries]

    return await loop.run_in_executor(None, _scandir)


class Walker:
    """
    Walks directories and sends their files to the aggregator.

    Each subdirectory either gets its own task, when the worker budget admits
    one, or is queued on the current task's pending list and walked later by
    that same task. The pending list keeps stack depth constant however deep
    the tree is. Spawned tasks are tracked so join() can wait for the whole
    fan-out tree.
    """

    def __init__(self, options: Options, channel: EventChannel, stats: ScanStats, logger: logging.Logger):
        self.options = options
        self.channel = channel
        self.stats = stats
        self.logger = logger

        self.tasks: set[asyncio.Task] = set()
        # Directories currently being walked (for progress diagnostics)
        self.active_directories: set[Path] = set()

    async def walk(self, directory: Path, worker_id: int) -> None:
        """
        Walk a directory and every subdirectory the budget leaves to this task.

        Args:
            directory: Directory to walk
            worker_id: Id of the task doing the walk (spawned children get worker_id + 1)

        Raises:
            ListingError: If the directory itself cannot be listed
            StatError: If one of its entries' metadata cannot be read
        """
        pending: list[Path] = []
        await self._walk_directory(directory, worker_id, pending)

        while pending:
            subdir = pending.pop()
            try:
                await self._walk_directory(subdir, worker_id, pending)
            except BranchError as e:
                await self._report_branch_error(e, worker_id)

    async def _walk_directory(self, directory: Path, worker_id: int, pending: list[Path]) -> None:
        """List one directory, queueing subdirectories that get no task of their own."""
        self.active_directories.add(directory)
        try:
            await self._scan_entries(directory, worker_id, pending)
        finally:
            self.active_directories.discard(directory)

    async def _scan_entries(self, directory: Path, worker_id: int, pending: list[Path]) -> None:
        await self.stats.update(dirs_scanned=1)

        if self.options.require_confirmation:
            await self.channel.send(FileEvent(directory_path=str(directory), worker_id=worker_id))
        else:
            log_with_context(
                self.logger,
                "debug",
                "Processing directory",
                {"category": "walker", "directory": str(directory), "worker_id": worker_id},
            )

        try:
            names = await async_scandir_names(directory)
        except OSError as e:
            raise ListingError(directory, e) from e

        for name in names:
            entry_path = directory / name
            try:
                st = await aiofiles.os.stat(entry_path, follow_symlinks=False)
            except OSError as e:
                raise StatError(entry_path, e) from e

            if stat.S_ISLNK(st.st_mode):
                await self.stats.update(symlinks_skipped=1)
                log_with_context(
                    self.logger,
                    "debug",
                    "Skipping symlink",
                    {"category": "walker", "path": str(entry_path), "worker_id": worker_id},
                )

            elif stat.S_ISDIR(st.st_mode):
                if self.options.try_acquire():
                    self._spawn(entry_path, worker_id + 1)
                else:
                    # Budget exhausted: this task walks it later
                    pending.append(entry_path)

            elif stat.S_ISREG(st.st_mode):
                await self.channel.send(
                    FileEvent(
                        directory_path=str(directory),
                        file_name=name,
                        file_size=st.st_size,
                        worker_id=worker_id,
                    )
                )

            else:
                await self.stats.update(special_files_skipped=1)
                log_with_context(
                    self.logger,
                    "debug",
                    "Skipping special file",
                    {"category": "walker", "path": str(entry_path), "worker_id": worker_id},
                )

    def _spawn(self, directory: Path, worker_id: int) -> None:
        """Walk a subdirectory in a new task that owns one budget slot."""

        async def walk_with_slot() -> None:
            try:
                await self.walk(directory, worker_id)
            except BranchError as e:
                await self._report_branch_error(e, worker_id)
            finally:
                self.options.release()

        task = asyncio.create_task(walk_with_slot())
        self.tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self.tasks.discard(task)
        # walk_with_slot handles branch errors, so anything here is unexpected
        if task.cancelled() or task.exception() is None:
            return
        log_with_context(
            self.logger,
            "error",
            "Unexpected exception in walker task",
            {
                "category": "walker",
                "error": str(task.exception()),
                "error_type": type(task.exception()).__name__,
            },
        )
        self.stats.update_nowait(errors=1)

    async def _report_branch_error(self, error: BranchError, worker_id: int) -> None:
        log_with_context(
            self.logger,
            "error",
            "Walker branch failed",
            {
                "category": "walker",
                "path": str(error.path),
                "worker_id": worker_id,
                "error": str(error.error),
                "error_type": type(error).__name__,
            },
        )
        await self.stats.update(errors=1)

    async def join(self) -> None:
        """Wait until every spawned walker task, including late spawns, has finished."""
        while self.tasks:
            await asyncio.wait(set(self.tasks))

    def cancel(self) -> None:
        for task in list(self.tasks):
            task.cancel()
