"""Single consumer that tracks file identities and decides what to do with duplicates."""

import asyncio
import logging
import os
import sys
import threading
from typing import Callable, Optional, TextIO

import aiofiles.os

from .events import EventChannel, FileEvent
from .logging import log_with_context
from .options import Options
from .stats import ScanStats

OUTCOME_KEPT = "kept"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_DELETED = "deleted"
OUTCOME_SKIPPED = "skipped"


def read_stdin_line() -> str:
    """
    Read one line straight from the stdin file descriptor.

    Bypasses sys.stdin's buffered reader so a reader thread still blocked
    here at interpreter exit holds no Python-level lock.
    """
    fd = sys.stdin.fileno()
    data = bytearray()
    while True:
        chunk = os.read(fd, 1)
        if not chunk:
            if not data:
                raise EOFError
            break
        if chunk == b"\n":
            break
        data += chunk
    return data.decode(errors="replace")


class ConfirmationPrompt:
    """
    Asks the user whether a duplicate should be deleted.

    Anything other than ``y`` or ``n`` is rejected and the question repeated,
    with no limit on retries. End of input counts as ``n``.

    Answers are read on a daemon thread: cancelling confirm() (Ctrl-C) never
    waits for a pending read, and the thread cannot keep the process alive.
    """

    def __init__(
        self,
        input_func: Callable[[], str] = read_stdin_line,
        output: Optional[TextIO] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.input_func = input_func
        self.output = output
        self.logger = logger or logging.getLogger("dupfind")

    def _write(self, text: str) -> None:
        out = self.output or sys.stdout
        out.write(text)
        out.flush()

    async def _read_answer(self) -> str:
        loop = asyncio.get_running_loop()
        answer = loop.create_future()

        def deliver(result: Optional[str], error: Optional[BaseException]) -> None:
            if answer.done():
                return
            if error is not None:
                answer.set_exception(error)
            else:
                answer.set_result(result)

        def reader() -> None:
            try:
                result, error = self.input_func(), None
            except StopIteration:
                # An exhausted answer source is end of input
                result, error = None, EOFError()
            except Exception as e:
                result, error = None, e
            try:
                loop.call_soon_threadsafe(deliver, result, error)
            except RuntimeError:
                # Loop already closed, nobody is waiting for this answer
                pass

        threading.Thread(target=reader, name="dupfind-prompt", daemon=True).start()
        return await answer

    async def confirm(self, path: str, size: int) -> bool:
        """
        Block until the user answers y or n.

        Returns:
            True if the file should be deleted
        """
        self._write(f"Delete file {path} (size: {size})? (y/n): ")

        while True:
            try:
                answer = await self._read_answer()
            except EOFError:
                self.logger.warning(f"No more input, keeping {path}")
                return False

            answer = answer.strip()
            if answer == "y":
                return True
            if answer == "n":
                return False
            self._write("Invalid input. Repeat (y/n): ")


class Aggregator:
    """
    Drains the event channel and classifies every file found.

    The first file to arrive with a given name and size is kept; every later
    one is a duplicate. The observed set belongs to this task alone.
    """

    def __init__(
        self,
        options: Options,
        stats: ScanStats,
        logger: logging.Logger,
        prompt: Optional[ConfirmationPrompt] = None,
    ):
        self.options = options
        self.stats = stats
        self.logger = logger
        self.prompt = prompt or ConfirmationPrompt(logger=logger)

        self.observed: set[str] = set()
        self.duplicates: list[FileEvent] = []

    async def run(self, channel: EventChannel) -> None:
        """Consume events until the channel is closed."""
        log_with_context(self.logger, "info", "Duplicate search started", {"category": "aggregator"})

        async for event in channel:
            if event.is_directory_event:
                if self.options.require_confirmation:
                    log_with_context(
                        self.logger,
                        "debug",
                        "Processing directory",
                        {"category": "aggregator", "directory": event.directory_path, "worker_id": event.worker_id},
                    )
                continue

            await self.handle_file(event)

        log_with_context(
            self.logger,
            "info",
            "Duplicate search finished",
            {"category": "aggregator", "identities": len(self.observed), "duplicates": len(self.duplicates)},
        )

    async def handle_file(self, event: FileEvent) -> str:
        """
        Classify one file event and act on it.

        Returns:
            The outcome: kept, duplicate, deleted or skipped
        """
        await self.stats.update(files_found=1)

        key = event.identity_key
        if key not in self.observed:
            self.observed.add(key)
            self._log_outcome("debug", "File found", event, OUTCOME_KEPT)
            return OUTCOME_KEPT

        self.duplicates.append(event)
        await self.stats.update(duplicates_found=1)

        if self.options.delete_duplicates:
            if self.options.require_confirmation and not await self.prompt.confirm(event.path, event.file_size):
                await self.stats.update(duplicates_skipped=1)
                self._log_outcome("info", "Duplicate skipped", event, OUTCOME_SKIPPED)
                return OUTCOME_SKIPPED

            if await self._delete(event):
                self._log_outcome("info", "Duplicate deleted", event, OUTCOME_DELETED)
                return OUTCOME_DELETED
            return OUTCOME_DUPLICATE

        self._log_outcome("info", "Duplicate found", event, OUTCOME_DUPLICATE)
        return OUTCOME_DUPLICATE

    async def _delete(self, event: FileEvent) -> bool:
        try:
            await aiofiles.os.remove(event.path)
        except OSError as e:
            log_with_context(
                self.logger,
                "error",
                "Failed to delete duplicate",
                {
                    "category": "aggregator",
                    "file": event.path,
                    "file_size": event.file_size,
                    "outcome": OUTCOME_DUPLICATE,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            await self.stats.update(errors=1)
            return False

        await self.stats.update(duplicates_deleted=1, bytes_freed=event.file_size)
        return True

    def _log_outcome(self, level: str, message: str, event: FileEvent, outcome: str) -> None:
        log_with_context(
            self.logger,
            level,
            message,
            {
                "category": "aggregator",
                "directory": event.directory_path,
                "file": event.path,
                "file_size": event.file_size,
                "worker_id": event.worker_id,
                "identity_key": event.identity_key,
                "outcome": outcome,
            },
        )
