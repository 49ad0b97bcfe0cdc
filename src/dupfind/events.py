"""File events and the synchronous channel that carries them to the aggregator."""

import asyncio
import os
from dataclasses import dataclass


@dataclass(frozen=True)
class FileEvent:
    """
    A directory being entered (empty file_name) or a regular file found.

    Created by a walker and consumed exactly once by the aggregator.
    """

    directory_path: str
    file_name: str = ""
    file_size: int = 0
    worker_id: int = 0

    @property
    def is_directory_event(self) -> bool:
        return self.file_name == ""

    @property
    def identity_key(self) -> str:
        """Name and size only; the directory never takes part."""
        return f"{self.file_name}_{self.file_size}"

    @property
    def path(self) -> str:
        return os.path.join(self.directory_path, self.file_name)


class ChannelClosedError(RuntimeError):
    """Raised when sending on a channel that has been closed."""


class EventChannel:
    """
    Unbuffered many-producer, single-consumer channel.

    send() returns only once the consumer has taken the event, so producers
    can never run ahead of the aggregator. close() ends the consumer's
    ``async for`` loop after every accepted event has been delivered.
    """

    _END = object()

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, event: FileEvent) -> None:
        """Hand an event to the consumer and wait until it has been received."""
        if self._closed:
            raise ChannelClosedError("send on closed channel")

        received = asyncio.get_running_loop().create_future()
        await self._queue.put((event, received))
        await received

    async def close(self) -> None:
        """Signal end of stream. Must be called once, after all senders are done."""
        if self._closed:
            raise ChannelClosedError("channel already closed")
        self._closed = True
        await self._queue.put((self._END, None))

    def __aiter__(self):
        return self

    async def __anext__(self) -> FileEvent:
        event, received = await self._queue.get()
        if event is self._END:
            # Leave the marker so later reads also see end of stream
            self._queue.put_nowait((self._END, None))
            raise StopAsyncIteration
        if not received.done():
            received.set_result(None)
        return event
