"""
Chunk channel — hands cumulative partial texts from a producer task to one reader.

The producer sends and finally closes; the reader iterates. A reader that stops
iterating simply stops consuming; the producer never blocks.
"""

import asyncio
from typing import Any, AsyncIterator

_CLOSED = object()


class ChunkChannel:
    """Unbounded single-reader channel of cumulative text snapshots."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self.result: Any = None
        self.error: BaseException | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, text: str) -> None:
        if self._closed:
            raise RuntimeError("send on closed channel")
        self._queue.put_nowait(text)

    def close(self, result: Any = None, error: BaseException | None = None) -> None:
        """Close the channel, optionally attaching the producer's final result or error."""
        if self._closed:
            return
        self._closed = True
        self.result = result
        self.error = error
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> AsyncIterator[str]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[str]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                if self.error is not None:
                    raise self.error
                return
            yield item
