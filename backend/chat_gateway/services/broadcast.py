"""Single-producer fan-out with joint lifetime.

One pump task reads the source and copies every item to each subscriber's
queue. Subscribers see the same items in the same order. The channel lives
and dies as a unit: a source failure is re-raised in every subscriber, and a
subscriber that stops early (closed, cancelled or raised) cancels the pump,
which ends every other subscriber too.
"""
import asyncio
from typing import AsyncGenerator, AsyncIterator, Generic, List, Optional, TypeVar

T = TypeVar("T")


class _End:
    pass


class _Failure:
    def __init__(self, exc: BaseException):
        self.exc = exc


class BroadcastClosed(Exception):
    """Raised in a subscriber whose channel was closed by another subscriber"""


_END = _End()


class Broadcast(Generic[T]):
    def __init__(self, source: AsyncIterator[T]):
        self._source = source
        self._queues: List[asyncio.Queue] = []
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self) -> AsyncGenerator[T, None]:
        if self._task is not None:
            raise RuntimeError("Cannot subscribe after the broadcast has started")
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.append(queue)
        return self._consume(queue)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._pump())

    async def __aenter__(self) -> "Broadcast[T]":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def _publish(self, entry: object) -> None:
        for queue in self._queues:
            queue.put_nowait(entry)

    async def _pump(self) -> None:
        try:
            async for item in self._source:
                self._publish(item)
        except asyncio.CancelledError:
            self._publish(_Failure(BroadcastClosed("broadcast closed")))
            raise
        except Exception as exc:
            self._publish(_Failure(exc))
        else:
            self._publish(_END)
        finally:
            aclose = getattr(self._source, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _consume(self, queue: asyncio.Queue) -> AsyncGenerator[T, None]:
        completed = False
        try:
            while True:
                entry = await queue.get()
                if entry is _END:
                    completed = True
                    return
                if isinstance(entry, _Failure):
                    completed = True
                    raise entry.exc
                yield entry
        finally:
            if not completed:
                await self.aclose()

    async def aclose(self) -> None:
        """Stop the producer; every subscriber still waiting ends with ``BroadcastClosed``."""
        if self._closed:
            return
        self._closed = True
        if self._task is not None:
            if not self._task.done():
                self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        # A pump cancelled before its first step never published a terminal entry
        self._publish(_Failure(BroadcastClosed("broadcast closed")))
