"""Resumable delivery of generation streams over Redis.

The producer for a stream id runs as a background task that outlives the
HTTP connection and appends every chunk to a Redis stream. Each reader, the
original client or one that reattaches later, replays the Redis stream from
the start and follows it until the terminal entry. Without ``REDIS_URL`` the
context is disabled and responses are served as plain, non-resumable
streams.
"""
import asyncio
import enum
from typing import Any, AsyncIterator, Callable, Optional, Set

import redis.asyncio as redis
import structlog

from chat_gateway.core.config import settings
from chat_gateway.observability import STREAM_FALLBACKS

logger = structlog.get_logger()

ChunkFactory = Callable[[], AsyncIterator[str]]

KEY_PREFIX = "resumable-stream"
ACTIVE = "active"
DONE = "done"


class ResumableStreamContext:
    def __init__(
        self,
        client: Any,
        *,
        key_prefix: str = KEY_PREFIX,
        ttl_seconds: int = settings.STREAM_TTL_SECONDS,
        block_ms: int = settings.STREAM_READ_BLOCK_MS,
    ):
        self._redis = client
        self._key_prefix = key_prefix
        self._ttl = ttl_seconds
        self._block_ms = block_ms
        self._producers: Set[asyncio.Task] = set()

    def _sentinel_key(self, stream_id: str) -> str:
        return f"{self._key_prefix}:sentinel:{stream_id}"

    def _chunks_key(self, stream_id: str) -> str:
        return f"{self._key_prefix}:chunks:{stream_id}"

    async def resumable_stream(self, stream_id: str, make_stream: ChunkFactory) -> AsyncIterator[str]:
        """Start producing ``stream_id`` unless already started, and return a reader."""
        created = await self._redis.set(self._sentinel_key(stream_id), ACTIVE, nx=True, ex=self._ttl)
        if created:
            task = asyncio.create_task(self._produce(stream_id, make_stream))
            self._producers.add(task)
            task.add_done_callback(self._producers.discard)
        else:
            logger.info("resumable_stream_joined", stream_id=stream_id)
        return self._read(stream_id)

    async def resume_existing_stream(self, stream_id: str) -> Optional[AsyncIterator[str]]:
        """Reader for a known stream, or ``None`` when it never existed or expired."""
        state = await self._redis.get(self._sentinel_key(stream_id))
        if state is None:
            return None
        logger.info("resumable_stream_resumed", stream_id=stream_id, state=state)
        return self._read(stream_id)

    async def _produce(self, stream_id: str, make_stream: ChunkFactory) -> None:
        key = self._chunks_key(stream_id)
        try:
            async for chunk in make_stream():
                await self._redis.xadd(key, {"data": chunk})
        except Exception as e:
            logger.error("resumable_stream_producer_failed", stream_id=stream_id, error=str(e))
        finally:
            await self._redis.xadd(key, {"done": "1"})
            await self._redis.expire(key, self._ttl)
            await self._redis.set(self._sentinel_key(stream_id), DONE, ex=self._ttl)

    async def _read(self, stream_id: str) -> AsyncIterator[str]:
        key = self._chunks_key(stream_id)
        last_id = "0-0"
        while True:
            response = await self._redis.xread({key: last_id}, block=self._block_ms, count=100)
            if not response:
                if await self._redis.get(self._sentinel_key(stream_id)) is None:
                    return
                continue
            for _key, entries in response:
                for entry_id, fields in entries:
                    last_id = entry_id
                    if "done" in fields:
                        return
                    yield fields["data"]

    async def aclose(self) -> None:
        if self._producers:
            await asyncio.gather(*list(self._producers), return_exceptions=True)
        await self._redis.aclose()


class ContextState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    DISABLED = "disabled"


class StreamContextHandle:
    """Process-wide, lazily initialised access to the resumable context.

    The first caller initialises under a lock; later callers read the cached
    state without locking. A missing or unusable ``REDIS_URL`` is cached as
    ``DISABLED`` and never retried.
    """

    def __init__(
        self,
        redis_url: Optional[str],
        client_factory: Callable[[str], Any] = redis.from_url,
    ):
        self._redis_url = redis_url
        self._client_factory = client_factory
        self._state = ContextState.UNINITIALIZED
        self._context: Optional[ResumableStreamContext] = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> ContextState:
        return self._state

    async def get(self) -> Optional[ResumableStreamContext]:
        if self._state is ContextState.UNINITIALIZED:
            async with self._lock:
                if self._state is ContextState.UNINITIALIZED:
                    self._initialize()
        return self._context

    def _initialize(self) -> None:
        if not self._redis_url:
            logger.info("resumable_streams_disabled", reason="missing REDIS_URL")
            self._state = ContextState.DISABLED
            return
        try:
            client = self._client_factory(self._redis_url, decode_responses=True)
        except (ValueError, redis.RedisError) as e:
            logger.error("resumable_streams_init_failed", error=str(e))
            self._state = ContextState.DISABLED
            return
        self._context = ResumableStreamContext(client)
        self._state = ContextState.READY

    async def aclose(self) -> None:
        if self._context is not None:
            await self._context.aclose()


stream_context = StreamContextHandle(settings.REDIS_URL)


async def open_stream(
    stream_id: str,
    make_stream: ChunkFactory,
    handle: StreamContextHandle = stream_context,
) -> AsyncIterator[str]:
    """Resumable stream when Redis is configured, plain stream otherwise."""
    context = await handle.get()
    if context is None:
        STREAM_FALLBACKS.labels("disabled").inc()
        logger.debug("resumable_stream_fallback", stream_id=stream_id, reason="disabled")
        return make_stream()
    try:
        return await context.resumable_stream(stream_id, make_stream)
    except redis.ConnectionError as e:
        STREAM_FALLBACKS.labels("unavailable").inc()
        logger.warning("resumable_stream_fallback", stream_id=stream_id, reason="unavailable", error=str(e))
        return make_stream()
