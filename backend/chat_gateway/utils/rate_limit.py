from typing import Dict

from aiolimiter import AsyncLimiter

from chat_gateway.core.config import settings

# In-memory per-identity limiter; every worker process keeps its own buckets
_limiters: Dict[str, AsyncLimiter] = {}


def get_limiter(key: str) -> AsyncLimiter:
    """Burst throttle for one identity, ``RATE_LIMIT_PER_MINUTE`` acquisitions per 60s"""
    if key not in _limiters:
        rate = max(1, settings.RATE_LIMIT_PER_MINUTE)
        _limiters[key] = AsyncLimiter(rate, time_period=60)
    return _limiters[key]


def reset_limiters() -> None:
    _limiters.clear()
