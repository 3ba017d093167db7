"""Per-identity request rate limiting."""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional

from limits import RateLimitItem, parse
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter

from config import RATE_LIMIT_CHAT, RATE_LIMIT_GENERAL, RATE_LIMIT_THREAD
from errors import RateLimitError

DEFAULT_LIMITS = {
    "chat": RATE_LIMIT_CHAT,
    "thread": RATE_LIMIT_THREAD,
    "general": RATE_LIMIT_GENERAL,
}


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_time: datetime


class RateLimiter:
    """
    Fixed-window limiter keyed by (category, identity).

    One instance is shared by the whole process; the in-memory storage is
    safe for concurrent hits.
    """

    def __init__(self, limits: Optional[Dict[str, str]] = None, storage=None):
        self._items: Dict[str, RateLimitItem] = {
            category: parse(spec) for category, spec in (limits or DEFAULT_LIMITS).items()
        }
        self._storage = storage or MemoryStorage()
        self._limiter = FixedWindowRateLimiter(self._storage)

    def check(self, category: str, identifier: str) -> RateLimitResult:
        """Consume one request from the identity's quota for `category`."""
        item = self._items[category]
        allowed = self._limiter.hit(item, category, identifier)
        reset_at, remaining = self._limiter.get_window_stats(item, category, identifier)
        return RateLimitResult(
            allowed=allowed,
            remaining=max(0, remaining),
            reset_time=datetime.fromtimestamp(reset_at, tz=timezone.utc),
        )

    def enforce(self, category: str, identifier: str) -> RateLimitResult:
        """Like check(), but raises RateLimitError when the quota is exhausted."""
        result = self.check(category, identifier)
        if not result.allowed:
            raise RateLimitError(result.reset_time)
        return result

    def reset(self) -> None:
        self._storage.reset()
