import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone

from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter

from app.utils.logger import get_logger

logger = get_logger("rate_limiter")


@dataclass
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_time: datetime
    retry_after: int = 0


class RateLimiter:
    """
    Fixed-window request counter keyed by client identifier.

    Backed by the `limits` in-memory storage, which drops a key once its
    window expires. Process-local and best-effort: counters are not shared
    between workers and are lost on restart.
    """

    def __init__(self, max_requests: int = 50, window_seconds: int = 3600):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._item = RateLimitItemPerSecond(max_requests, window_seconds)
        self._storage = MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self._storage)

    @classmethod
    def from_config(cls, cfg: dict) -> "RateLimiter":
        return cls(
            max_requests=int(cfg.get("max_requests", 50)),
            window_seconds=int(cfg.get("window_seconds", 3600)),
        )

    def is_allowed(self, identifier: str) -> RateLimitDecision:
        allowed = self._strategy.hit(self._item, identifier)
        reset_epoch, remaining = self._strategy.get_window_stats(self._item, identifier)
        reset_time = datetime.fromtimestamp(reset_epoch, tz=timezone.utc)

        if not allowed:
            logger.warning(f"⚠️ Rate limit exceeded for {identifier}")
            retry_after = max(1, math.ceil(reset_epoch - time.time()))
            return RateLimitDecision(False, self.max_requests, 0, reset_time, retry_after)

        return RateLimitDecision(True, self.max_requests, remaining, reset_time)

    def reset(self) -> None:
        """Forget every counter."""
        self._storage.reset()


def client_identifier(headers, client_host: str | None) -> str:
    """Derive the rate-limit key from proxy headers or the socket peer."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return client_host or "unknown"
