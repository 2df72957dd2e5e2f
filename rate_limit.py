import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from config import get_settings
from errors import RateLimitExceeded, RequestBlocked

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[str] = None  # "rate_limit" | "blocked"
    remaining: int = 0
    reset_in_secs: int = 0

    def is_denied(self) -> bool:
        return not self.allowed

    def is_rate_limit(self) -> bool:
        return self.reason == "rate_limit"


@dataclass
class _Bucket:
    tokens: float
    updated_at: float


class RateLimiter:
    """Per-user token bucket in front of write endpoints."""

    def __init__(
        self,
        capacity: Optional[int] = None,
        refill_rate: Optional[int] = None,
        interval_secs: Optional[int] = None,
        blocked_user_ids: Optional[frozenset[str]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = get_settings()
        self.capacity = capacity if capacity is not None else settings.rate_limit_capacity
        self.refill_rate = (
            refill_rate if refill_rate is not None else settings.rate_limit_refill_rate
        )
        self.interval_secs = interval_secs or settings.rate_limit_interval_secs
        self.blocked_user_ids = (
            blocked_user_ids
            if blocked_user_ids is not None
            else settings.blocked_user_ids
        )
        self.clock = clock
        self._buckets: dict[str, _Bucket] = {}
        self._last_sweep = clock()
        self._lock = threading.Lock()

    def _refill(self, bucket: _Bucket, now: float) -> None:
        elapsed = max(0.0, now - bucket.updated_at)
        per_sec = self.refill_rate / self.interval_secs
        bucket.tokens = min(float(self.capacity), bucket.tokens + elapsed * per_sec)
        bucket.updated_at = now

    def _sweep_idle(self, now: float) -> None:
        """Drop buckets that have refilled to capacity."""
        if now - self._last_sweep < self.interval_secs:
            return
        self._last_sweep = now
        per_sec = self.refill_rate / self.interval_secs
        if per_sec <= 0:
            return
        full_after = self.capacity / per_sec
        idle = [
            user_id
            for user_id, bucket in self._buckets.items()
            if now - bucket.updated_at >= full_after
        ]
        for user_id in idle:
            del self._buckets[user_id]
        if idle:
            logger.info(f"rate_limit: evicted idle buckets count={len(idle)}")

    def protect(self, user_id: str, requested: int = 1) -> Decision:
        if user_id in self.blocked_user_ids:
            return Decision(False, reason="blocked")

        now = self.clock()
        with self._lock:
            self._sweep_idle(now)
            bucket = self._buckets.get(user_id)
            if bucket is None:
                bucket = _Bucket(tokens=float(self.capacity), updated_at=now)
                self._buckets[user_id] = bucket
            self._refill(bucket, now)
            if bucket.tokens >= requested:
                bucket.tokens -= requested
                return Decision(True, remaining=int(bucket.tokens))

            missing = requested - bucket.tokens
            per_sec = self.refill_rate / self.interval_secs
            reset = math.ceil(missing / per_sec) if per_sec > 0 else self.interval_secs
            return Decision(
                False,
                reason="rate_limit",
                remaining=int(bucket.tokens),
                reset_in_secs=reset,
            )


def enforce(decision: Decision, user_id: str) -> None:
    if not decision.is_denied():
        return
    if decision.is_rate_limit():
        logger.error(
            f"rate_limit: code=RATE_LIMIT_EXCEEDED user={user_id} "
            f"remaining={decision.remaining} reset_in_secs={decision.reset_in_secs}"
        )
        raise RateLimitExceeded(decision.remaining, decision.reset_in_secs)
    logger.warning(f"rate_limit: request blocked user={user_id}")
    raise RequestBlocked(decision.reason)
