from __future__ import annotations

import threading
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

from calonik.auth.errors import UsageLimitExceeded


class RateLimiter:
    """
    Simple in-memory rate limiter for admin login attempts.

    Tracks failed attempts per identifier (client address).
    Rate limits after max_attempts within window_seconds.
    """

    def __init__(self, max_attempts: int = 5, window_seconds: int = 300):
        self._attempts: Dict[str, List[datetime]] = defaultdict(list)
        self._max_attempts = max_attempts
        self._window = timedelta(seconds=window_seconds)
        self._lock = threading.Lock()

    def check_and_increment(self, identifier: str) -> Tuple[bool, int]:
        """
        Check if identifier is rate limited and increment attempt counter.

        Returns:
            Tuple of (is_allowed, attempts_remaining)
        """
        now = datetime.now()
        with self._lock:
            self._attempts[identifier] = [t for t in self._attempts[identifier] if now - t < self._window]

            if len(self._attempts[identifier]) >= self._max_attempts:
                return False, 0

            self._attempts[identifier].append(now)
            remaining = self._max_attempts - len(self._attempts[identifier])
            return True, remaining

    def reset(self, identifier: str) -> None:
        """Reset attempts for an identifier (e.g., after successful login)."""
        with self._lock:
            self._attempts.pop(identifier, None)


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


class DailyUsageQuota:
    """
    Per-identity, per-action counter that resets at UTC midnight.

    The limit value is configuration; only the shape of the failure
    (UsageLimitExceeded) is fixed.
    """

    def __init__(self, daily_limit: int, *, today: Callable[[], date] = _utc_today) -> None:
        self._limit = max(0, int(daily_limit))
        self._today = today
        self._counts: Dict[Tuple[str, str], Tuple[date, int]] = {}
        self._day: Optional[date] = None
        self._lock = threading.Lock()

    @property
    def daily_limit(self) -> int:
        return self._limit

    def used(self, identity: str, action: str) -> int:
        with self._lock:
            day, count = self._counts.get((identity, action), (self._today(), 0))
            return count if day == self._today() else 0

    def consume(self, identity: str, action: str) -> int:
        """
        Record one use and return how many remain today.

        Raises UsageLimitExceeded once the limit is spent; a refused attempt is not counted.
        """
        today = self._today()
        with self._lock:
            if today != self._day:
                # Day rolled over: earlier counts can never matter again.
                self._counts = {k: v for k, v in self._counts.items() if v[0] == today}
                self._day = today
            day, count = self._counts.get((identity, action), (today, 0))
            if day != today:
                count = 0
            if count >= self._limit:
                raise UsageLimitExceeded(action, self._limit)
            count += 1
            self._counts[(identity, action)] = (today, count)
            return self._limit - count

    def reset(self, identity: Optional[str] = None) -> None:
        with self._lock:
            if identity is None:
                self._counts.clear()
                return
            for key in [k for k in self._counts if k[0] == identity]:
                del self._counts[key]


_global_rate_limiter: RateLimiter | None = None
_global_usage_quota: DailyUsageQuota | None = None


def get_rate_limiter() -> RateLimiter:
    """Get global admin login rate limiter instance."""
    global _global_rate_limiter
    if _global_rate_limiter is None:
        _global_rate_limiter = RateLimiter(max_attempts=5, window_seconds=300)
    return _global_rate_limiter


def get_usage_quota(daily_limit: int) -> DailyUsageQuota:
    """Get global usage quota; rebuilt if the configured limit changed."""
    global _global_usage_quota
    if _global_usage_quota is None or _global_usage_quota.daily_limit != daily_limit:
        _global_usage_quota = DailyUsageQuota(daily_limit)
    return _global_usage_quota


def reset_globals() -> None:
    global _global_rate_limiter, _global_usage_quota
    _global_rate_limiter = None
    _global_usage_quota = None
