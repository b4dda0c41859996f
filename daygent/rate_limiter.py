"""
Rate limiting for the Daygent LLM proxy.

Caps call frequency per workspace over fixed minute, hour and day windows.
Window counters live behind a RateLimiterStore so single-instance
deployments can keep them in process and multi-instance deployments can
share them through an external atomic counter.
"""

from __future__ import annotations

import math
import sqlite3
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Dict, Optional, Protocol

from daygent.models import RateLimitWindow


@dataclass
class RateLimitConfig:
    """Rate limit configuration."""
    minute_limit: int = 20
    hour_limit: int = 100
    day_limit: int = 1000


@dataclass(frozen=True)
class WindowSpec:
    """A fixed window granularity."""
    name: str
    seconds: int

    def start_for(self, now: float) -> float:
        """Start of the window containing ``now`` (UTC-aligned)."""
        return math.floor(now / self.seconds) * self.seconds


MINUTE = WindowSpec("minute", 60)
HOUR = WindowSpec("hour", 3600)
DAY = WindowSpec("day", 86400)
WINDOWS = (MINUTE, HOUR, DAY)


@dataclass
class RateLimitDecision:
    """Outcome of a rate-limit check."""
    allowed: bool
    retry_after_seconds: Optional[int] = None
    exceeded_window: Optional[str] = None
    remaining: Dict[str, int] = field(default_factory=dict)
    reset_at: Dict[str, datetime] = field(default_factory=dict)


class RateLimiterStore(Protocol):
    """Storage for window counters."""

    def get(self, key: str) -> Optional[RateLimitWindow]:
        ...

    def increment(self, key: str, window_start: float) -> RateLimitWindow:
        """Atomically add one to ``key``, restarting it if its window is older."""
        ...

    def decrement(self, key: str, window_start: float) -> None:
        """Take back one count, only if ``key`` is still in ``window_start``."""
        ...

    def reset(self, key: str, window_start: float) -> None:
        ...


class InMemoryRateLimitStore:
    """In-process counter store (default)."""

    def __init__(self):
        self._windows: Dict[str, RateLimitWindow] = {}
        self._lock = Lock()

    def get(self, key: str) -> Optional[RateLimitWindow]:
        with self._lock:
            window = self._windows.get(key)
            if window is None:
                return None
            return RateLimitWindow(window.key, window.window_start, window.count)

    def increment(self, key: str, window_start: float) -> RateLimitWindow:
        with self._lock:
            window = self._windows.get(key)
            if window is None or window.window_start < window_start:
                window = RateLimitWindow(key=key, window_start=window_start, count=0)
                self._windows[key] = window
            window.count += 1
            return RateLimitWindow(window.key, window.window_start, window.count)

    def decrement(self, key: str, window_start: float) -> None:
        with self._lock:
            window = self._windows.get(key)
            if window is not None and window.window_start == window_start and window.count > 0:
                window.count -= 1

    def reset(self, key: str, window_start: float) -> None:
        with self._lock:
            self._windows[key] = RateLimitWindow(key=key, window_start=window_start, count=0)

    def clear(self) -> None:
        with self._lock:
            self._windows.clear()


class SQLiteRateLimitStore:
    """SQLite-backed counter store shared by every process using the file."""

    def __init__(self, db_path: str = "daygent.db"):
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._lock = Lock()
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS api_rate_limits (
                window_key TEXT PRIMARY KEY,
                window_start REAL NOT NULL,
                request_count INTEGER NOT NULL DEFAULT 0
            )
            """
        )
        self._conn.commit()

    def get(self, key: str) -> Optional[RateLimitWindow]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM api_rate_limits WHERE window_key = ?",
                (key,),
            ).fetchone()
        if not row:
            return None
        return RateLimitWindow(
            key=row["window_key"],
            window_start=row["window_start"],
            count=row["request_count"],
        )

    def increment(self, key: str, window_start: float) -> RateLimitWindow:
        with self._lock:
            row = self._conn.execute(
                """
                INSERT INTO api_rate_limits (window_key, window_start, request_count)
                VALUES (?, ?, 1)
                ON CONFLICT(window_key) DO UPDATE SET
                    request_count = CASE
                        WHEN api_rate_limits.window_start < excluded.window_start THEN 1
                        ELSE api_rate_limits.request_count + 1
                    END,
                    window_start = MAX(api_rate_limits.window_start, excluded.window_start)
                RETURNING window_key, window_start, request_count
                """,
                (key, window_start),
            ).fetchall()[0]
            self._conn.commit()
        return RateLimitWindow(
            key=row["window_key"],
            window_start=row["window_start"],
            count=row["request_count"],
        )

    def decrement(self, key: str, window_start: float) -> None:
        with self._lock:
            self._conn.execute(
                """
                UPDATE api_rate_limits SET request_count = request_count - 1
                WHERE window_key = ? AND window_start = ? AND request_count > 0
                """,
                (key, window_start),
            )
            self._conn.commit()

    def reset(self, key: str, window_start: float) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO api_rate_limits (window_key, window_start, request_count)
                VALUES (?, ?, 0)
                ON CONFLICT(window_key) DO UPDATE SET
                    window_start = excluded.window_start,
                    request_count = 0
                """,
                (key, window_start),
            )
            self._conn.commit()

    def close(self) -> None:
        self._conn.close()


class RateLimiter:
    """
    Fixed-window rate limiter per workspace.

    A call is counted in every window first and admitted only if no window
    went over its cap; a rejected call takes its counts back. Windows roll
    over inside the store's increment.
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        store: Optional[RateLimiterStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize rate limiter.

        Args:
            config: Rate limit configuration. Uses defaults if not provided.
            store: Counter store. In-memory if not provided.
            clock: Returns the current epoch time in seconds.
        """
        self.config = config or RateLimitConfig()
        self.store = store if store is not None else InMemoryRateLimitStore()
        self._clock = clock

    def _limit_for(self, window: WindowSpec) -> int:
        return {
            "minute": self.config.minute_limit,
            "hour": self.config.hour_limit,
            "day": self.config.day_limit,
        }[window.name]

    @staticmethod
    def _key(workspace_id: str, window: WindowSpec) -> str:
        return f"{workspace_id}:{window.name}"

    def _current_counts(self, workspace_id: str, now: float) -> Dict[str, int]:
        """Read each window's count; a stale window counts as zero."""
        counts = {}
        for window in WINDOWS:
            state = self.store.get(self._key(workspace_id, window))
            if state is None or state.window_start < window.start_for(now):
                counts[window.name] = 0
            else:
                counts[window.name] = state.count
        return counts

    def _decision(self, counts: Dict[str, int], now: float) -> RateLimitDecision:
        """Decide from the counts seen before this call."""
        remaining = {}
        reset_at = {}
        exceeded = []
        for window in WINDOWS:
            limit = self._limit_for(window)
            count = counts[window.name]
            window_end = window.start_for(now) + window.seconds
            remaining[window.name] = max(0, limit - count)
            reset_at[window.name] = datetime.fromtimestamp(window_end, tz=timezone.utc)
            if count >= limit:
                exceeded.append((window_end - now, window.name))

        if not exceeded:
            return RateLimitDecision(allowed=True, remaining=remaining, reset_at=reset_at)

        seconds, name = min(exceeded)
        return RateLimitDecision(
            allowed=False,
            retry_after_seconds=max(1, math.ceil(seconds)),
            exceeded_window=name,
            remaining=remaining,
            reset_at=reset_at,
        )

    def check_and_increment(self, workspace_id: str) -> RateLimitDecision:
        """
        Count this call and admit it if every window stays within its cap.

        Args:
            workspace_id: Workspace identifier

        Returns:
            RateLimitDecision. Rejected checks do not consume any window.
        """
        now = self._clock()
        starts = {window.name: window.start_for(now) for window in WINDOWS}
        after = {
            window.name: self.store.increment(
                self._key(workspace_id, window), starts[window.name]
            ).count
            for window in WINDOWS
        }

        decision = self._decision({name: count - 1 for name, count in after.items()}, now)
        if not decision.allowed:
            for window in WINDOWS:
                self.store.decrement(self._key(workspace_id, window), starts[window.name])
            return decision

        for window in WINDOWS:
            decision.remaining[window.name] = max(
                0, self._limit_for(window) - after[window.name]
            )
        return decision

    def get_status(self, workspace_id: str) -> RateLimitDecision:
        """Report the current window state without counting a call."""
        now = self._clock()
        return self._decision(self._current_counts(workspace_id, now), now)

    def reset(self, workspace_id: str) -> None:
        """Reset every window for a workspace."""
        now = self._clock()
        for window in WINDOWS:
            self.store.reset(self._key(workspace_id, window), window.start_for(now))
