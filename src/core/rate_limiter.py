"""Fixed-expiry rate limiter for checkout initiation endpoints.

Counters are keyed by (operation, client address). The first increment of a
fresh window sets the expiry; later increments inside the window leave it
untouched, so a window always closes ``window_seconds`` after its first hit.

Storage is pluggable through ``CounterStore``. ``InMemoryCounterStore`` is
only correct inside one process; ``SupabaseCounterStore`` delegates the
increment to a Postgres function and is safe across replicas.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import TYPE_CHECKING, Callable, Protocol

from src.api.middleware.error_handler import RateLimitError

if TYPE_CHECKING:
    from supabase import Client

logger = logging.getLogger(__name__)

UNKNOWN_CLIENT_ADDRESS = "unknown"


@dataclass
class RateLimitConfig:
    """Configuration for rate limiting."""

    max_requests: int = 10
    window_seconds: int = 600
    cleanup_interval_seconds: int = 300

    @classmethod
    def from_settings(cls) -> "RateLimitConfig":
        """Create config from application settings."""
        from src.core.config import get_settings

        settings = get_settings()
        return cls(
            max_requests=settings.rate_limit_checkout_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )


@dataclass
class CounterState:
    """Current value of a counter and seconds until it resets."""

    count: int
    expires_in: int


class CounterStore(Protocol):
    """Atomic counter-with-expiry capability."""

    async def get(self, key: str) -> CounterState:
        ...

    async def increment(self, key: str, window_seconds: int) -> CounterState:
        ...


@dataclass
class _Counter:
    count: int
    expires_at: float


class InMemoryCounterStore:
    """Thread-safe in-memory counter store with automatic cleanup."""

    def __init__(
        self,
        cleanup_interval_seconds: int = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.cleanup_interval_seconds = cleanup_interval_seconds
        self._clock = clock
        self._counters: dict[str, _Counter] = {}
        self._lock = Lock()
        self._cleanup_task: asyncio.Task | None = None

    async def get(self, key: str) -> CounterState:
        now = self._clock()
        with self._lock:
            counter = self._counters.get(key)
            if counter is None or counter.expires_at <= now:
                return CounterState(count=0, expires_in=0)
            return CounterState(count=counter.count, expires_in=math.ceil(counter.expires_at - now))

    async def increment(self, key: str, window_seconds: int) -> CounterState:
        now = self._clock()
        with self._lock:
            counter = self._counters.get(key)
            if counter is None or counter.expires_at <= now:
                counter = _Counter(count=0, expires_at=now + window_seconds)
                self._counters[key] = counter
            counter.count += 1
            return CounterState(count=counter.count, expires_in=math.ceil(counter.expires_at - now))

    async def cleanup(self) -> int:
        """Remove expired counters."""
        now = self._clock()
        with self._lock:
            expired = [key for key, counter in self._counters.items() if counter.expires_at <= now]
            for key in expired:
                del self._counters[key]
        return len(expired)

    async def start_cleanup_task(self) -> None:
        """Start background cleanup task."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            logger.info("Rate limiter cleanup task started")

    async def stop_cleanup_task(self) -> None:
        """Stop background cleanup task."""
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
            logger.info("Rate limiter cleanup task stopped")

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval_seconds)
            count = await self.cleanup()
            if count > 0:
                logger.debug("Rate limiter cleaned up %d expired counters", count)


class SupabaseCounterStore:
    """Counter store backed by the ``rate_limit_counters`` table.

    Increments go through the ``increment_rate_limit`` Postgres function,
    which performs the upsert, the window reset and the increment in a
    single statement.
    """

    table = "rate_limit_counters"

    def __init__(self, client: "Client") -> None:
        self.client = client

    async def get(self, key: str) -> CounterState:
        response = (
            self.client.table(self.table)
            .select("count, expires_at")
            .eq("key", key)
            .maybe_single()
            .execute()
        )
        row = response.data if response and response.data else None
        if not row:
            return CounterState(count=0, expires_in=0)
        expires_in = _seconds_until(row["expires_at"])
        if expires_in <= 0:
            return CounterState(count=0, expires_in=0)
        return CounterState(count=int(row["count"]), expires_in=expires_in)

    async def increment(self, key: str, window_seconds: int) -> CounterState:
        response = self.client.rpc(
            "increment_rate_limit",
            {"p_key": key, "p_window_seconds": window_seconds},
        ).execute()
        data = response.data
        row = data[0] if isinstance(data, list) else data
        return CounterState(count=int(row["count"]), expires_in=max(_seconds_until(row["expires_at"]), 0))


def _seconds_until(timestamp: str) -> int:
    expires_at = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    return math.ceil((expires_at - datetime.now(timezone.utc)).total_seconds())


class CheckoutRateLimiter:
    """Guards checkout initiation per (operation, client address)."""

    def __init__(self, store: CounterStore, config: RateLimitConfig | None = None) -> None:
        self.store = store
        self.config = config or RateLimitConfig()

    @staticmethod
    def build_key(operation: str, client_address: str) -> str:
        return f"ratelimit:{operation}:{client_address}"

    async def check_and_increment(self, operation: str, client_address: str) -> int:
        """Count one attempt, or refuse it when the window is full.

        Args:
            operation: Checkout operation name (one counter per provider).
            client_address: Resolved client network address.

        Returns:
            int: Attempts remaining in the current window.

        Raises:
            RateLimitError: If the limit for the window has been reached.
        """
        key = self.build_key(operation, client_address)
        limit = self.config.max_requests

        state = await self.store.get(key)
        if state.count >= limit:
            self._reject(operation, client_address, state)

        state = await self.store.increment(key, self.config.window_seconds)
        # A concurrent request may have taken the last slot between get and increment
        if state.count > limit:
            self._reject(operation, client_address, state)

        return limit - state.count

    def _reject(self, operation: str, client_address: str, state: CounterState) -> None:
        logger.warning(
            "Rate limit exceeded for %s from %s (%d attempts)",
            operation,
            client_address,
            state.count,
        )
        raise RateLimitError(
            retry_after=max(state.expires_in, 1),
            limit=self.config.max_requests,
        )


# Global singleton instance
_rate_limiter: CheckoutRateLimiter | None = None


def get_rate_limiter() -> CheckoutRateLimiter:
    """Get or create the global rate limiter instance."""
    global _rate_limiter
    if _rate_limiter is None:
        from src.core.config import get_settings

        config = RateLimitConfig.from_settings()
        if get_settings().rate_limit_backend == "supabase":
            from src.core.supabase import get_supabase_client

            store: CounterStore = SupabaseCounterStore(get_supabase_client())
        else:
            store = InMemoryCounterStore(cleanup_interval_seconds=config.cleanup_interval_seconds)
        _rate_limiter = CheckoutRateLimiter(store, config)
    return _rate_limiter


async def init_rate_limiter() -> CheckoutRateLimiter:
    """Initialize rate limiter and its cleanup task. Call at app startup."""
    limiter = get_rate_limiter()
    if isinstance(limiter.store, InMemoryCounterStore):
        await limiter.store.start_cleanup_task()
    return limiter


async def shutdown_rate_limiter() -> None:
    """Stop the rate limiter cleanup task. Call at app shutdown."""
    global _rate_limiter
    if _rate_limiter and isinstance(_rate_limiter.store, InMemoryCounterStore):
        await _rate_limiter.store.stop_cleanup_task()
    _rate_limiter = None
