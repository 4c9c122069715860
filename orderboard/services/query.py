"""
Query Cache

Key -> async-result cache shared by every page of the application.

Features:
    - In-flight de-duplication: concurrent fetches of one key share a
      single producer call
    - Retry with exponential backoff; the last good data survives failures
    - Observers: while a key has watchers with a refetch interval, one
      background loop polls it; stopping the last watcher cancels the loop
    - Invalidation after mutations
    - Garbage collection: keys nobody watches or fetches for ``gc_time``
      seconds are dropped, so arbitrary keys cannot grow the cache

The client is created by the application lifespan and handed to pages;
nothing here is module-global.

Usage:
    client = QueryClient(retry=3)
    orders = await client.fetch(("orders", store_id), lambda: backend.get_orders(store_id))

    observer = client.watch(
        ("orders", store_id),
        lambda: backend.get_orders(store_id),
        refetch_interval=5.0,
        on_change=handle_state,
    )
    ...
    observer.stop()
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from functools import partial
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

QueryKey = tuple
Producer = Callable[[], Awaitable[Any]]


@dataclass
class QueryState:
    """
    Cached result of a query key.

    Attributes:
        data: Last successfully fetched value
        data_updated_at: Clock time of the last successful fetch
        error: Exception from the most recent failed fetch, cleared on success
        error_updated_at: Clock time of that failure
        fetch_failure_count: Consecutive failed fetches
        is_fetching: A producer call is in flight
        is_invalidated: Cached data must not be served as fresh
    """
    data: Any = None
    data_updated_at: Optional[float] = None
    error: Optional[Exception] = None
    error_updated_at: Optional[float] = None
    fetch_failure_count: int = 0
    is_fetching: bool = False
    is_invalidated: bool = False

    @property
    def has_data(self) -> bool:
        return self.data_updated_at is not None

    def is_fresh(self, now: float, stale_time: float) -> bool:
        return (
            self.has_data
            and not self.is_invalidated
            and now - self.data_updated_at < stale_time
        )


class QueryObserver:
    """
    A subscription to one query key.

    Disabled observers never cause a request and report ``default`` as
    their data. Once stopped, an observer receives no more callbacks.
    """

    def __init__(
        self,
        client: "QueryClient",
        key: QueryKey,
        producer: Producer,
        refetch_interval: Optional[float] = None,
        enabled: bool = True,
        on_change: Optional[Callable[[QueryState], None]] = None,
        default: Any = None,
    ):
        self.client = client
        self.key = key
        self.producer = producer
        self.refetch_interval = refetch_interval
        self.enabled = enabled
        self.on_change = on_change
        self.default = default
        self.active = False

    @property
    def state(self) -> QueryState:
        if not self.enabled:
            return QueryState(data=self.default)
        return self.client.get_state(self.key)

    @property
    def data(self) -> Any:
        state = self.state
        return state.data if state.has_data else self.default

    def start(self) -> None:
        if self.active:
            return
        self.active = True
        if self.enabled:
            self.client._subscribe(self)

    def stop(self) -> None:
        if not self.active:
            return
        self.active = False
        if self.enabled:
            self.client._unsubscribe(self)

    def _notify(self, state: QueryState) -> None:
        if self.active and self.on_change is not None:
            self.on_change(state)


class QueryClient:
    """
    Process-wide query cache, owned and injected by the application root.

    Args:
        retry: Retries after a failed producer call before giving up
        retry_delay: Base delay in seconds; doubles with each attempt
        max_retry_delay: Upper bound for a single delay
        gc_time: Seconds an unobserved key is kept after its last use
        clock: Wall-clock source for ``data_updated_at`` timestamps
    """

    def __init__(
        self,
        retry: int = 3,
        retry_delay: float = 1.0,
        max_retry_delay: float = 30.0,
        gc_time: float = 300.0,
        clock: Callable[[], float] = time.time,
    ):
        self.retry = retry
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self.gc_time = gc_time
        self._clock = clock

        self._states: dict[QueryKey, QueryState] = {}
        self._last_used: dict[QueryKey, float] = {}
        self._in_flight: dict[QueryKey, asyncio.Task] = {}
        self._observers: dict[QueryKey, list[QueryObserver]] = {}
        self._pollers: dict[QueryKey, asyncio.Task] = {}

    # ==========================================================================
    # INSPECTION
    # ==========================================================================

    def get_state(self, key: QueryKey) -> QueryState:
        """Return the cached state of ``key`` (an empty state if never fetched)."""
        return self._states.get(key) or QueryState()

    def get_data(self, key: QueryKey, default: Any = None) -> Any:
        state = self.get_state(key)
        return state.data if state.has_data else default

    @property
    def cached_keys(self) -> list[QueryKey]:
        return list(self._states)

    @property
    def active_pollers(self) -> int:
        return len(self._pollers)

    def observer_count(self, key: QueryKey) -> int:
        return len(self._observers.get(key, ()))

    # ==========================================================================
    # FETCHING
    # ==========================================================================

    async def fetch(
        self,
        key: QueryKey,
        producer: Producer,
        stale_time: float = 0.0,
    ) -> Any:
        """
        Return data for ``key``, calling ``producer`` unless the cache is fresh.

        Concurrent callers of the same key await one shared producer call.
        Cancelling one caller does not cancel the shared call.

        Raises:
            Exception: Whatever the producer raised on its final attempt
        """
        now = self._clock()
        self.gc(now)
        self._last_used[key] = now

        state = self._states.setdefault(key, QueryState())
        if state.is_fresh(now, stale_time):
            return state.data

        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._run(key, producer))
            self._in_flight[key] = task
            task.add_done_callback(partial(self._forget_in_flight, key))
        return await asyncio.shield(task)

    def _forget_in_flight(self, key: QueryKey, task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        if not task.cancelled():
            # Mark the exception retrieved; awaiting callers may all be gone
            task.exception()

    async def _run(self, key: QueryKey, producer: Producer) -> Any:
        state = self._states.setdefault(key, QueryState())
        state.is_fetching = True
        attempt = 0

        while True:
            try:
                data = await producer()
            except Exception as e:
                if attempt >= self.retry:
                    state.is_fetching = False
                    state.error = e
                    state.error_updated_at = self._clock()
                    state.fetch_failure_count += 1
                    logger.warning(f"Query {key!r} failed after {attempt + 1} attempt(s): {e}")
                    self._notify(key, state)
                    raise
                delay = min(self.retry_delay * 2 ** attempt, self.max_retry_delay)
                attempt += 1
                logger.debug(f"Query {key!r} attempt {attempt} failed, retrying in {delay:.1f}s: {e}")
                await asyncio.sleep(delay)
                continue
            except BaseException:
                state.is_fetching = False
                raise

            state.is_fetching = False
            state.data = data
            state.data_updated_at = self._clock()
            state.error = None
            state.error_updated_at = None
            state.fetch_failure_count = 0
            state.is_invalidated = False
            self._last_used[key] = state.data_updated_at
            self._notify(key, state)
            return data

    def _notify(self, key: QueryKey, state: QueryState) -> None:
        for observer in list(self._observers.get(key, ())):
            try:
                observer._notify(state)
            except Exception:
                # The remaining observers and the shared fetch carry on
                logger.exception(f"Observer callback for {key!r} raised")

    # ==========================================================================
    # OBSERVERS / POLLING
    # ==========================================================================

    def watch(
        self,
        key: QueryKey,
        producer: Producer,
        refetch_interval: Optional[float] = None,
        enabled: bool = True,
        on_change: Optional[Callable[[QueryState], None]] = None,
        default: Any = None,
    ) -> QueryObserver:
        """
        Subscribe to ``key`` and return the started observer.

        Must be called from a running event loop. The first enabled
        observer triggers an immediate fetch; the loop then refetches at
        the smallest interval among the key's observers.
        """
        observer = QueryObserver(
            self,
            key,
            producer,
            refetch_interval=refetch_interval,
            enabled=enabled,
            on_change=on_change,
            default=default,
        )
        observer.start()
        return observer

    def _subscribe(self, observer: QueryObserver) -> None:
        self._observers.setdefault(observer.key, []).append(observer)
        if observer.key not in self._pollers:
            self._pollers[observer.key] = asyncio.get_running_loop().create_task(
                self._poll(observer.key)
            )
            logger.debug(f"Polling started for {observer.key!r}")

    def _unsubscribe(self, observer: QueryObserver) -> None:
        observers = self._observers.get(observer.key, [])
        if observer in observers:
            observers.remove(observer)
        if observers:
            return

        self._observers.pop(observer.key, None)
        poller = self._pollers.pop(observer.key, None)
        if poller is not None:
            poller.cancel()
            logger.debug(f"Polling stopped for {observer.key!r}")

        now = self._clock()
        self._last_used[observer.key] = now
        self.gc(now)

    async def _poll(self, key: QueryKey) -> None:
        while True:
            observers = self._observers.get(key)
            if not observers:
                break
            try:
                await self.fetch(key, observers[-1].producer)
            except Exception as e:
                # Last good data stays in the cache; the next tick tries again
                logger.warning(f"Refetch of {key!r} failed: {e}")

            intervals = [
                o.refetch_interval
                for o in self._observers.get(key, ())
                if o.refetch_interval
            ]
            if not intervals:
                break
            await asyncio.sleep(min(intervals))

        if self._pollers.get(key) is asyncio.current_task():
            del self._pollers[key]

    # ==========================================================================
    # INVALIDATION / TEARDOWN
    # ==========================================================================

    def invalidate(self, prefix: QueryKey) -> int:
        """
        Mark every cached key starting with ``prefix`` as stale.

        Returns:
            Number of keys invalidated
        """
        count = 0
        for key, state in self._states.items():
            if key[:len(prefix)] == prefix:
                state.is_invalidated = True
                count += 1
        if count:
            logger.debug(f"Invalidated {count} quer{'y' if count == 1 else 'ies'} under {prefix!r}")
        return count

    def gc(self, now: Optional[float] = None) -> int:
        """
        Drop keys that have been unobserved and unused for ``gc_time`` seconds.

        Keys with observers or an in-flight fetch are always kept.

        Returns:
            Number of keys removed
        """
        if now is None:
            now = self._clock()

        expired = [
            key
            for key in self._states
            if key not in self._observers
            and key not in self._in_flight
            and now - self._last_used.get(key, now) >= self.gc_time
        ]
        for key in expired:
            del self._states[key]
            self._last_used.pop(key, None)
        if expired:
            logger.debug(f"Collected {len(expired)} unused quer{'y' if len(expired) == 1 else 'ies'}")
        return len(expired)

    async def close(self) -> None:
        """Stop every poll loop and in-flight fetch."""
        tasks = list(self._pollers.values()) + list(self._in_flight.values())
        for observers in self._observers.values():
            for observer in observers:
                observer.active = False
        self._observers.clear()
        self._pollers.clear()
        self._in_flight.clear()

        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Query cache closed ({len(tasks)} task(s) cancelled)")
