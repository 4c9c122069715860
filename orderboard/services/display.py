"""
Customer Display

Turns the orders of a store into the two lists shown on the public
board, tracks how old the shown data is, and keeps the store polled for
as long as a display is mounted.

Partitioning is an exhaustive mapping from every OrderStatus to a
display group; a status without a mapping is an error, not a silently
dropped order.
"""

import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterable, Optional
from zoneinfo import ZoneInfo

from orderboard.models import Order, OrderStatus
from orderboard.schemas import DisplayResponse
from orderboard.services.backend import BackendError, BaseBackendService
from orderboard.services.query import QueryClient, QueryObserver, QueryState

logger = logging.getLogger(__name__)

DEFAULT_REFETCH_INTERVAL = 5.0
DEFAULT_STALE_AFTER = 30


class DisplayGroup(str, Enum):
    """Where an order shows up on the customer display."""
    PREPARING = "preparing"
    COMPLETED = "completed"
    HIDDEN = "hidden"


STATUS_DISPLAY_GROUPS: dict[OrderStatus, DisplayGroup] = {
    OrderStatus.PREPARING: DisplayGroup.PREPARING,
    OrderStatus.COMPLETED: DisplayGroup.COMPLETED,
    OrderStatus.CANCELLED: DisplayGroup.HIDDEN,
}

STATUS_LABELS: dict[OrderStatus, str] = {
    OrderStatus.PREPARING: "Sedang di Masak",
    OrderStatus.COMPLETED: "Selesai",
    OrderStatus.CANCELLED: "Dibatalkan",
}


def orders_key(store_id: str) -> tuple:
    """Query cache key for the orders of a store."""
    return ("orders", store_id)


# =============================================================================
# PARTITIONING
# =============================================================================

def display_group(status: OrderStatus) -> DisplayGroup:
    try:
        return STATUS_DISPLAY_GROUPS[status]
    except KeyError:
        raise ValueError(f"Order status {status!r} has no display group") from None


def sort_by_recent(orders: Iterable[Order]) -> list[Order]:
    """Most recently updated first; equal timestamps keep their input order."""
    return sorted(orders, key=lambda order: order.updated_at, reverse=True)


def partition_orders(orders: Iterable[Order]) -> tuple[list[Order], list[Order]]:
    """
    Split orders into the preparing and completed lists of the display.

    Returns:
        (preparing, completed), each sorted by ``sort_by_recent``

    Raises:
        ValueError: If an order carries a status without a display group
    """
    preparing: list[Order] = []
    completed: list[Order] = []

    for order in orders:
        group = display_group(order.status)
        if group is DisplayGroup.PREPARING:
            preparing.append(order)
        elif group is DisplayGroup.COMPLETED:
            completed.append(order)

    return sort_by_recent(preparing), sort_by_recent(completed)


# =============================================================================
# STALENESS
# =============================================================================

def seconds_since(updated_at: Optional[float], now: float) -> Optional[int]:
    """Whole seconds elapsed since ``updated_at`` (None if never updated)."""
    if updated_at is None:
        return None
    return max(0, math.floor(now - updated_at))


def is_stale(updated_at: Optional[float], now: float, threshold: int = DEFAULT_STALE_AFTER) -> bool:
    """Data is stale once more than ``threshold`` whole seconds have passed."""
    elapsed = seconds_since(updated_at, now)
    return elapsed is None or elapsed > threshold


# =============================================================================
# FORMATTING
# =============================================================================

def format_clock(moment: datetime, tz_name: str = "UTC") -> str:
    """Wall-clock time of ``moment`` in the display's timezone, e.g. ``14:05``."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(ZoneInfo(tz_name)).strftime("%H:%M")


def format_relative(elapsed_seconds: Optional[int]) -> str:
    """Footer label for the age of the shown data."""
    if elapsed_seconds is None:
        return "Belum diperbarui"
    if elapsed_seconds < 5:
        return "Baru saja diperbarui"
    if elapsed_seconds < 60:
        return f"Diperbarui {elapsed_seconds} detik lalu"
    if elapsed_seconds < 3600:
        return f"Diperbarui {elapsed_seconds // 60} menit lalu"
    return f"Diperbarui {elapsed_seconds // 3600} jam lalu"


# =============================================================================
# BOARD
# =============================================================================

@dataclass
class DisplayBoard:
    """Everything the display renders at one instant."""
    store_id: str
    preparing: list[Order] = field(default_factory=list)
    completed: list[Order] = field(default_factory=list)
    data_updated_at: Optional[float] = None
    now: float = 0.0
    stale_after: int = DEFAULT_STALE_AFTER
    last_error: Optional[str] = None

    @property
    def seconds_since_update(self) -> Optional[int]:
        return seconds_since(self.data_updated_at, self.now)

    @property
    def is_stale(self) -> bool:
        return is_stale(self.data_updated_at, self.now, self.stale_after)

    @property
    def updated_at(self) -> Optional[datetime]:
        if self.data_updated_at is None:
            return None
        return datetime.fromtimestamp(self.data_updated_at, tz=timezone.utc)

    @property
    def updated_label(self) -> str:
        return format_relative(self.seconds_since_update)

    def to_response(self) -> DisplayResponse:
        return DisplayResponse(
            store_id=self.store_id,
            preparing=self.preparing,
            completed=self.completed,
            updated_at=self.updated_at,
            seconds_since_update=self.seconds_since_update,
            is_stale=self.is_stale,
            last_error=self.last_error,
        )


def build_board(
    store_id: str,
    state: QueryState,
    now: float,
    stale_after: int = DEFAULT_STALE_AFTER,
) -> DisplayBoard:
    preparing, completed = partition_orders(state.data or [])
    return DisplayBoard(
        store_id=store_id,
        preparing=preparing,
        completed=completed,
        data_updated_at=state.data_updated_at,
        now=now,
        stale_after=stale_after,
        last_error=str(state.error) if state.error is not None else None,
    )


async def fetch_board(
    store_id: str,
    backend: BaseBackendService,
    query_client: QueryClient,
    stale_time: float = DEFAULT_REFETCH_INTERVAL,
    stale_after: int = DEFAULT_STALE_AFTER,
    clock: Callable[[], float] = time.time,
) -> DisplayBoard:
    """
    One-off board for a store, served from the cache while it is fresh.

    A failed fetch degrades to the last-known orders.
    """
    key = orders_key(store_id)
    try:
        await query_client.fetch(key, lambda: backend.get_orders(store_id), stale_time=stale_time)
    except BackendError as e:
        logger.warning(f"Display fetch for store {store_id} failed, serving cached data: {e}")
    return build_board(store_id, query_client.get_state(key), clock(), stale_after)


class DisplayPage:
    """
    A mounted customer display for one store.

    While mounted, the store's orders are refetched every
    ``refetch_interval`` seconds through the shared query client, and
    ``on_update`` receives a fresh board after each fetch. Without a
    store id nothing is ever requested. After ``unmount`` no further
    callbacks fire.

    Example:
        >>> async with DisplayPage(store_id, backend, client, on_update=push) as page:
        ...     board = page.snapshot()
    """

    def __init__(
        self,
        store_id: Optional[str],
        backend: BaseBackendService,
        query_client: QueryClient,
        refetch_interval: float = DEFAULT_REFETCH_INTERVAL,
        stale_after: int = DEFAULT_STALE_AFTER,
        clock: Callable[[], float] = time.time,
        on_update: Optional[Callable[[DisplayBoard], None]] = None,
    ):
        self.store_id = store_id
        self.backend = backend
        self.query_client = query_client
        self.refetch_interval = refetch_interval
        self.stale_after = stale_after
        self.on_update = on_update
        self._clock = clock
        self._observer: Optional[QueryObserver] = None

    @property
    def key(self) -> tuple:
        return orders_key(self.store_id or "")

    @property
    def mounted(self) -> bool:
        return self._observer is not None

    def mount(self) -> None:
        if self._observer is not None:
            return
        self._observer = self.query_client.watch(
            self.key,
            self._load_orders,
            refetch_interval=self.refetch_interval,
            enabled=bool(self.store_id),
            on_change=self._handle_change,
            default=[],
        )
        logger.info(f"Display mounted for store {self.store_id!r}")

    def unmount(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer = None
        logger.info(f"Display unmounted for store {self.store_id!r}")

    async def _load_orders(self) -> list[Order]:
        return await self.backend.get_orders(self.store_id)

    def _handle_change(self, state: QueryState) -> None:
        if self.on_update is not None:
            self.on_update(self.snapshot())

    def snapshot(self) -> DisplayBoard:
        if self._observer is not None:
            state = self._observer.state
        elif self.store_id:
            state = self.query_client.get_state(self.key)
        else:
            state = QueryState(data=[])
        return build_board(self.store_id or "", state, self._clock(), self.stale_after)

    async def __aenter__(self) -> "DisplayPage":
        self.mount()
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.unmount()
