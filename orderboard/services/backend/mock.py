"""
Mock Backend Service Implementation

Simulates the hosted database/auth service in memory without network calls.
Used in development mode (ENV_MODE=development) and in tests to:
    - Run the dashboard and display locally without a Supabase project
    - Exercise failure handling (simulated outages)
    - Develop without internet connectivity

Behavior:
    - Optional simulated latency and failure rate
    - Opaque, expiring access tokens with refresh tokens
    - Stores are only visible to the admin who created them
"""

import asyncio
import random
import uuid
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from orderboard.models import AuthSession, Order, OrderStatus, Store, User
from orderboard.schemas import OrderCreate
from orderboard.services.backend.base import (
    AuthError,
    BackendError,
    BaseBackendService,
    NotFoundError,
    next_order_number,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MockBackendService(BaseBackendService):
    """
    In-memory implementation of the backend service.

    Attributes:
        failure_rate: Probability of a simulated request failure (0.0-1.0)
        min_latency: Minimum simulated response time in seconds
        max_latency: Maximum simulated response time in seconds

    Example:
        >>> backend = MockBackendService(users={"admin@example.com": "secret"})
        >>> session = await backend.sign_in("admin@example.com", "secret")
        >>> store = await backend.create_store("Demo", session.access_token)
    """

    def __init__(
        self,
        failure_rate: float = 0.0,
        min_latency: float = 0.0,
        max_latency: float = 0.0,
        users: Optional[dict[str, str]] = None,
        session_ttl_seconds: int = 3600,
    ):
        self.failure_rate = failure_rate
        self.min_latency = min_latency
        self.max_latency = max_latency
        self.session_ttl_seconds = session_ttl_seconds
        self.request_count = 0

        self._stores: dict[str, Store] = {}
        self._orders: dict[str, Order] = {}
        self._users: dict[str, tuple[User, str]] = {}
        self._sessions: dict[str, AuthSession] = {}
        self._refresh_tokens: dict[str, str] = {}

        for email, password in (users or {}).items():
            self.add_user(email, password)

        logger.info(
            f"MockBackendService initialized "
            f"(failure_rate={failure_rate:.0%}, users={len(self._users)})"
        )

    @property
    def provider_name(self) -> str:
        return "mock"

    # ==========================================================================
    # SIMULATION HELPERS
    # ==========================================================================

    async def _simulate_request(self) -> None:
        """Simulate network latency and random outages."""
        self.request_count += 1
        if self.max_latency > 0:
            await asyncio.sleep(random.uniform(self.min_latency, self.max_latency))
        if self.failure_rate and random.random() < self.failure_rate:
            logger.warning("Mock backend request failed (simulated)")
            raise BackendError("Simulated network failure")

    def _user_for_token(self, access_token: Optional[str]) -> User:
        session = self._sessions.get(access_token or "")
        if session is None:
            raise AuthError("Invalid access token")
        if session.expires_at is not None and session.expires_at <= _utcnow():
            raise AuthError("Access token expired")
        return session.user

    def _owned_store(self, store_id: str, user: User) -> Store:
        store = self._stores.get(store_id)
        if store is None or store.owner_id != user.id:
            raise NotFoundError(f"Store {store_id} not found")
        return store

    def _issue_session(self, user: User) -> AuthSession:
        session = AuthSession(
            access_token=f"mock_at_{uuid.uuid4().hex}",
            refresh_token=f"mock_rt_{uuid.uuid4().hex}",
            expires_at=_utcnow() + timedelta(seconds=self.session_ttl_seconds),
            user=user,
        )
        self._sessions[session.access_token] = session
        self._refresh_tokens[session.refresh_token] = user.id
        return session

    def add_user(self, email: str, password: str) -> User:
        """Register an account (accounts are managed outside the app)."""
        user = User(id=f"user_{uuid.uuid4().hex[:12]}", email=email.lower())
        self._users[user.email] = (user, password)
        return user

    def seed_demo_data(self, owner_email: str) -> Store:
        """Create a demo store with a few orders for local development."""
        owner, _ = self._users[owner_email.lower()]
        now = _utcnow()
        store = Store(
            id=f"store_{uuid.uuid4().hex[:8]}",
            name="Demo Store",
            owner_id=owner.id,
            created_at=now,
        )
        self._stores[store.id] = store

        samples = [
            ("Budi", OrderStatus.PREPARING, 90),
            ("Siti", OrderStatus.PREPARING, 40),
            ("Andi", OrderStatus.COMPLETED, 20),
            ("Dewi", OrderStatus.COMPLETED, 300),
        ]
        for number, (name, status, age_seconds) in enumerate(samples, start=1):
            stamp = now - timedelta(seconds=age_seconds)
            order = Order(
                id=f"order_{uuid.uuid4().hex[:12]}",
                store_id=store.id,
                order_number=number,
                customer_name=name,
                status=status,
                created_at=stamp,
                updated_at=stamp,
            )
            self._orders[order.id] = order

        logger.info(f"Seeded demo store {store.id} for {owner.email}")
        return store

    # ==========================================================================
    # ORDERS
    # ==========================================================================

    async def get_orders(self, store_id: str) -> list[Order]:
        await self._simulate_request()
        return [o.model_copy() for o in self._orders.values() if o.store_id == store_id]

    async def create_order(
        self,
        store_id: str,
        data: OrderCreate,
        access_token: str,
    ) -> Order:
        await self._simulate_request()
        user = self._user_for_token(access_token)
        self._owned_store(store_id, user)

        existing = [o for o in self._orders.values() if o.store_id == store_id]
        now = _utcnow()
        order = Order(
            id=f"order_{uuid.uuid4().hex[:12]}",
            store_id=store_id,
            order_number=data.order_number or next_order_number(existing),
            customer_name=data.customer_name,
            status=data.status,
            created_at=now,
            updated_at=now,
        )
        self._orders[order.id] = order
        logger.info(f"Mock order #{order.order_number} created in store {store_id}")
        return order.model_copy()

    async def update_order_status(
        self,
        order_id: str,
        status: OrderStatus,
        access_token: str,
    ) -> Order:
        await self._simulate_request()
        user = self._user_for_token(access_token)

        order = self._orders.get(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        self._owned_store(order.store_id, user)

        updated = order.model_copy(update={"status": status, "updated_at": _utcnow()})
        self._orders[order_id] = updated
        logger.info(f"Mock order #{updated.order_number} -> {status.value}")
        return updated.model_copy()

    # ==========================================================================
    # STORES
    # ==========================================================================

    async def get_stores(self, access_token: str) -> list[Store]:
        await self._simulate_request()
        user = self._user_for_token(access_token)
        stores = [s for s in self._stores.values() if s.owner_id == user.id]
        return sorted(stores, key=lambda s: s.created_at or _utcnow())

    async def get_store(self, store_id: str) -> Store:
        await self._simulate_request()
        store = self._stores.get(store_id)
        if store is None:
            raise NotFoundError(f"Store {store_id} not found")
        return store.model_copy()

    async def create_store(self, name: str, access_token: str) -> Store:
        await self._simulate_request()
        user = self._user_for_token(access_token)
        store = Store(
            id=f"store_{uuid.uuid4().hex[:8]}",
            name=name,
            owner_id=user.id,
            created_at=_utcnow(),
        )
        self._stores[store.id] = store
        logger.info(f"Mock store created: {store.id} ({name})")
        return store.model_copy()

    async def update_store(self, store_id: str, name: str, access_token: str) -> Store:
        await self._simulate_request()
        user = self._user_for_token(access_token)
        store = self._owned_store(store_id, user).model_copy(update={"name": name})
        self._stores[store_id] = store
        return store.model_copy()

    async def delete_store(self, store_id: str, access_token: str) -> None:
        await self._simulate_request()
        user = self._user_for_token(access_token)
        self._owned_store(store_id, user)
        del self._stores[store_id]
        # Orders go with their store (ON DELETE CASCADE in the hosted schema)
        for order_id in [i for i, o in self._orders.items() if o.store_id == store_id]:
            del self._orders[order_id]
        logger.info(f"Mock store deleted: {store_id}")

    # ==========================================================================
    # AUTH
    # ==========================================================================

    async def sign_in(self, email: str, password: str) -> AuthSession:
        await self._simulate_request()
        entry = self._users.get(email.lower())
        if entry is None or entry[1] != password:
            raise AuthError("Invalid login credentials")
        return self._issue_session(entry[0])

    async def get_user(self, access_token: str) -> User:
        await self._simulate_request()
        return self._user_for_token(access_token)

    async def refresh_session(self, refresh_token: str) -> AuthSession:
        await self._simulate_request()
        user_id = self._refresh_tokens.pop(refresh_token, None)
        if user_id is None:
            raise AuthError("Invalid refresh token")
        for user, _ in self._users.values():
            if user.id == user_id:
                return self._issue_session(user)
        raise AuthError("User no longer exists")

    async def sign_out(self, access_token: str) -> None:
        await self._simulate_request()
        session = self._sessions.pop(access_token, None)
        if session is not None and session.refresh_token:
            self._refresh_tokens.pop(session.refresh_token, None)

    async def health_check(self) -> bool:
        """Mock always returns healthy."""
        return True
