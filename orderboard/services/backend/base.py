"""
Backend Service Abstract Base Class

Defines the interface contract for the hosted database/auth service.
Both MockBackendService and SupabaseBackendService implement these methods.

Use Cases:
    - Reading the orders of a store for the customer display
    - Store and order management from the admin dashboard
    - Signing admins in and validating their sessions
"""

from abc import ABC, abstractmethod
from typing import Iterable

from orderboard.models import AuthSession, Order, OrderStatus, Store, User
from orderboard.schemas import OrderCreate


class BackendError(Exception):
    """The backend request could not complete (network or service failure)."""


class AuthError(BackendError):
    """Credentials or session were rejected by the auth service."""


class NotFoundError(BackendError):
    """The requested row does not exist."""


def next_order_number(orders: Iterable[Order]) -> int:
    """Return the next free receipt number for a store (1 for an empty store)."""
    return max((order.order_number for order in orders), default=0) + 1


class BaseBackendService(ABC):
    """
    Abstract base class for backend services.

    Read operations used by the public display take no token. Every
    admin operation takes the caller's ``access_token`` so the backend
    can apply its row-level policies.

    Example:
        >>> backend = get_backend_service()
        >>> orders = await backend.get_orders("store-1")
        >>> len(orders)
        0
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name (e.g., "mock", "supabase")."""
        pass

    # ==========================================================================
    # ORDERS
    # ==========================================================================

    @abstractmethod
    async def get_orders(self, store_id: str) -> list[Order]:
        """
        Fetch every order of a store.

        An unknown store or a store without orders yields an empty list.

        Raises:
            BackendError: If the request cannot complete
        """
        pass

    @abstractmethod
    async def create_order(
        self,
        store_id: str,
        data: OrderCreate,
        access_token: str,
    ) -> Order:
        """Create an order; the next receipt number is used when none is given."""
        pass

    @abstractmethod
    async def update_order_status(
        self,
        order_id: str,
        status: OrderStatus,
        access_token: str,
    ) -> Order:
        """
        Move an order to ``status`` and bump its ``updated_at``.

        Raises:
            NotFoundError: If the order does not exist
        """
        pass

    # ==========================================================================
    # STORES
    # ==========================================================================

    @abstractmethod
    async def get_stores(self, access_token: str) -> list[Store]:
        """Fetch the stores visible to the signed-in admin."""
        pass

    @abstractmethod
    async def get_store(self, store_id: str) -> Store:
        """
        Fetch a single store.

        Raises:
            NotFoundError: If the store does not exist
        """
        pass

    @abstractmethod
    async def create_store(self, name: str, access_token: str) -> Store:
        """Create a store owned by the signed-in admin."""
        pass

    @abstractmethod
    async def update_store(self, store_id: str, name: str, access_token: str) -> Store:
        """Rename a store."""
        pass

    @abstractmethod
    async def delete_store(self, store_id: str, access_token: str) -> None:
        """Delete a store."""
        pass

    # ==========================================================================
    # AUTH
    # ==========================================================================

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> AuthSession:
        """
        Exchange email and password for a session.

        Raises:
            AuthError: If the credentials are rejected
        """
        pass

    @abstractmethod
    async def get_user(self, access_token: str) -> User:
        """
        Resolve the user behind an access token.

        Raises:
            AuthError: If the token is invalid or expired
        """
        pass

    @abstractmethod
    async def refresh_session(self, refresh_token: str) -> AuthSession:
        """Issue a new session from a refresh token."""
        pass

    @abstractmethod
    async def sign_out(self, access_token: str) -> None:
        """Revoke a session."""
        pass

    # ==========================================================================
    # LIFECYCLE
    # ==========================================================================

    @abstractmethod
    async def health_check(self) -> bool:
        """Verify connectivity to the backend."""
        pass

    async def close(self) -> None:
        """Release network resources held by the service."""
        return None
