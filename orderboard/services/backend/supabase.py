"""
Supabase Backend Service Implementation

Production implementation using the official Supabase Python client.
Used when ENV_MODE=production or ENV_MODE=staging.

Requirements:
    - pip install supabase
    - SUPABASE_URL and SUPABASE_ANON_KEY must be set in environment
    - Tables ``stores`` (id, name, owner_id, created_at) and ``orders``
      (id, store_id, order_number, customer_name, status, created_at,
      updated_at) with row-level policies for the authenticated role

API Documentation:
    https://supabase.com/docs/reference/python/introduction
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import httpx
from pydantic import ValidationError
from supabase import (
    AsyncClient,
    AsyncClientOptions,
    AuthApiError,
    AuthRetryableError,
    PostgrestAPIError,
    acreate_client,
)
from supabase import AuthError as SupabaseAuthError

from orderboard.core.config import ConfigurationError, Settings, get_settings
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

ClientFactory = Callable[..., Awaitable[AsyncClient]]

# GoTrue statuses for rejected credentials or tokens
AUTH_REJECTED_STATUSES = {400, 401, 403, 422}

# PostgREST codes: bad/expired JWT, anonymous access refused, row-level policy
AUTH_REJECTED_CODES = {"PGRST301", "PGRST302", "PGRST303", "42501"}

# PostgREST codes: malformed id, no row for a single-object request
NOT_FOUND_CODES = {"22P02", "PGRST116"}


class SupabaseBackendService(BaseBackendService):
    """
    Supabase implementation of the backend service.

    Public reads go through a shared anon-key client. Admin writes use a
    short-lived client carrying the admin's access token, so the row-level
    policies see the right user. Sign-in and token calls get a client of
    their own: a sign-in rewrites the Authorization header of the client
    that made it.

    Example:
        >>> backend = SupabaseBackendService()
        >>> orders = await backend.get_orders("5b1f...")
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        """
        Validate credentials; clients are created on first use.

        Args:
            settings: Application settings (defaults to the cached ones)
            client_factory: Replacement for ``supabase.acreate_client``

        Raises:
            ConfigurationError: If SUPABASE_URL or SUPABASE_ANON_KEY is absent
        """
        settings = settings or get_settings()
        missing = [
            name
            for name, value in (
                ("SUPABASE_URL", settings.supabase_url),
                ("SUPABASE_ANON_KEY", settings.supabase_anon_key),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"{', '.join(missing)} required for the Supabase backend. "
                "Set them in your .env file or environment variables."
            )

        self._url = settings.supabase_url
        self._anon_key = settings.supabase_anon_key
        self._timeout = settings.backend_timeout_seconds
        self._create_client = client_factory or acreate_client
        self._data_client: Optional[AsyncClient] = None
        self._auth_client: Optional[AsyncClient] = None

        logger.info(f"SupabaseBackendService initialized ({settings.supabase_url})")

    @property
    def provider_name(self) -> str:
        return "supabase"

    # ==========================================================================
    # CLIENTS
    # ==========================================================================

    def _options(self, access_token: Optional[str] = None) -> AsyncClientOptions:
        options = AsyncClientOptions(
            auto_refresh_token=False,
            persist_session=False,
            postgrest_client_timeout=self._timeout,
        )
        if access_token:
            options.headers["Authorization"] = f"Bearer {access_token}"
        return options

    async def _data(self) -> AsyncClient:
        if self._data_client is None:
            client = await self._create_client(self._url, self._anon_key, options=self._options())
            if self._data_client is None:
                self._data_client = client
        return self._data_client

    async def _auth(self) -> AsyncClient:
        if self._auth_client is None:
            client = await self._create_client(self._url, self._anon_key, options=self._options())
            if self._auth_client is None:
                self._auth_client = client
        return self._auth_client

    @asynccontextmanager
    async def _as_user(self, access_token: str) -> AsyncIterator[AsyncClient]:
        client = await self._create_client(
            self._url,
            self._anon_key,
            options=self._options(access_token),
        )
        try:
            yield client
        finally:
            await client.postgrest.aclose()
            await client.auth.close()

    # ==========================================================================
    # ERROR TRANSLATION
    # ==========================================================================

    @asynccontextmanager
    async def _errors(self, operation: str) -> AsyncIterator[None]:
        """Translate Supabase client exceptions into backend errors."""
        try:
            yield
        except AuthApiError as e:
            if e.status in AUTH_REJECTED_STATUSES:
                raise AuthError(e.message) from e
            logger.error(f"Supabase {operation} failed ({e.status}): {e.message}")
            raise BackendError(e.message) from e
        except AuthRetryableError as e:
            logger.error(f"Supabase {operation} failed: {e.message}")
            raise BackendError(f"Backend request failed: {e.message}") from e
        except SupabaseAuthError as e:
            raise AuthError(e.message) from e
        except PostgrestAPIError as e:
            message = e.message or str(e)
            if e.code in AUTH_REJECTED_CODES:
                raise AuthError(message) from e
            if e.code in NOT_FOUND_CODES:
                raise NotFoundError(message) from e
            logger.error(f"Supabase {operation} failed ({e.code}): {message}")
            raise BackendError(message) from e
        except httpx.HTTPError as e:
            logger.error(f"Supabase {operation} failed: {e}")
            raise BackendError(f"Backend request failed: {e}") from e

    # ==========================================================================
    # PARSING
    # ==========================================================================

    @staticmethod
    def _parse(model, rows: Any) -> list:
        try:
            return [model.model_validate(row) for row in rows or []]
        except ValidationError as e:
            raise BackendError(f"Unexpected {model.__name__} row from backend: {e}") from e

    @staticmethod
    def _to_user(user: Any) -> User:
        if user is None:
            raise AuthError("No user for this session")
        return User(id=str(user.id), email=user.email)

    def _to_session(self, session: Any) -> AuthSession:
        if session is None:
            raise AuthError("No session returned by the auth service")
        expires_at = None
        if session.expires_at:
            expires_at = datetime.fromtimestamp(int(session.expires_at), tz=timezone.utc)
        return AuthSession(
            access_token=session.access_token,
            refresh_token=session.refresh_token,
            expires_at=expires_at,
            user=self._to_user(session.user),
        )

    # ==========================================================================
    # ORDERS
    # ==========================================================================

    async def get_orders(self, store_id: str) -> list[Order]:
        client = await self._data()
        try:
            async with self._errors("get_orders"):
                response = await (
                    client.table("orders")
                    .select("*")
                    .eq("store_id", store_id)
                    .order("updated_at", desc=True)
                    .execute()
                )
        except NotFoundError:
            # A malformed store id matches no orders
            return []
        return self._parse(Order, response.data)

    async def create_order(
        self,
        store_id: str,
        data: OrderCreate,
        access_token: str,
    ) -> Order:
        order_number = data.order_number
        if order_number is None:
            order_number = next_order_number(await self.get_orders(store_id))

        async with self._as_user(access_token) as client, self._errors("create_order"):
            response = await client.table("orders").insert({
                "store_id": store_id,
                "order_number": order_number,
                "customer_name": data.customer_name,
                "status": data.status.value,
            }).execute()

        orders = self._parse(Order, response.data)
        if not orders:
            raise BackendError("Order was not created")
        logger.info(f"Order #{orders[0].order_number} created in store {store_id}")
        return orders[0]

    async def update_order_status(
        self,
        order_id: str,
        status: OrderStatus,
        access_token: str,
    ) -> Order:
        async with self._as_user(access_token) as client, self._errors("update_order_status"):
            response = await (
                client.table("orders")
                .update({
                    "status": status.value,
                    "updated_at": datetime.now(timezone.utc).isoformat(),
                })
                .eq("id", order_id)
                .execute()
            )

        orders = self._parse(Order, response.data)
        if not orders:
            raise NotFoundError(f"Order {order_id} not found")
        return orders[0]

    # ==========================================================================
    # STORES
    # ==========================================================================

    async def get_stores(self, access_token: str) -> list[Store]:
        async with self._as_user(access_token) as client, self._errors("get_stores"):
            response = await client.table("stores").select("*").order("created_at").execute()
        return self._parse(Store, response.data)

    async def get_store(self, store_id: str) -> Store:
        client = await self._data()
        async with self._errors("get_store"):
            response = await client.table("stores").select("*").eq("id", store_id).execute()
        stores = self._parse(Store, response.data)
        if not stores:
            raise NotFoundError(f"Store {store_id} not found")
        return stores[0]

    async def create_store(self, name: str, access_token: str) -> Store:
        user = await self.get_user(access_token)
        async with self._as_user(access_token) as client, self._errors("create_store"):
            response = await client.table("stores").insert({"name": name, "owner_id": user.id}).execute()

        stores = self._parse(Store, response.data)
        if not stores:
            raise BackendError("Store was not created")
        return stores[0]

    async def update_store(self, store_id: str, name: str, access_token: str) -> Store:
        async with self._as_user(access_token) as client, self._errors("update_store"):
            response = await client.table("stores").update({"name": name}).eq("id", store_id).execute()

        stores = self._parse(Store, response.data)
        if not stores:
            raise NotFoundError(f"Store {store_id} not found")
        return stores[0]

    async def delete_store(self, store_id: str, access_token: str) -> None:
        async with self._as_user(access_token) as client, self._errors("delete_store"):
            response = await client.table("stores").delete().eq("id", store_id).execute()
        if not response.data:
            raise NotFoundError(f"Store {store_id} not found")

    # ==========================================================================
    # AUTH
    # ==========================================================================

    async def sign_in(self, email: str, password: str) -> AuthSession:
        client = await self._auth()
        async with self._errors("sign_in"):
            response = await client.auth.sign_in_with_password({"email": email, "password": password})
        session = self._to_session(response.session)
        logger.info(f"Signed in {session.user.email}")
        return session

    async def get_user(self, access_token: str) -> User:
        client = await self._auth()
        async with self._errors("get_user"):
            response = await client.auth.get_user(access_token)
        return self._to_user(response.user if response else None)

    async def refresh_session(self, refresh_token: str) -> AuthSession:
        client = await self._auth()
        async with self._errors("refresh_session"):
            response = await client.auth.refresh_session(refresh_token)
        return self._to_session(response.session)

    async def sign_out(self, access_token: str) -> None:
        client = await self._auth()
        async with self._errors("sign_out"):
            await client.auth.admin.sign_out(access_token)

    # ==========================================================================
    # LIFECYCLE
    # ==========================================================================

    async def health_check(self) -> bool:
        """Run the cheapest possible query against the stores table."""
        try:
            client = await self._data()
            async with self._errors("health_check"):
                await client.table("stores").select("id").limit(1).execute()
            return True
        except BackendError as e:
            logger.error(f"Supabase health check failed: {e}")
            return False

    async def close(self) -> None:
        if self._data_client is not None:
            await self._data_client.postgrest.aclose()
            await self._data_client.auth.close()
            self._data_client = None
        if self._auth_client is not None:
            await self._auth_client.auth.close()
            self._auth_client = None
