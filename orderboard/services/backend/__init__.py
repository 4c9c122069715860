"""
Backend Service Factory

Provides a single entry point for obtaining the data access layer.
Automatically selects the in-memory mock or Supabase based on ENV_MODE.

Usage:
    from orderboard.services.backend import get_backend_service

    backend = get_backend_service()
    orders = await backend.get_orders(store_id)
"""

import logging
from functools import lru_cache

from orderboard.core.config import get_settings
from orderboard.services.backend.base import (
    AuthError,
    BackendError,
    BaseBackendService,
    NotFoundError,
    next_order_number,
)
from orderboard.services.backend.mock import MockBackendService
from orderboard.services.backend.supabase import SupabaseBackendService

logger = logging.getLogger(__name__)


@lru_cache()
def get_backend_service() -> BaseBackendService:
    """
    Get the configured backend service instance.

    Returns either a seeded MockBackendService (development) or a
    SupabaseBackendService (staging/production).

    Raises:
        ConfigurationError: If a real backend is required but
            SUPABASE_URL or SUPABASE_ANON_KEY is not configured
    """
    settings = get_settings()

    if settings.is_development:
        logger.info("Backend Service: Using MockBackendService (development mode)")
        backend = MockBackendService(
            failure_rate=settings.mock_failure_rate,
            min_latency=0.05,
            max_latency=0.2,
            users={settings.mock_admin_email: settings.mock_admin_password},
        )
        backend.seed_demo_data(settings.mock_admin_email)
        return backend

    settings.require_backend_config()
    logger.info(
        f"Backend Service: Using SupabaseBackendService "
        f"({settings.env_mode.value} mode)"
    )
    return SupabaseBackendService(settings)


def reset_backend_service() -> None:
    """
    Clear the cached backend service instance.

    Useful for testing or when configuration changes at runtime.
    """
    get_backend_service.cache_clear()
    logger.debug("Backend service cache cleared")


__all__ = [
    "get_backend_service",
    "reset_backend_service",
    "next_order_number",
    "AuthError",
    "BackendError",
    "BaseBackendService",
    "NotFoundError",
    "MockBackendService",
    "SupabaseBackendService",
]
