"""
                        Services Module

Business logic behind the pages, with the hybrid Mock/Real pattern for
the backend.

Services:
    - backend: data access (in-memory mock or Supabase)
    - query: key-based async result cache with polling
    - display: partitioning, staleness and mounted displays
    - auth: session resolution for protected routes
"""

from orderboard.services.query import QueryClient
from orderboard.services.auth import SessionProvider

__all__ = ["QueryClient", "SessionProvider"]
