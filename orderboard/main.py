"""
FastAPI Application Entry Point

Order Status Board - admin dashboard and public customer display.
Supports both the in-memory mock backend (development) and Supabase
(staging/production).

Endpoints:
    - GET  /auth, POST /auth, POST /auth/logout: admin sign-in
    - GET  /admin: stores of the signed-in admin (protected)
    - GET  /admin/{store_id}: order management for a store (protected)
    - GET  /api/stores/{store_id}/orders: orders of a store
    - GET  /api/display/{store_id}: display snapshot
    - GET  /api/display/{store_id}/stream: live display updates (SSE)
    - GET  /health: system health check
    - GET  /{store_id}: public customer display
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, FastAPI, Form, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response, StreamingResponse
from fastapi.templating import Jinja2Templates
from pydantic import ValidationError

from orderboard.core.config import Settings, get_settings, setup_logging
from orderboard.models import AuthSession, OrderStatus
from orderboard.schemas import (
    DisplayResponse,
    ErrorResponse,
    HealthResponse,
    LoginRequest,
    OrderCreate,
    OrderListResponse,
    OrderStatusUpdate,
    StoreCreate,
)
from orderboard.services.auth import AuthContext, SessionProvider
from orderboard.services.backend import (
    AuthError,
    BackendError,
    BaseBackendService,
    NotFoundError,
    get_backend_service,
)
from orderboard.services.display import (
    STATUS_LABELS,
    DisplayBoard,
    DisplayPage,
    fetch_board,
    format_clock,
    orders_key,
    sort_by_recent,
)
from orderboard.services.query import QueryClient

setup_logging()
logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
templates.env.filters["clock"] = format_clock
templates.env.globals["status_labels"] = STATUS_LABELS


class LoginRequired(Exception):
    """A protected route was requested without a valid session."""


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.

    A missing backend configuration raises ConfigurationError here,
    which aborts startup.
    """
    settings: Settings = app.state.settings

    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    if app.state.backend is None:
        app.state.backend = get_backend_service()
    if app.state.query_client is None:
        app.state.query_client = QueryClient(
            retry=settings.query_retry,
            retry_delay=settings.query_retry_delay_seconds,
            max_retry_delay=settings.query_max_retry_delay_seconds,
            gc_time=settings.query_gc_time_seconds,
        )
    app.state.sessions = SessionProvider(app.state.backend)

    logger.info(f"✅ Backend Service: {app.state.backend.provider_name}")
    logger.info(f"✅ Display refresh: every {settings.display_refetch_interval_seconds:g}s")
    logger.info("✅ Application ready!")

    yield  # Application runs

    logger.info("Shutting down...")
    await app.state.query_client.close()
    await app.state.backend.close()
    logger.info("✅ Cleanup complete")


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_backend(request: Request) -> BaseBackendService:
    return request.app.state.backend


def get_query_client(request: Request) -> QueryClient:
    return request.app.state.query_client


async def get_auth_context(request: Request) -> AuthContext:
    """Resolve the session cookies of the request."""
    settings = get_app_settings(request)
    context = await request.app.state.sessions.resolve(
        request.cookies.get(settings.session_cookie_name),
        request.cookies.get(settings.refresh_cookie_name),
    )
    request.state.auth = context
    return context


async def require_auth(context: AuthContext = Depends(get_auth_context)) -> AuthContext:
    """Gate for protected routes; unauthenticated requests go to /auth."""
    if not context.is_authenticated:
        raise LoginRequired()
    return context


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _redirect(path: str, notice: Optional[str] = None) -> RedirectResponse:
    if notice:
        path = f"{path}?{urlencode({'notice': notice})}"
    return RedirectResponse(path, status_code=status.HTTP_303_SEE_OTHER)


def _set_session_cookies(response: Response, session: AuthSession, settings: Settings) -> None:
    options = {
        "max_age": settings.session_max_age_seconds,
        "httponly": True,
        "secure": settings.session_cookie_secure,
        "samesite": "lax",
    }
    response.set_cookie(settings.session_cookie_name, session.access_token, **options)
    if session.refresh_token:
        response.set_cookie(settings.refresh_cookie_name, session.refresh_token, **options)


def _clear_session_cookies(response: Response, settings: Settings) -> None:
    response.delete_cookie(settings.session_cookie_name)
    response.delete_cookie(settings.refresh_cookie_name)


def _validation_message(error: ValidationError) -> str:
    first = error.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ()))
    return f"{field}: {first.get('msg')}" if field else str(first.get("msg"))


def _board_payload(board: DisplayBoard, settings: Settings) -> dict:
    html = templates.get_template("_board.html").render(
        board=board,
        tz=settings.display_timezone,
    )
    return {
        "html": html,
        "is_stale": board.is_stale,
        "updated_label": board.updated_label,
        "last_error": board.last_error,
        "preparing_count": len(board.preparing),
        "completed_count": len(board.completed),
    }


def _sse_event(event: str, payload: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(payload)}\n\n"


router = APIRouter()


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@router.get("/", tags=["Root"], include_in_schema=False)
async def root() -> RedirectResponse:
    return _redirect("/auth")


@router.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    backend: BaseBackendService = Depends(get_backend),
    query_client: QueryClient = Depends(get_query_client),
) -> HealthResponse:
    """Verify the backend is reachable and report cache activity."""
    backend_ok = await backend.health_check()

    return HealthResponse(
        status="operational" if backend_ok else "degraded",
        backend="healthy" if backend_ok else "unhealthy",
        backend_provider=backend.provider_name,
        cached_queries=len(query_client.cached_keys),
        active_pollers=query_client.active_pollers,
        timestamp=datetime.now(timezone.utc),
    )


# =============================================================================
# AUTH PAGES
# =============================================================================

@router.get("/auth", response_class=HTMLResponse, tags=["Auth"])
async def auth_page(
    request: Request,
    context: AuthContext = Depends(get_auth_context),
):
    """Sign-in page; signed-in admins go straight to their stores."""
    if context.is_authenticated:
        return _redirect("/admin")
    return templates.TemplateResponse(request, "auth.html", {"error": None, "email": ""})


@router.post("/auth", response_class=HTMLResponse, tags=["Auth"])
async def sign_in(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
    settings: Settings = Depends(get_app_settings),
):
    try:
        credentials = LoginRequest(email=email, password=password)
    except ValidationError:
        return templates.TemplateResponse(
            request,
            "auth.html",
            {"error": "Email dan kata sandi wajib diisi", "email": email},
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        )

    try:
        context = await request.app.state.sessions.sign_in(credentials.email, credentials.password)
    except AuthError:
        logger.info(f"Sign-in rejected for {credentials.email}")
        return templates.TemplateResponse(
            request,
            "auth.html",
            {"error": "Email atau kata sandi salah", "email": credentials.email},
            status_code=status.HTTP_401_UNAUTHORIZED,
        )

    response = _redirect("/admin")
    _set_session_cookies(response, context.session, settings)
    return response


@router.post("/auth/logout", tags=["Auth"])
async def sign_out(
    request: Request,
    context: AuthContext = Depends(get_auth_context),
    settings: Settings = Depends(get_app_settings),
) -> RedirectResponse:
    await request.app.state.sessions.sign_out(context)
    request.state.auth = None
    response = _redirect("/auth")
    _clear_session_cookies(response, settings)
    return response


# =============================================================================
# ADMIN: STORES
# =============================================================================

@router.get("/admin", response_class=HTMLResponse, tags=["Admin"])
async def stores_page(
    request: Request,
    notice: Optional[str] = None,
    context: AuthContext = Depends(require_auth),
    backend: BaseBackendService = Depends(get_backend),
    query_client: QueryClient = Depends(get_query_client),
):
    """List the stores of the signed-in admin."""
    stores = await query_client.fetch(
        ("stores", context.user.id),
        lambda: backend.get_stores(context.access_token),
    )
    return templates.TemplateResponse(
        request,
        "stores.html",
        {"user": context.user, "stores": stores, "notice": notice},
    )


@router.post("/admin/stores", tags=["Admin"])
async def create_store(
    name: str = Form(""),
    context: AuthContext = Depends(require_auth),
    backend: BaseBackendService = Depends(get_backend),
    query_client: QueryClient = Depends(get_query_client),
) -> RedirectResponse:
    try:
        data = StoreCreate(name=name)
    except ValidationError as e:
        return _redirect("/admin", _validation_message(e))

    store = await backend.create_store(data.name, context.access_token)
    query_client.invalidate(("stores",))
    logger.info(f"Store created: {store.id} ({store.name})")
    return _redirect("/admin", f"Toko \"{store.name}\" dibuat")


@router.post("/admin/stores/{store_id}", tags=["Admin"])
async def rename_store(
    store_id: str,
    name: str = Form(""),
    context: AuthContext = Depends(require_auth),
    backend: BaseBackendService = Depends(get_backend),
    query_client: QueryClient = Depends(get_query_client),
) -> RedirectResponse:
    try:
        data = StoreCreate(name=name)
    except ValidationError as e:
        return _redirect("/admin", _validation_message(e))

    store = await backend.update_store(store_id, data.name, context.access_token)
    query_client.invalidate(("stores",))
    return _redirect("/admin", f"Toko \"{store.name}\" diperbarui")


@router.post("/admin/stores/{store_id}/delete", tags=["Admin"])
async def delete_store(
    store_id: str,
    context: AuthContext = Depends(require_auth),
    backend: BaseBackendService = Depends(get_backend),
    query_client: QueryClient = Depends(get_query_client),
) -> RedirectResponse:
    await backend.delete_store(store_id, context.access_token)
    query_client.invalidate(("stores",))
    query_client.invalidate(orders_key(store_id))
    logger.info(f"Store deleted: {store_id}")
    return _redirect("/admin", "Toko dihapus")


# =============================================================================
# ADMIN: ORDERS
# =============================================================================

@router.get("/admin/{store_id}", response_class=HTMLResponse, tags=["Admin"])
async def orders_page(
    request: Request,
    store_id: str,
    notice: Optional[str] = None,
    context: AuthContext = Depends(require_auth),
    backend: BaseBackendService = Depends(get_backend),
    query_client: QueryClient = Depends(get_query_client),
    settings: Settings = Depends(get_app_settings),
):
    """Order management for one store."""
    store = await backend.get_store(store_id)
    if store.owner_id and store.owner_id != context.user.id:
        raise NotFoundError(f"Store {store_id} not found")

    orders = await query_client.fetch(orders_key(store_id), lambda: backend.get_orders(store_id))
    return templates.TemplateResponse(
        request,
        "admin.html",
        {
            "user": context.user,
            "store": store,
            "orders": sort_by_recent(orders),
            "statuses": list(OrderStatus),
            "notice": notice,
            "tz": settings.display_timezone,
        },
    )


@router.post("/admin/{store_id}/orders", tags=["Admin"])
async def create_order(
    store_id: str,
    customer_name: str = Form(""),
    order_number: str = Form(""),
    context: AuthContext = Depends(require_auth),
    backend: BaseBackendService = Depends(get_backend),
    query_client: QueryClient = Depends(get_query_client),
) -> RedirectResponse:
    try:
        data = OrderCreate(
            customer_name=customer_name,
            order_number=order_number.strip() or None,
        )
    except ValidationError as e:
        return _redirect(f"/admin/{store_id}", _validation_message(e))

    order = await backend.create_order(store_id, data, context.access_token)
    query_client.invalidate(orders_key(store_id))
    return _redirect(f"/admin/{store_id}", f"Pesanan #{order.order_number} dibuat")


@router.post("/admin/{store_id}/orders/{order_id}/status", tags=["Admin"])
async def update_order_status(
    store_id: str,
    order_id: str,
    order_status: str = Form("", alias="status"),
    context: AuthContext = Depends(require_auth),
    backend: BaseBackendService = Depends(get_backend),
    query_client: QueryClient = Depends(get_query_client),
) -> RedirectResponse:
    try:
        data = OrderStatusUpdate(status=order_status)
    except ValidationError as e:
        return _redirect(f"/admin/{store_id}", _validation_message(e))

    order = await backend.update_order_status(order_id, data.status, context.access_token)
    query_client.invalidate(orders_key(order.store_id))
    return _redirect(
        f"/admin/{store_id}",
        f"Pesanan #{order.order_number}: {STATUS_LABELS[order.status]}",
    )


# =============================================================================
# PUBLIC API
# =============================================================================

@router.get(
    "/api/stores/{store_id}/orders",
    response_model=OrderListResponse,
    tags=["Orders"],
    summary="List Orders of a Store",
)
async def list_orders(
    store_id: str,
    backend: BaseBackendService = Depends(get_backend),
    query_client: QueryClient = Depends(get_query_client),
    settings: Settings = Depends(get_app_settings),
) -> OrderListResponse:
    orders = await query_client.fetch(
        orders_key(store_id),
        lambda: backend.get_orders(store_id),
        stale_time=settings.display_refetch_interval_seconds,
    )
    return OrderListResponse(store_id=store_id, total=len(orders), orders=sort_by_recent(orders))


@router.get(
    "/api/display/{store_id}",
    response_model=DisplayResponse,
    tags=["Display"],
    summary="Display Snapshot",
)
async def display_snapshot(
    store_id: str,
    backend: BaseBackendService = Depends(get_backend),
    query_client: QueryClient = Depends(get_query_client),
    settings: Settings = Depends(get_app_settings),
) -> DisplayResponse:
    """Current board of a store; fetch failures degrade to cached data."""
    board = await fetch_board(
        store_id,
        backend,
        query_client,
        stale_time=settings.display_refetch_interval_seconds,
        stale_after=settings.display_stale_after_seconds,
    )
    return board.to_response()


@router.get("/api/display/{store_id}/stream", tags=["Display"], summary="Live Display Updates")
async def display_stream(
    request: Request,
    store_id: str,
    backend: BaseBackendService = Depends(get_backend),
    query_client: QueryClient = Depends(get_query_client),
    settings: Settings = Depends(get_app_settings),
) -> StreamingResponse:
    """
    Server-sent events for an open display page.

    The display stays mounted (and its store polled) for exactly as long
    as the stream is open. A board is pushed after every fetch, and at
    least once per refresh interval so the staleness label keeps moving.
    """

    async def events() -> AsyncIterator[str]:
        updates: asyncio.Queue = asyncio.Queue()
        page = DisplayPage(
            store_id,
            backend,
            query_client,
            refetch_interval=settings.display_refetch_interval_seconds,
            stale_after=settings.display_stale_after_seconds,
            on_update=updates.put_nowait,
        )
        async with page:
            board = page.snapshot()
            while True:
                yield _sse_event("board", _board_payload(board, settings))
                try:
                    board = await asyncio.wait_for(
                        updates.get(),
                        timeout=settings.display_refetch_interval_seconds,
                    )
                except asyncio.TimeoutError:
                    board = page.snapshot()
                if await request.is_disconnected():
                    break

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# =============================================================================
# PUBLIC DISPLAY PAGE (registered last: catches every single-segment path)
# =============================================================================

@router.get("/{store_id}", response_class=HTMLResponse, tags=["Display"])
async def display_page(
    request: Request,
    store_id: str,
    backend: BaseBackendService = Depends(get_backend),
    query_client: QueryClient = Depends(get_query_client),
    settings: Settings = Depends(get_app_settings),
):
    """Customer-facing order board of a store."""
    board = await fetch_board(
        store_id,
        backend,
        query_client,
        stale_time=settings.display_refetch_interval_seconds,
        stale_after=settings.display_stale_after_seconds,
    )
    return templates.TemplateResponse(
        request,
        "display.html",
        {"board": board, "tz": settings.display_timezone},
    )


# =============================================================================
# APPLICATION FACTORY
# =============================================================================

def create_app(
    settings: Optional[Settings] = None,
    backend: Optional[BaseBackendService] = None,
    query_client: Optional[QueryClient] = None,
) -> FastAPI:
    """
    Build the application.

    ``backend`` and ``query_client`` default to the configured backend
    and a fresh cache, created when the application starts.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Restaurant order-status board with admin dashboard.",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings
    app.state.backend = backend
    app.state.query_client = query_client

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def sync_session_cookies(request: Request, call_next):
        """Write renewed tokens, drop tokens the auth service rejected."""
        response = await call_next(request)
        context = getattr(request.state, "auth", None)
        if context is None:
            return response
        if context.refreshed:
            _set_session_cookies(response, context.session, settings)
        elif not context.is_authenticated and request.cookies.get(settings.session_cookie_name):
            _clear_session_cookies(response, settings)
        return response

    # =========================================================================
    # ERROR HANDLERS
    # =========================================================================

    @app.exception_handler(LoginRequired)
    async def login_required_handler(request: Request, exc: LoginRequired) -> RedirectResponse:
        return _redirect("/auth")

    @app.exception_handler(BackendError)
    async def backend_error_handler(request: Request, exc: BackendError) -> Response:
        is_api = request.url.path.startswith("/api/")

        if isinstance(exc, AuthError) and not is_api:
            # Session died between resolution and use
            response = _redirect("/auth")
            _clear_session_cookies(response, settings)
            return response

        if isinstance(exc, NotFoundError):
            status_code = status.HTTP_404_NOT_FOUND
        elif isinstance(exc, AuthError):
            status_code = status.HTTP_401_UNAUTHORIZED
        else:
            status_code = status.HTTP_502_BAD_GATEWAY
            logger.error(f"Backend error on {request.url.path}: {exc}")

        if is_api:
            return JSONResponse(
                status_code=status_code,
                content=ErrorResponse(error=type(exc).__name__, detail=str(exc)).model_dump(),
            )
        return templates.TemplateResponse(
            request,
            "error.html",
            {"status_code": status_code, "message": str(exc)},
            status_code=status_code,
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all exception handler."""
        logger.exception(f"Unhandled exception: {exc}")

        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="Internal Server Error",
                detail=str(exc) if settings.debug else "An unexpected error occurred",
            ).model_dump(),
        )

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run("orderboard.main:app", host=_settings.api_host, port=_settings.api_port, reload=_settings.debug)
