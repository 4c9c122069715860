"""
Tests for the HTTP surface: auth flow, admin dashboard, public display
and JSON API.
"""

import asyncio
import json
import uuid

import pytest
from fastapi.testclient import TestClient

from orderboard.core.config import Settings
from orderboard.main import _board_payload, create_app
from orderboard.models import OrderStatus
from orderboard.schemas import OrderCreate
from orderboard.services.display import build_board, orders_key
from orderboard.services.query import QueryClient, QueryState
from tests.conftest import ADMIN_EMAIL, ADMIN_PASSWORD, make_order, minutes_ago, run, wait_until

ACCESS_COOKIE = "orderboard_access_token"
REFRESH_COOKIE = "orderboard_refresh_token"


@pytest.fixture
def session(backend):
    return run(backend.sign_in(ADMIN_EMAIL, ADMIN_PASSWORD))


@pytest.fixture
def store(backend, session):
    store = run(backend.create_store("Kedai Sudirman", session.access_token))
    for name in ("Budi", "Siti"):
        run(backend.create_order(store.id, OrderCreate(customer_name=name), session.access_token))
    return store


class TestAuthRoutes:
    def test_root_redirects_to_auth(self, client):
        response = client.get("/", follow_redirects=False)

        assert response.status_code == 303
        assert response.headers["location"] == "/auth"

    def test_admin_requires_session(self, client):
        response = client.get("/admin", follow_redirects=False)

        assert response.status_code == 303
        assert response.headers["location"] == "/auth"

    def test_store_admin_requires_session(self, client, store):
        response = client.get(f"/admin/{store.id}", follow_redirects=False)
        assert response.headers["location"] == "/auth"

    def test_sign_in_page(self, client):
        response = client.get("/auth")

        assert response.status_code == 200
        assert "Masuk Admin" in response.text

    def test_bad_credentials_rerender_form(self, client):
        response = client.post("/auth", data={"email": ADMIN_EMAIL, "password": "wrong"})

        assert response.status_code == 401
        assert "Email atau kata sandi salah" in response.text
        assert ACCESS_COOKIE not in client.cookies

    def test_empty_form(self, client):
        response = client.post("/auth", data={})
        assert response.status_code == 422

    def test_sign_in_sets_session_cookies(self, client):
        response = client.post(
            "/auth",
            data={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD},
            follow_redirects=False,
        )

        assert response.status_code == 303
        assert response.headers["location"] == "/admin"
        assert client.cookies[ACCESS_COOKIE].startswith("mock_at_")
        assert client.cookies[REFRESH_COOKIE].startswith("mock_rt_")

    def test_signed_in_admin_skips_sign_in_page(self, admin_client):
        response = admin_client.get("/auth", follow_redirects=False)
        assert response.headers["location"] == "/admin"

    def test_sign_out(self, admin_client):
        response = admin_client.post("/auth/logout", follow_redirects=False)

        assert response.headers["location"] == "/auth"
        assert ACCESS_COOKIE not in admin_client.cookies
        assert admin_client.get("/admin", follow_redirects=False).status_code == 303

    def test_expired_access_token_is_renewed(self, client, session):
        client.cookies.set(ACCESS_COOKIE, "expired")
        client.cookies.set(REFRESH_COOKIE, session.refresh_token)

        response = client.get("/admin", follow_redirects=False)

        assert response.status_code == 200
        renewed = response.cookies.get(ACCESS_COOKIE)
        assert renewed and renewed != session.access_token

    def test_rejected_session_clears_cookies(self, client):
        client.cookies.set(ACCESS_COOKIE, "expired")

        response = client.get("/admin", follow_redirects=False)

        assert response.status_code == 303
        cleared = response.headers.get_list("set-cookie")
        assert any(c.startswith(f'{ACCESS_COOKIE}=""') for c in cleared)


class TestStoreAdmin:
    def test_lists_own_stores(self, admin_client, store):
        response = admin_client.get("/admin")

        assert response.status_code == 200
        assert "Kedai Sudirman" in response.text
        assert f"/admin/{store.id}" in response.text

    def test_create_store(self, admin_client, backend, session):
        response = admin_client.post("/admin/stores", data={"name": "  Kedai Baru  "})

        assert response.status_code == 200
        assert "Kedai Baru" in response.text
        names = [s.name for s in run(backend.get_stores(session.access_token))]
        assert names == ["Kedai Baru"]

    def test_blank_store_name_is_rejected(self, admin_client, backend, session):
        response = admin_client.post("/admin/stores", data={"name": "   "}, follow_redirects=False)

        assert response.status_code == 303
        assert "notice=" in response.headers["location"]
        assert run(backend.get_stores(session.access_token)) == []

    def test_rename_store(self, admin_client, backend, store):
        admin_client.post(f"/admin/stores/{store.id}", data={"name": "Kedai Thamrin"})

        assert run(backend.get_store(store.id)).name == "Kedai Thamrin"

    def test_delete_store(self, admin_client, backend, store):
        response = admin_client.post(f"/admin/stores/{store.id}/delete")

        assert response.status_code == 200
        assert "Toko dihapus" in response.text
        assert run(backend.get_orders(store.id)) == []

    def test_store_list_reflects_changes_immediately(self, admin_client, store):
        assert "Kedai Sudirman" in admin_client.get("/admin").text

        admin_client.post(f"/admin/stores/{store.id}", data={"name": "Kedai Thamrin"})

        assert "Kedai Thamrin" in admin_client.get("/admin").text


class TestOrderAdmin:
    def test_order_page(self, admin_client, store):
        response = admin_client.get(f"/admin/{store.id}")

        assert response.status_code == 200
        assert "Budi" in response.text and "Siti" in response.text

    def test_unknown_store(self, admin_client):
        assert admin_client.get("/admin/missing").status_code == 404

    def test_other_owners_store_is_hidden(self, admin_client, backend):
        backend.add_user("other@example.com", "pw")
        other = run(backend.sign_in("other@example.com", "pw"))
        foreign = run(backend.create_store("Foreign", other.access_token))

        assert admin_client.get(f"/admin/{foreign.id}").status_code == 404

    def test_create_order(self, admin_client, backend, store):
        response = admin_client.post(f"/admin/{store.id}/orders", data={"customer_name": "Andi"})

        assert response.status_code == 200
        assert "Pesanan #3 dibuat" in response.text
        assert "Andi" in response.text

    def test_create_order_with_number(self, admin_client, backend, store):
        admin_client.post(f"/admin/{store.id}/orders", data={"customer_name": "Dewi", "order_number": "17"})

        numbers = {o.order_number for o in run(backend.get_orders(store.id))}
        assert 17 in numbers

    def test_invalid_order_number(self, admin_client, backend, store):
        response = admin_client.post(
            f"/admin/{store.id}/orders",
            data={"customer_name": "Dewi", "order_number": "abc"},
            follow_redirects=False,
        )

        assert response.status_code == 303
        assert len(run(backend.get_orders(store.id))) == 2

    def test_update_status(self, admin_client, backend, store):
        order = run(backend.get_orders(store.id))[0]

        admin_client.post(
            f"/admin/{store.id}/orders/{order.id}/status",
            data={"status": "completed"},
        )

        updated = next(o for o in run(backend.get_orders(store.id)) if o.id == order.id)
        assert updated.status is OrderStatus.COMPLETED

    def test_unknown_status_is_rejected(self, admin_client, backend, store):
        order = run(backend.get_orders(store.id))[0]

        response = admin_client.post(
            f"/admin/{store.id}/orders/{order.id}/status",
            data={"status": "refunded"},
            follow_redirects=False,
        )

        assert response.status_code == 303
        assert run(backend.get_orders(store.id))[0].status is OrderStatus.PREPARING

    def test_backend_outage_shows_error_page(self, admin_client, backend, store):
        backend.failure_rate = 1.0

        response = admin_client.get(f"/admin/{store.id}")

        assert response.status_code == 502
        assert "Layanan tidak tersedia" in response.text


class TestPublicDisplay:
    def test_display_page_renders_orders(self, client, store):
        response = client.get(f"/{store.id}")

        assert response.status_code == 200
        assert "Sedang di Masak" in response.text
        assert "Budi" in response.text
        assert f'data-store="{store.id}"' in response.text
        assert 'class="problem" hidden>' in response.text

    def test_display_does_not_shadow_auth(self, client):
        assert "Masuk Admin" in client.get("/auth").text

    def test_display_snapshot(self, client, backend, session, store):
        order = run(backend.get_orders(store.id))[0]
        run(backend.update_order_status(order.id, OrderStatus.COMPLETED, session.access_token))

        data = client.get(f"/api/display/{store.id}").json()

        assert [o["id"] for o in data["completed"]] == [order.id]
        assert len(data["preparing"]) == 1
        assert data["is_stale"] is False
        assert data["seconds_since_update"] == 0
        assert data["last_error"] is None

    def test_unknown_store_shows_empty_board(self, client):
        data = client.get("/api/display/missing").json()

        assert data["preparing"] == [] and data["completed"] == []
        assert data["is_stale"] is False

    def test_outage_degrades_to_cached_orders(self, client, backend, app, store):
        client.get(f"/api/display/{store.id}")
        app.state.query_client.invalidate(("orders",))
        backend.failure_rate = 1.0

        response = client.get(f"/api/display/{store.id}")

        assert response.status_code == 200
        data = response.json()
        assert len(data["preparing"]) == 2
        assert data["last_error"] == "Simulated network failure"

    def test_outage_without_cache_shows_empty_stale_board(self, client, backend, store):
        backend.failure_rate = 1.0

        response = client.get(f"/{store.id}")

        assert response.status_code == 200
        assert 'class="problem">' in response.text
        assert "Belum diperbarui" in response.text


@pytest.fixture
def stream_app(backend):
    settings = Settings(_env_file=None, env_mode="development", display_refetch_interval_seconds=0.05)
    return create_app(settings=settings, backend=backend, query_client=QueryClient(retry=0))


async def read_board_events(app, path: str, count: int) -> tuple[list[dict], list[int]]:
    """
    Call the ASGI app directly and disconnect after ``count`` board events.

    TestClient buffers the whole body, which never ends for an event stream.
    Returns the decoded payloads and the poller count seen with each one.
    """
    events: list[dict] = []
    pollers: list[int] = []
    disconnected = asyncio.Event()
    request_sent = False

    async def receive():
        nonlocal request_sent
        if not request_sent:
            request_sent = True
            return {"type": "http.request", "body": b"", "more_body": False}
        await disconnected.wait()
        return {"type": "http.disconnect"}

    async def send(message):
        if message["type"] != "http.response.body" or disconnected.is_set():
            return
        for chunk in message.get("body", b"").decode().split("\n\n"):
            lines = chunk.splitlines()
            if len(lines) == 2 and lines[0] == "event: board":
                events.append(json.loads(lines[1].removeprefix("data: ")))
                pollers.append(app.state.query_client.active_pollers)
        if len(events) >= count:
            disconnected.set()

    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "GET",
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "query_string": b"",
        "headers": [(b"host", b"testserver"), (b"accept", b"text/event-stream")],
        "client": ("testclient", 50000),
        "server": ("testserver", 80),
    }
    await asyncio.wait_for(app(scope, receive, send), timeout=10)
    return events, pollers


class TestDisplayStream:
    def test_stream_pushes_boards_while_open(self, stream_app, backend, store):
        query_client = stream_app.state.query_client

        async def scenario():
            async with stream_app.router.lifespan_context(stream_app):
                events, pollers = await read_board_events(
                    stream_app, f"/api/display/{store.id}/stream", count=3
                )
                await wait_until(lambda: query_client.active_pollers == 0)
                requests = backend.request_count
                await asyncio.sleep(0.25)
                return events, pollers, requests

        events, pollers, requests = run(scenario())

        assert len(events) == 3
        assert pollers == [1, 1, 1]
        assert events[-1]["preparing_count"] == 2
        assert "Budi" in events[-1]["html"] and "Siti" in events[-1]["html"]
        # Nothing polls the store once the stream is gone
        assert backend.request_count == requests

    def test_concurrent_streams_share_one_poller(self, stream_app, store):
        query_client = stream_app.state.query_client
        path = f"/api/display/{store.id}/stream"

        async def scenario():
            async with stream_app.router.lifespan_context(stream_app):
                results = await asyncio.gather(
                    read_board_events(stream_app, path, count=2),
                    read_board_events(stream_app, path, count=2),
                )
                await wait_until(lambda: query_client.active_pollers == 0)
                return results

        results = run(scenario())

        for events, pollers in results:
            assert len(events) == 2
            assert set(pollers) == {1}


class TestOrdersApi:
    def test_list_orders(self, client, store):
        data = client.get(f"/api/stores/{store.id}/orders").json()

        assert data["store_id"] == store.id
        assert data["total"] == 2
        assert {o["customer_name"] for o in data["orders"]} == {"Budi", "Siti"}

    def test_outage_is_bad_gateway(self, client, backend, store):
        backend.failure_rate = 1.0

        response = client.get(f"/api/stores/{store.id}/orders")

        assert response.status_code == 502
        assert response.json()["success"] is False


class TestHealth:
    def test_health(self, client):
        data = client.get("/health").json()

        assert data["status"] == "operational"
        assert data["backend_provider"] == "mock"
        assert data["active_pollers"] == 0


class TestQueryCacheBounds:
    def test_unknown_store_ids_do_not_accumulate(self, settings, backend):
        query_client = QueryClient(retry=0, gc_time=0.0)
        app = create_app(settings=settings, backend=backend, query_client=query_client)
        store_ids = [str(uuid.uuid4()) for _ in range(50)]

        with TestClient(app) as client:
            for store_id in store_ids:
                assert client.get(f"/api/display/{store_id}").status_code == 200

            assert query_client.cached_keys == [orders_key(store_ids[-1])]


class TestBoardPayload:
    def test_payload_renders_board_partial(self, settings):
        state = QueryState(
            data=[
                make_order("1", OrderStatus.PREPARING, minutes_ago(2), customer_name="Budi", order_number=4),
                make_order("2", OrderStatus.COMPLETED, minutes_ago(1), customer_name="Siti", order_number=5),
            ],
            data_updated_at=1000.0,
        )
        board = build_board("store-1", state, now=1040.0)

        payload = _board_payload(board, settings)

        assert payload["is_stale"] is True
        assert payload["preparing_count"] == 1
        assert payload["completed_count"] == 1
        assert payload["updated_label"] == "Diperbarui 40 detik lalu"
        assert "Budi" in payload["html"] and "Siti" in payload["html"]
        assert "Dimasak (1)" in payload["html"]

    def test_only_preparing_cards_carry_spinner(self, settings):
        state = QueryState(
            data=[make_order("2", OrderStatus.COMPLETED, minutes_ago(1), customer_name="Siti")],
            data_updated_at=1000.0,
        )
        completed_only = _board_payload(build_board("store-1", state, now=1000.0), settings)

        state.data.append(make_order("1", OrderStatus.PREPARING, minutes_ago(2), customer_name="Budi"))
        with_preparing = _board_payload(build_board("store-1", state, now=1000.0), settings)

        assert 'class="spinner"' not in completed_only["html"]
        assert with_preparing["html"].count('class="spinner"') == 1
