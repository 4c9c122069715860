"""
Tests for the in-memory backend service.
"""

import pytest

from orderboard.models import OrderStatus
from orderboard.schemas import OrderCreate
from orderboard.services.backend import (
    AuthError,
    BackendError,
    MockBackendService,
    NotFoundError,
    next_order_number,
)
from tests.conftest import ADMIN_EMAIL, ADMIN_PASSWORD, make_order, minutes_ago, run


@pytest.fixture
def session(backend):
    return run(backend.sign_in(ADMIN_EMAIL, ADMIN_PASSWORD))


class TestOrderNumbers:
    def test_first_order_of_a_store_is_one(self):
        assert next_order_number([]) == 1

    def test_next_after_highest(self):
        orders = [
            make_order("a", OrderStatus.PREPARING, minutes_ago(1), order_number=7),
            make_order("b", OrderStatus.COMPLETED, minutes_ago(2), order_number=3),
        ]
        assert next_order_number(orders) == 8


class TestStores:
    def test_create_and_list(self, backend, session):
        store = run(backend.create_store("Kedai Sudirman", session.access_token))

        stores = run(backend.get_stores(session.access_token))

        assert [s.id for s in stores] == [store.id]
        assert store.owner_id == session.user.id

    def test_stores_are_private_to_their_owner(self, backend, session):
        store = run(backend.create_store("Mine", session.access_token))
        backend.add_user("other@example.com", "pw")
        other = run(backend.sign_in("other@example.com", "pw"))

        assert run(backend.get_stores(other.access_token)) == []
        with pytest.raises(NotFoundError):
            run(backend.update_store(store.id, "Stolen", other.access_token))

    def test_rename(self, backend, session):
        store = run(backend.create_store("Old", session.access_token))

        renamed = run(backend.update_store(store.id, "New", session.access_token))

        assert renamed.name == "New"
        assert run(backend.get_store(store.id)).name == "New"

    def test_delete_cascades_to_orders(self, backend, session):
        store = run(backend.create_store("Temp", session.access_token))
        run(backend.create_order(store.id, OrderCreate(customer_name="Budi"), session.access_token))

        run(backend.delete_store(store.id, session.access_token))

        assert run(backend.get_orders(store.id)) == []
        with pytest.raises(NotFoundError):
            run(backend.get_store(store.id))

    def test_store_mutations_need_a_session(self, backend):
        with pytest.raises(AuthError):
            run(backend.create_store("Nope", "bogus"))


class TestOrders:
    def test_unknown_store_has_no_orders(self, backend):
        assert run(backend.get_orders("missing")) == []

    def test_create_assigns_next_number(self, backend, session):
        store = run(backend.create_store("Kedai", session.access_token))
        token = session.access_token

        first = run(backend.create_order(store.id, OrderCreate(customer_name="Budi"), token))
        second = run(backend.create_order(store.id, OrderCreate(customer_name="Siti"), token))
        explicit = run(backend.create_order(store.id, OrderCreate(customer_name="Andi", order_number=42), token))

        assert (first.order_number, second.order_number, explicit.order_number) == (1, 2, 42)
        assert first.status is OrderStatus.PREPARING

    def test_status_update_bumps_updated_at(self, backend, session):
        store = run(backend.create_store("Kedai", session.access_token))
        order = run(backend.create_order(store.id, OrderCreate(customer_name="Budi"), session.access_token))

        updated = run(backend.update_order_status(order.id, OrderStatus.COMPLETED, session.access_token))

        assert updated.status is OrderStatus.COMPLETED
        assert updated.updated_at >= order.updated_at
        assert run(backend.get_orders(store.id))[0].status is OrderStatus.COMPLETED

    def test_update_unknown_order(self, backend, session):
        with pytest.raises(NotFoundError):
            run(backend.update_order_status("missing", OrderStatus.COMPLETED, session.access_token))

    def test_returned_orders_are_copies(self, backend, session):
        store = run(backend.create_store("Kedai", session.access_token))
        run(backend.create_order(store.id, OrderCreate(customer_name="Budi"), session.access_token))

        run(backend.get_orders(store.id))[0].customer_name = "Changed"

        assert run(backend.get_orders(store.id))[0].customer_name == "Budi"


class TestAuth:
    def test_sign_in_rejects_bad_password(self, backend):
        with pytest.raises(AuthError):
            run(backend.sign_in(ADMIN_EMAIL, "wrong"))

    def test_email_is_case_insensitive(self, backend):
        session = run(backend.sign_in(ADMIN_EMAIL.upper(), ADMIN_PASSWORD))
        assert session.user.email == ADMIN_EMAIL

    def test_get_user_for_session(self, backend, session):
        assert run(backend.get_user(session.access_token)) == session.user

    def test_expired_token_rejected(self):
        backend = MockBackendService(users={ADMIN_EMAIL: ADMIN_PASSWORD}, session_ttl_seconds=0)
        session = run(backend.sign_in(ADMIN_EMAIL, ADMIN_PASSWORD))

        with pytest.raises(AuthError):
            run(backend.get_user(session.access_token))

    def test_refresh_issues_new_session_once(self, backend, session):
        renewed = run(backend.refresh_session(session.refresh_token))

        assert renewed.access_token != session.access_token
        assert renewed.user == session.user
        with pytest.raises(AuthError):
            run(backend.refresh_session(session.refresh_token))

    def test_sign_out_revokes_tokens(self, backend, session):
        run(backend.sign_out(session.access_token))

        with pytest.raises(AuthError):
            run(backend.get_user(session.access_token))
        with pytest.raises(AuthError):
            run(backend.refresh_session(session.refresh_token))


class TestSimulation:
    def test_failure_rate_raises_backend_error(self):
        backend = MockBackendService(failure_rate=1.0)

        with pytest.raises(BackendError):
            run(backend.get_orders("store-1"))
        assert backend.request_count == 1

    def test_seed_demo_data(self, backend):
        store = backend.seed_demo_data(ADMIN_EMAIL)

        orders = run(backend.get_orders(store.id))

        assert len(orders) == 4
        assert {o.status for o in orders} == {OrderStatus.PREPARING, OrderStatus.COMPLETED}

    def test_health_check(self, backend):
        assert run(backend.health_check()) is True
