"""
Tests for services/auth module (session resolution).
"""

import pytest

from orderboard.services.auth import ANONYMOUS, AuthContext, AuthState, SessionProvider
from orderboard.services.backend import AuthError, BackendError
from tests.conftest import ADMIN_EMAIL, ADMIN_PASSWORD, run


@pytest.fixture
def sessions(backend):
    return SessionProvider(backend)


class TestAuthContext:
    def test_anonymous(self):
        assert ANONYMOUS.state is AuthState.UNAUTHENTICATED
        assert ANONYMOUS.access_token is None

    def test_user_without_session_is_not_authenticated(self, backend):
        user = backend.add_user("x@example.com", "pw")
        assert not AuthContext(user=user).is_authenticated


class TestSessionProvider:
    def test_sign_in(self, sessions):
        context = run(sessions.sign_in(ADMIN_EMAIL, ADMIN_PASSWORD))

        assert context.is_authenticated
        assert context.user.email == ADMIN_EMAIL
        assert not context.refreshed

    def test_sign_in_rejected(self, sessions):
        with pytest.raises(AuthError):
            run(sessions.sign_in(ADMIN_EMAIL, "wrong"))

    def test_resolve_valid_token(self, sessions):
        signed_in = run(sessions.sign_in(ADMIN_EMAIL, ADMIN_PASSWORD))

        context = run(sessions.resolve(signed_in.access_token, signed_in.session.refresh_token))

        assert context.state is AuthState.AUTHENTICATED
        assert context.user == signed_in.user
        assert not context.refreshed

    def test_resolve_without_tokens(self, sessions):
        assert run(sessions.resolve(None)) is ANONYMOUS

    def test_resolve_renews_rejected_token(self, sessions):
        signed_in = run(sessions.sign_in(ADMIN_EMAIL, ADMIN_PASSWORD))

        context = run(sessions.resolve("expired-token", signed_in.session.refresh_token))

        assert context.is_authenticated
        assert context.refreshed
        assert context.access_token != signed_in.access_token

    def test_resolve_with_dead_refresh_token(self, sessions):
        assert run(sessions.resolve("expired-token", "dead-refresh")) is ANONYMOUS

    def test_network_failure_propagates(self, backend, sessions):
        signed_in = run(sessions.sign_in(ADMIN_EMAIL, ADMIN_PASSWORD))
        backend.failure_rate = 1.0

        with pytest.raises(BackendError):
            run(sessions.resolve(signed_in.access_token))

    def test_sign_out(self, backend, sessions):
        context = run(sessions.sign_in(ADMIN_EMAIL, ADMIN_PASSWORD))

        run(sessions.sign_out(context))

        assert run(sessions.resolve(context.access_token)) is ANONYMOUS

    def test_sign_out_anonymous_is_noop(self, backend, sessions):
        run(sessions.sign_out(ANONYMOUS))
        assert backend.request_count == 0
