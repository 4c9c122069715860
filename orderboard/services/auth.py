"""
Session Provider

Resolves the admin behind a request into an explicit AuthContext.

A request is authenticated only when both a user record and a session
are present. Expired access tokens are renewed with the refresh token;
a session the auth service no longer accepts ends as unauthenticated.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from orderboard.models import AuthSession, User
from orderboard.services.backend import AuthError, BaseBackendService

logger = logging.getLogger(__name__)


class AuthState(str, Enum):
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"


@dataclass(frozen=True)
class AuthContext:
    """
    Read-only view of the current admin.

    Attributes:
        user: Signed-in user, if any
        session: Tokens of that user, if any
        refreshed: The session was renewed while resolving this request
            and its cookies must be rewritten
    """
    user: Optional[User] = None
    session: Optional[AuthSession] = None
    refreshed: bool = False

    @property
    def state(self) -> AuthState:
        if self.user is not None and self.session is not None:
            return AuthState.AUTHENTICATED
        return AuthState.UNAUTHENTICATED

    @property
    def is_authenticated(self) -> bool:
        return self.state is AuthState.AUTHENTICATED

    @property
    def access_token(self) -> Optional[str]:
        return self.session.access_token if self.session else None


ANONYMOUS = AuthContext()


class SessionProvider:
    """Signs admins in and out and resolves session cookies."""

    def __init__(self, backend: BaseBackendService):
        self.backend = backend

    async def sign_in(self, email: str, password: str) -> AuthContext:
        """
        Raises:
            AuthError: If the credentials are rejected
        """
        session = await self.backend.sign_in(email, password)
        logger.info(f"Admin signed in: {session.user.email}")
        return AuthContext(user=session.user, session=session)

    async def resolve(
        self,
        access_token: Optional[str],
        refresh_token: Optional[str] = None,
    ) -> AuthContext:
        """
        Turn the tokens of a request into an AuthContext.

        Network failures propagate as BackendError; only a rejected
        session yields ANONYMOUS.
        """
        if access_token:
            try:
                user = await self.backend.get_user(access_token)
                session = AuthSession(
                    access_token=access_token,
                    refresh_token=refresh_token,
                    user=user,
                )
                return AuthContext(user=user, session=session)
            except AuthError as e:
                logger.info(f"Access token rejected: {e}")

        if refresh_token:
            try:
                session = await self.backend.refresh_session(refresh_token)
            except AuthError as e:
                logger.info(f"Session expired: {e}")
                return ANONYMOUS
            logger.info(f"Session refreshed for {session.user.email}")
            return AuthContext(user=session.user, session=session, refreshed=True)

        return ANONYMOUS

    async def sign_out(self, context: AuthContext) -> None:
        if context.access_token is None:
            return
        try:
            await self.backend.sign_out(context.access_token)
        except AuthError:
            # Already revoked or expired on the auth service
            pass
        logger.info(f"Admin signed out: {context.user.email if context.user else 'unknown'}")
