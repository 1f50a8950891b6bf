# clubspace/core/session.py
"""
Explicit session context for the messaging client.

The session is owned by one SessionContext instance that is injected into the
gateway, the realtime router and the messaging client. Components that hold
per-user state register an identity listener and rebuild or tear down that
state when the signed-in user changes.

Lifecycle:
    context = SessionContext(provider)
    await context.initialize()      # on app start: fetch the current session
    await context.sign_in(session)  # login
    await context.sign_out()        # logout: listeners tear down subscriptions
"""

import logging
from typing import Awaitable, Callable, List, Optional

from pydantic import BaseModel, ConfigDict, SecretStr

from .exceptions import UnauthorizedException

logger = logging.getLogger(__name__)


class AuthSession(BaseModel):
    """Authenticated session issued by the auth platform."""

    user_id: str
    access_token: Optional[SecretStr] = None
    email: Optional[str] = None

    model_config = ConfigDict(frozen=True)


AuthProvider = Callable[[], Awaitable[Optional[AuthSession]]]
IdentityListener = Callable[[Optional[str], Optional[str]], Awaitable[None]]


class SessionContext:
    """Holds the current session and broadcasts identity changes."""

    def __init__(self, provider: Optional[AuthProvider] = None) -> None:
        self._provider = provider
        self._session: Optional[AuthSession] = None
        self._listeners: List[IdentityListener] = []

    @property
    def session(self) -> Optional[AuthSession]:
        return self._session

    @property
    def user_id(self) -> Optional[str]:
        return self._session.user_id if self._session else None

    @property
    def is_authenticated(self) -> bool:
        return self._session is not None

    def require_user(self) -> str:
        """Return the signed-in user id or raise UnauthorizedException."""
        if self._session is None:
            raise UnauthorizedException("Not signed in", code="NO_SESSION")
        return self._session.user_id

    def add_listener(self, listener: IdentityListener) -> Callable[[], None]:
        """
        Register a coroutine called with (previous_user_id, current_user_id).

        Returns a callable that removes the listener.
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def initialize(self) -> Optional[AuthSession]:
        """Fetch the current session from the auth provider, if one is configured."""
        if self._provider is None:
            return self._session
        session = await self._provider()
        await self._set_session(session)
        logger.info(
            "[SESSION] Initialized",
            extra={"user_id": session.user_id if session else None},
        )
        return session

    async def sign_in(self, session: AuthSession) -> None:
        await self._set_session(session)
        logger.info("[SESSION] Signed in", extra={"user_id": session.user_id})

    async def sign_out(self) -> None:
        previous = self.user_id
        await self._set_session(None)
        logger.info("[SESSION] Signed out", extra={"user_id": previous})

    async def _set_session(self, session: Optional[AuthSession]) -> None:
        previous = self.user_id
        self._session = session
        current = self.user_id
        if previous == current:
            return
        for listener in list(self._listeners):
            try:
                await listener(previous, current)
            except Exception as e:
                logger.error(
                    f"[SESSION] Identity listener failed: {e}",
                    exc_info=True,
                    extra={"previous_user_id": previous, "user_id": current},
                )
