"""Per-tab auth client: current session plus session-change notifications.

Mirrors the contract of the Supabase JS auth client that the front-end was
built against:

  - `get_session()` returns the current session, refreshing it first when the
    access token is about to expire. A failed refresh drops the session.
  - `on_auth_state_change(handler)` registers an async handler that receives
    `(event, session)` for every sign-in, sign-out and token refresh, and
    returns a Subscription to cancel it.

Handlers are awaited in registration order. A handler that raises is logged
and skipped; it never prevents the others from running and never reaches the
caller of the operation that triggered the event.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum

from flowcaser_shared.auth_models import AuthUser, Session
from flowcaser_shared.errors import AuthError

from flowcaser_auth.gotrue import GoTrueClient

logger = logging.getLogger(__name__)

# Refresh this many seconds before the access token actually expires
EXPIRY_MARGIN_SECONDS = 10


class AuthChangeEvent(StrEnum):
    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"


AuthChangeHandler = Callable[[AuthChangeEvent, Session | None], Awaitable[None]]


@dataclass(eq=False)
class Subscription:
    """Handle returned by `on_auth_state_change`."""

    handler: AuthChangeHandler
    _owner: AuthClient = field(repr=False)
    active: bool = True

    def unsubscribe(self) -> None:
        if self.active:
            self._owner._subscriptions.remove(self)
            self.active = False


class AuthClient:
    """Holds the current session for one browser tab."""

    def __init__(self, gotrue: GoTrueClient, session: Session | None = None) -> None:
        self.gotrue = gotrue
        self._session = session
        self._subscriptions: list[Subscription] = []

    async def close(self) -> None:
        await self.gotrue.close()

    def on_auth_state_change(self, handler: AuthChangeHandler) -> Subscription:
        subscription = Subscription(handler=handler, _owner=self)
        self._subscriptions.append(subscription)
        return subscription

    async def _notify(self, event: AuthChangeEvent, session: Session | None) -> None:
        logger.debug(f"Auth state change: {event}")
        for subscription in list(self._subscriptions):
            try:
                await subscription.handler(event, session)
            except Exception:
                logger.warning(f"Auth state handler failed on {event}", exc_info=True)

    async def get_session(self) -> Session | None:
        """Return the current session, refreshing it transparently when expired."""
        session = self._session
        if session is None or not session.is_expired(EXPIRY_MARGIN_SECONDS):
            return session

        try:
            refreshed = await self.gotrue.refresh_session(session.refresh_token)
        except AuthError as e:
            logger.info(f"Session refresh failed, signing out locally: {e.message}")
            self._session = None
            await self._notify(AuthChangeEvent.SIGNED_OUT, None)
            return None

        self._session = refreshed
        await self._notify(AuthChangeEvent.TOKEN_REFRESHED, refreshed)
        return refreshed

    async def sign_up(
        self, email: str, password: str, full_name: str
    ) -> tuple[AuthUser, Session | None]:
        user, session = await self.gotrue.sign_up(
            email, password, data={"full_name": full_name}
        )
        if session is not None:
            self._session = session
            await self._notify(AuthChangeEvent.SIGNED_IN, session)
        return user, session

    async def sign_in(self, email: str, password: str) -> Session:
        session = await self.gotrue.sign_in_with_password(email, password)
        self._session = session
        await self._notify(AuthChangeEvent.SIGNED_IN, session)
        return session

    async def sign_out(self) -> None:
        """Revoke the session server-side, then forget it locally.

        An expired or already revoked token still signs out locally. Any
        other provider failure is raised and the local session is kept, so the
        caller still sees the user as signed in.
        """
        if self._session is not None:
            await self.gotrue.sign_out(self._session.access_token)
        self._session = None
        await self._notify(AuthChangeEvent.SIGNED_OUT, None)

    async def reset_password(self, email: str, redirect_to: str | None = None) -> None:
        await self.gotrue.reset_password_for_email(email, redirect_to)
