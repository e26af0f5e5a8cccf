"""Route guard: decides, per request, whether to pass or redirect.

The guard is a small state machine evaluated fresh for every request:

    CONFIGURED    backend credentials present and the session check succeeded
    UNCONFIGURED  no credentials, or placeholder values (demo mode)
    CHECK_FAILED  the session check or refresh raised (network failure,
                  provider outage)

UNCONFIGURED and CHECK_FAILED both take the DemoModeFallback branch: the root
path redirects to the landing page and everything else passes through. The
guard never blocks navigation because of its own failure.

In CONFIGURED, rules apply in order:

    1. auth page with session       → landing page
    2. protected path, no session   → login page
    3. root with session            → landing page
    4. root, no session             → login page
    5. anything else                → pass
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import Protocol

import jwt as pyjwt
from flowcaser_shared.auth_models import Session
from flowcaser_shared.errors import AuthError
from flowcaser_shared.paths import (
    LANDING_PATH,
    LOGIN_PATH,
    is_auth_page,
    is_protected,
    is_root,
)
from flowcaser_shared.settings import Settings
from pydantic import BaseModel

from flowcaser_auth.gotrue import GoTrueClient, http_status
from flowcaser_auth.jwt import verify_token

logger = logging.getLogger(__name__)


class GuardState(StrEnum):
    CONFIGURED = "configured"
    UNCONFIGURED = "unconfigured"
    CHECK_FAILED = "check_failed"


class GuardAction(StrEnum):
    PASS = "pass"
    REDIRECT = "redirect"


class GuardDecision(BaseModel):
    """Outcome of one guard evaluation."""

    action: GuardAction
    location: str | None = None
    state: GuardState
    reason: str
    # Set when the guard refreshed an expired session on the way
    refreshed: Session | None = None

    @property
    def is_redirect(self) -> bool:
        return self.action == GuardAction.REDIRECT


class SessionChecker(Protocol):
    """Answers "does this token belong to a valid session?".

    Returns False for missing or invalid tokens. Raises when the answer cannot
    be determined; the guard treats that as CHECK_FAILED.
    """

    async def __call__(self, token: str | None) -> bool: ...


class JwtSessionChecker:
    """Verifies the access token locally with the project's JWT secret."""

    def __init__(self, jwt_secret: str) -> None:
        self._jwt_secret = jwt_secret

    async def __call__(self, token: str | None) -> bool:
        if not token:
            return False
        try:
            verify_token(token, self._jwt_secret)
        except pyjwt.InvalidTokenError as e:
            logger.debug(f"Rejected access token: {e}")
            return False
        return True


class RemoteSessionChecker:
    """Asks GoTrue whether the access token is still valid."""

    def __init__(self, gotrue: GoTrueClient) -> None:
        self._gotrue = gotrue

    async def __call__(self, token: str | None) -> bool:
        if not token:
            return False
        return await self._gotrue.get_user(token) is not None


def build_session_checker(settings: Settings) -> SessionChecker:
    """Prefer local verification; fall back to a GoTrue round-trip."""
    if settings.jwt_secret:
        return JwtSessionChecker(settings.jwt_secret)
    return RemoteSessionChecker(GoTrueClient.from_settings(settings))


def _redirect(location: str, state: GuardState, reason: str) -> GuardDecision:
    return GuardDecision(
        action=GuardAction.REDIRECT, location=location, state=state, reason=reason
    )


def _pass(state: GuardState, reason: str) -> GuardDecision:
    return GuardDecision(action=GuardAction.PASS, state=state, reason=reason)


def demo_mode_fallback(path: str, state: GuardState) -> GuardDecision:
    """Permissive branch for UNCONFIGURED and CHECK_FAILED."""
    if is_root(path):
        return _redirect(LANDING_PATH, state, "demo mode: root goes to landing page")
    return _pass(state, "demo mode: all paths allowed")


def route(path: str, has_session: bool) -> GuardDecision:
    """Apply the CONFIGURED rules to a path."""
    state = GuardState.CONFIGURED
    if is_auth_page(path) and has_session:
        return _redirect(LANDING_PATH, state, "already signed in")
    if is_protected(path) and not has_session:
        return _redirect(LOGIN_PATH, state, "protected path requires a session")
    if is_root(path):
        if has_session:
            return _redirect(LANDING_PATH, state, "root with session")
        return _redirect(LOGIN_PATH, state, "root without session")
    return _pass(state, "no rule applies")


class RouteGuard:
    """Stateless request guard. Holds configuration, never per-request state.

    When the access token no longer proves a session but the request also
    carries a refresh token, the guard exchanges it for a new session before
    routing. The new session is returned on the decision so the caller can
    hand the refreshed cookie back to the browser.
    """

    def __init__(
        self,
        settings: Settings,
        checker: SessionChecker | None = None,
        gotrue: GoTrueClient | None = None,
    ) -> None:
        self.settings = settings
        self._checker = checker
        self._gotrue = gotrue

    @classmethod
    def from_env(cls) -> RouteGuard:
        return cls(Settings.from_env())

    def _get_checker(self) -> SessionChecker:
        if self._checker is None:
            self._checker = build_session_checker(self.settings)
        return self._checker

    def _get_gotrue(self) -> GoTrueClient:
        if self._gotrue is None:
            self._gotrue = GoTrueClient.from_settings(self.settings)
        return self._gotrue

    async def _refresh(self, refresh_token: str) -> Session | None:
        """Exchange a refresh token. None when the provider rejects it."""
        try:
            return await self._get_gotrue().refresh_session(refresh_token)
        except AuthError as e:
            status = http_status(e)
            if status is None or status >= 500:
                raise
            logger.info(f"Refresh token rejected ({status}): {e.message}")
            return None

    async def check(
        self, path: str, token: str | None, refresh_token: str | None = None
    ) -> GuardDecision:
        """Evaluate one request. Never raises."""
        if not self.settings.is_configured:
            return demo_mode_fallback(path, GuardState.UNCONFIGURED)

        refreshed: Session | None = None
        try:
            has_session = await self._get_checker()(token)
            if not has_session and refresh_token:
                refreshed = await self._refresh(refresh_token)
                has_session = refreshed is not None
        except Exception as e:
            logger.warning(f"Session check failed for {path}, falling back to demo mode: {e}")
            return demo_mode_fallback(path, GuardState.CHECK_FAILED)

        decision = route(path, has_session)
        if refreshed is not None:
            decision = decision.model_copy(update={"refreshed": refreshed})
        return decision
