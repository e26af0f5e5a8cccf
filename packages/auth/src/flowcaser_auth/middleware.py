"""ASGI middleware that runs the route guard in front of every page request.

Usage:
    from starlette.applications import Starlette
    from flowcaser_auth.middleware import RouteGuardMiddleware

    app = Starlette(routes=[...])
    app.add_middleware(RouteGuardMiddleware, guard=RouteGuard.from_env())

Exempt paths (API routes, static assets, framework internals) are forwarded
without consulting the guard. Redirects use 307 so the method is preserved.
Paths are matched relative to the app's mount point (`root_path`), and
redirect locations stay under it.

When the guard refreshed an expired session, the new tokens are written back
as cookies on whatever response goes out, redirect or page.
"""

from __future__ import annotations

import logging

from flowcaser_shared.auth_models import Session
from flowcaser_shared.paths import EXEMPT_PREFIXES, is_exempt
from starlette.datastructures import MutableHeaders
from starlette.requests import Request
from starlette.responses import RedirectResponse, Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from flowcaser_auth.guard import GuardState, RouteGuard, demo_mode_fallback
from flowcaser_auth.jwt import (
    LEGACY_COOKIE,
    LEGACY_REFRESH_COOKIE,
    SessionTokens,
    auth_cookie_name,
    encode_session_cookie,
    extract_session_tokens,
)

logger = logging.getLogger(__name__)

# Browsers cap cookie lifetime at 400 days
SESSION_COOKIE_MAX_AGE = 400 * 24 * 60 * 60


class RouteGuardMiddleware:
    def __init__(
        self,
        app: ASGIApp,
        guard: RouteGuard | None = None,
        exempt_prefixes: tuple[str, ...] = EXEMPT_PREFIXES,
    ) -> None:
        self.app = app
        self.guard = guard or RouteGuard.from_env()
        self.exempt_prefixes = exempt_prefixes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        root_path = scope.get("root_path", "")
        path = scope["path"]
        # Depending on the Starlette version, a Mount may or may not strip its prefix
        if root_path and path.startswith(root_path):
            path = path[len(root_path):] or "/"

        if is_exempt(path, self.exempt_prefixes):
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        tokens = SessionTokens(None)
        try:
            tokens = extract_session_tokens(request.cookies, request.headers.get("authorization"))
        except Exception:
            logger.warning(f"Could not read session cookie for {path}", exc_info=True)
            decision = demo_mode_fallback(path, GuardState.CHECK_FAILED)
        else:
            decision = await self.guard.check(path, tokens.access_token, tokens.refresh_token)

        cookies: list[str] = []
        if decision.refreshed is not None:
            cookies = self._session_cookies(decision.refreshed, tokens, request.url.scheme == "https")

        if decision.is_redirect and decision.location:
            location = root_path + decision.location
            logger.debug(f"Redirecting {path} → {location} ({decision.reason})")
            response = RedirectResponse(
                str(request.url.replace(path=location, query="")), status_code=307
            )
            for cookie in cookies:
                response.headers.append("set-cookie", cookie)
            await response(scope, receive, send)
            return

        if not cookies:
            await self.app(scope, receive, send)
            return

        async def send_with_cookies(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for cookie in cookies:
                    headers.append("set-cookie", cookie)
            await send(message)

        await self.app(scope, receive, send_with_cookies)

    def _session_cookies(self, session: Session, tokens: SessionTokens, secure: bool) -> list[str]:
        """Set-Cookie values carrying a refreshed session.

        Written back in the layout the request used: the legacy cookie pair,
        or the `sb-<ref>-auth-token` cookie.
        """
        if tokens.cookie_name is None and tokens.refresh_token is not None:
            values = {
                LEGACY_COOKIE: session.access_token,
                LEGACY_REFRESH_COOKIE: session.refresh_token,
            }
        else:
            name = tokens.cookie_name or auth_cookie_name(self.guard.settings.supabase_url)
            values = {name: encode_session_cookie(session)}

        carrier = Response()
        for key, value in values.items():
            carrier.set_cookie(
                key,
                value,
                max_age=SESSION_COOKIE_MAX_AGE,
                path="/",
                secure=secure,
                samesite="lax",
            )
        return [
            value.decode("latin-1")
            for name, value in carrier.raw_headers
            if name == b"set-cookie"
        ]
