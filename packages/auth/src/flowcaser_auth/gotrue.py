"""HTTP adapter for the Supabase auth (GoTrue) REST API.

Wraps the handful of endpoints the auth core needs so nothing above this
module touches raw HTTP:

  - POST /signup                          → sign_up
  - POST /token?grant_type=password       → sign_in_with_password
  - POST /token?grant_type=refresh_token  → refresh_session
  - POST /logout                          → sign_out
  - GET  /user                            → get_user
  - POST /recover                         → reset_password_for_email

Failure policy: provider rejections become AuthError carrying the provider's
message verbatim; transport failures become AuthError wrapping the network
message. Nothing here retries; callers decide whether to try again.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from flowcaser_shared.auth_models import AuthUser, Session
from flowcaser_shared.errors import AppError, AuthError, normalize_error
from flowcaser_shared.settings import Settings

logger = logging.getLogger(__name__)


def http_status(error: AuthError) -> int | None:
    """HTTP status of a provider rejection; None for transport failures."""
    return error.details.get("status") if isinstance(error.details, dict) else None


class GoTrueClient:
    """Async client for one Supabase project's auth endpoints.

    The underlying httpx client is created lazily and reused; call `close()`
    (or use `async with`) when done.
    """

    def __init__(
        self,
        auth_url: str,
        anon_key: str,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.auth_url = auth_url.rstrip("/")
        self._anon_key = anon_key
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self.request_count: int = 0

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> GoTrueClient:
        return cls(settings.auth_url, settings.supabase_anon_key, transport=transport)

    async def __aenter__(self) -> GoTrueClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.auth_url,
                headers={
                    "apikey": self._anon_key,
                    "Authorization": f"Bearer {self._anon_key}",
                },
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        url: str,
        *,
        access_token: str | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request and translate failures into AuthError."""
        headers = kwargs.pop("headers", {})
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"

        self.request_count += 1
        try:
            response = await self._get_client().request(method, url, headers=headers, **kwargs)
        except httpx.TransportError as e:
            logger.warning(f"GoTrue {method} {url} failed: {e}")
            raise AuthError(f"Netværksfejl: {e}", "NETWORK_ERROR") from e

        if response.is_error:
            raise self._provider_error(response)
        return response

    @staticmethod
    def _provider_error(response: httpx.Response) -> AuthError:
        try:
            payload = response.json()
        except ValueError:
            payload = None

        message = f"{response.status_code}: {response.reason_phrase}"
        code = None
        if isinstance(payload, dict) and any(
            payload.get(key) for key in ("msg", "error_description", "message")
        ):
            error = normalize_error(payload)
            message = error.message
            if error.code != AppError.code:
                code = error.code

        logger.info(f"GoTrue rejected {response.request.url.path}: {message}")
        return AuthError(message, code, {"status": response.status_code, "body": payload})

    async def sign_up(
        self,
        email: str,
        password: str,
        data: dict[str, Any] | None = None,
    ) -> tuple[AuthUser, Session | None]:
        """Create an auth subject.

        Returns the new user and, when email confirmation is disabled on the
        project, the session GoTrue issued alongside it.
        """
        response = await self._request(
            "POST",
            "/signup",
            json={"email": email, "password": password, "data": data or {}},
        )
        payload = response.json()

        if payload.get("access_token"):
            session = Session.from_gotrue(payload)
            return session.user, session
        # Confirmation pending: GoTrue returns the bare user object
        user_payload = payload.get("user") or payload
        return AuthUser.from_gotrue(user_payload), None

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        response = await self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        return Session.from_gotrue(response.json())

    async def refresh_session(self, refresh_token: str) -> Session:
        response = await self._request(
            "POST",
            "/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
        )
        return Session.from_gotrue(response.json())

    async def sign_out(self, access_token: str) -> None:
        """Revoke the session behind `access_token`.

        401, 403 and 404 mean the token is already expired or revoked, which
        is the state sign-out is after, so they count as success.
        """
        try:
            await self._request("POST", "/logout", access_token=access_token)
        except AuthError as e:
            if http_status(e) in (401, 403, 404):
                logger.info(f"Logout with a dead session ({http_status(e)}); treating as signed out")
                return
            raise

    async def get_user(self, access_token: str) -> AuthUser | None:
        """Resolve an access token to its user.

        Returns None when GoTrue says the token is not (or no longer) valid.
        Transport failures still raise, so callers can tell "no session"
        apart from "could not check".
        """
        try:
            response = await self._request("GET", "/user", access_token=access_token)
        except AuthError as e:
            if http_status(e) in (401, 403):
                return None
            raise
        return AuthUser.from_gotrue(response.json())

    async def reset_password_for_email(self, email: str, redirect_to: str | None = None) -> None:
        params = {"redirect_to": redirect_to} if redirect_to else None
        await self._request("POST", "/recover", params=params, json={"email": email})
