"""Supabase access-token verification and extraction.

The route guard uses these to decide, per request, whether the caller holds a
valid session without a round-trip to GoTrue. Verification needs the project's
JWT secret (Settings → API → JWT Secret); extraction understands both cookie
layouts the Supabase auth helpers have shipped. `encode_session_cookie` writes
the current layout back after the guard refreshes a session.
"""

from __future__ import annotations

import base64
import binascii
import json
import re
from collections.abc import Mapping
from typing import NamedTuple
from urllib.parse import urlsplit

import jwt as pyjwt
from flowcaser_shared.auth_models import AuthUser, Session

LEGACY_COOKIE = "sb-access-token"
LEGACY_REFRESH_COOKIE = "sb-refresh-token"

# sb-<project-ref>-auth-token, optionally chunked as .0, .1, ...
_AUTH_COOKIE_RE = re.compile(r"^sb-[A-Za-z0-9-]+-auth-token(?:\.(\d+))?$")


def verify_token(token: str, jwt_secret: str) -> AuthUser:
    """Decode and validate a Supabase JWT.

    Args:
        token: The raw JWT string (from the Authorization header or cookie).
        jwt_secret: The Supabase JWT secret.

    Returns:
        AuthUser with user_id, email, role, expiry and profile metadata.

    Raises:
        pyjwt.ExpiredSignatureError: Token has expired.
        pyjwt.InvalidSignatureError: Signature doesn't match the secret.
        pyjwt.InvalidAudienceError: Token wasn't issued to signed-in users.
        pyjwt.MissingRequiredClaimError: `exp` or `sub` missing.
        pyjwt.DecodeError: Malformed token.
    """
    payload = pyjwt.decode(
        token,
        jwt_secret,
        algorithms=["HS256"],
        audience="authenticated",
        options={"require": ["exp", "sub"]},
    )

    metadata = payload.get("user_metadata") or {}
    return AuthUser(
        user_id=payload["sub"],
        email=payload.get("email", ""),
        role=payload.get("role", "authenticated"),
        exp=payload["exp"],
        full_name=metadata.get("full_name"),
        avatar_url=metadata.get("avatar_url"),
    )


def get_user_id(token: str, jwt_secret: str) -> str:
    """Convenience wrapper: returns just the user_id string."""
    return verify_token(token, jwt_secret).user_id


class SessionTokens(NamedTuple):
    """Tokens a request carries.

    `cookie_name` is the `sb-<ref>-auth-token` cookie they were read from, or
    None when they came from the header or the legacy cookies.
    """

    access_token: str | None
    refresh_token: str | None = None
    cookie_name: str | None = None


def _non_empty(value: object) -> str | None:
    return value if isinstance(value, str) and value else None


def _decode_cookie_value(raw: str) -> SessionTokens | None:
    """Pull the tokens out of an auth-token cookie value.

    The value is JSON, either a session object or the older
    `[access_token, refresh_token, ...]` array, optionally base64url
    encoded behind a `base64-` prefix.
    """
    if raw.startswith("base64-"):
        encoded = raw[len("base64-"):]
        try:
            raw = base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4)).decode()
        except (binascii.Error, UnicodeDecodeError):
            return None

    try:
        value = json.loads(raw)
    except ValueError:
        return None

    if isinstance(value, dict):
        tokens = SessionTokens(
            _non_empty(value.get("access_token")), _non_empty(value.get("refresh_token"))
        )
    elif isinstance(value, list) and value:
        tokens = SessionTokens(
            _non_empty(value[0]), _non_empty(value[1]) if len(value) > 1 else None
        )
    else:
        return None
    if tokens.access_token is None and tokens.refresh_token is None:
        return None
    return tokens


def extract_session_tokens(
    cookies: Mapping[str, str],
    authorization: str | None = None,
) -> SessionTokens:
    """Find the caller's access and refresh tokens.

    Precedence: `Authorization: Bearer` header, legacy `sb-access-token`
    cookie (paired with `sb-refresh-token`), then the (possibly chunked)
    `sb-<ref>-auth-token` cookie. A bearer header never carries a refresh
    token.
    """
    if authorization:
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return SessionTokens(credentials.strip())

    legacy = cookies.get(LEGACY_COOKIE)
    if legacy:
        return SessionTokens(legacy, cookies.get(LEGACY_REFRESH_COOKIE) or None)

    name: str | None = None
    whole: str | None = None
    chunks: dict[int, str] = {}
    for cookie, value in cookies.items():
        match = _AUTH_COOKIE_RE.match(cookie)
        if not match:
            continue
        if match.group(1) is None:
            name, whole = cookie, value
        else:
            name = cookie.rsplit(".", 1)[0]
            chunks[int(match.group(1))] = value

    if whole is None and chunks:
        whole = "".join(chunks[i] for i in sorted(chunks))
    tokens = _decode_cookie_value(whole) if whole else None
    if tokens is None:
        return SessionTokens(None)
    return tokens._replace(cookie_name=name)


def extract_access_token(
    cookies: Mapping[str, str],
    authorization: str | None = None,
) -> str | None:
    """Find the caller's access token, or None if they carry none."""
    return extract_session_tokens(cookies, authorization).access_token


def auth_cookie_name(supabase_url: str) -> str:
    """`sb-<project-ref>-auth-token` for a project URL."""
    host = urlsplit(supabase_url).hostname or ""
    return f"sb-{host.split('.')[0]}-auth-token"


def encode_session_cookie(session: Session) -> str:
    """Serialize a session the way the auth helpers store it in the auth cookie."""
    user = session.user
    payload = {
        "access_token": session.access_token,
        "refresh_token": session.refresh_token,
        "token_type": session.token_type,
        "expires_at": session.expires_at,
        "user": {
            "id": user.user_id,
            "email": user.email,
            "role": user.role,
            "user_metadata": {"full_name": user.full_name, "avatar_url": user.avatar_url},
        },
    }
    encoded = base64.urlsafe_b64encode(json.dumps(payload).encode()).decode()
    return "base64-" + encoded.rstrip("=")
