"""Shared test fixtures for the auth package.

Provides:
  - MockTransport: queue of canned httpx responses (GoTrue client tests)
  - FakeGoTrue: stateful in-memory GoTrue that issues real HS256 tokens,
    so sign-up → sign-in → guard flows run end to end without a network
  - FakeProfiles: in-memory profile store mirroring ProfileRepository
  - Wired GoTrueClient / AuthClient / SessionStore fixtures
"""

from __future__ import annotations

import asyncio
import json
import time
import uuid
from datetime import UTC, datetime
from typing import Any

import httpx
import jwt as pyjwt
import pytest
from flowcaser_auth.client import AuthClient
from flowcaser_auth.gotrue import GoTrueClient
from flowcaser_auth.store import SessionStore
from flowcaser_shared.auth_models import ProfileUpdate, Team, UserProfile
from flowcaser_shared.errors import ProfileFetchError, ProfileWriteError
from flowcaser_shared.settings import Settings

JWT_SECRET = "super-secret-jwt-token-for-testing-only"
SUPABASE_URL = "https://abcdefgh.supabase.co"
AUTH_URL = f"{SUPABASE_URL}/auth/v1"
ANON_KEY = "test-anon-key"


# ============================================================================
# HTTP transports
# ============================================================================


class MockTransport(httpx.AsyncBaseTransport):
    """Mock HTTP transport that returns preconfigured responses in order.

    Each call pops the next response. Exceptions in the list are raised
    instead, to simulate transport failures. When exhausted, returns 500.
    """

    def __init__(self, responses: list[httpx.Response | Exception] | None = None) -> None:
        self.responses = list(responses or [])
        self.requests: list[httpx.Request] = []

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.responses:
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            response.stream = httpx.ByteStream(response.content)
            return response
        return httpx.Response(500, json={"error": "No more mock responses"})


class FakeGoTrue(httpx.AsyncBaseTransport):
    """In-memory GoTrue: signup, password/refresh grants, logout, user, recover."""

    def __init__(self, secret: str = JWT_SECRET, confirm_email: bool = False) -> None:
        self.secret = secret
        self.confirm_email = confirm_email
        self.users: dict[str, dict[str, Any]] = {}
        self.refresh_tokens: dict[str, str] = {}
        self.revoked: set[str] = set()
        self.recover_requests: list[tuple[str, str | None]] = []
        self.requests: list[httpx.Request] = []
        self.offline = False
        self.token_ttl = 3600

    def issue_session(self, user: dict[str, Any]) -> dict[str, Any]:
        now = int(time.time())
        claims = {
            "sub": user["id"],
            "email": user["email"],
            "aud": "authenticated",
            "role": "authenticated",
            "exp": now + self.token_ttl,
            "user_metadata": user["user_metadata"],
        }
        refresh_token = uuid.uuid4().hex
        self.refresh_tokens[refresh_token] = user["email"]
        return {
            "access_token": pyjwt.encode(claims, self.secret, algorithm="HS256"),
            "refresh_token": refresh_token,
            "token_type": "bearer",
            "expires_in": self.token_ttl,
            "expires_at": now + self.token_ttl,
            "user": self._public(user),
        }

    @staticmethod
    def _public(user: dict[str, Any]) -> dict[str, Any]:
        return {
            "id": user["id"],
            "aud": "authenticated",
            "role": "authenticated",
            "email": user["email"],
            "user_metadata": user["user_metadata"],
        }

    @staticmethod
    def _error(status: int, error_code: str, msg: str) -> httpx.Response:
        return httpx.Response(status, json={"code": status, "error_code": error_code, "msg": msg})

    def _bearer_user(self, request: httpx.Request) -> dict[str, Any] | None:
        token = request.headers.get("authorization", "").removeprefix("Bearer ")
        if token in self.revoked:
            return None
        try:
            claims = pyjwt.decode(token, self.secret, algorithms=["HS256"], audience="authenticated")
        except pyjwt.InvalidTokenError:
            return None
        return self.users.get(claims["email"])

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.offline:
            raise httpx.ConnectError("connection refused", request=request)

        path = request.url.path.removeprefix("/auth/v1")
        body = json.loads(request.content) if request.content else {}

        if path == "/signup" and request.method == "POST":
            if body["email"] in self.users:
                return self._error(422, "user_already_exists", "User already registered")
            user = {
                "id": str(uuid.uuid4()),
                "email": body["email"],
                "password": body["password"],
                "user_metadata": body.get("data") or {},
            }
            self.users[user["email"]] = user
            if self.confirm_email:
                return httpx.Response(200, json=self._public(user))
            return httpx.Response(200, json=self.issue_session(user))

        if path == "/token" and request.method == "POST":
            grant = request.url.params.get("grant_type")
            if grant == "password":
                user = self.users.get(body.get("email"))
                if user is None or user["password"] != body.get("password"):
                    return self._error(400, "invalid_credentials", "Invalid login credentials")
                return httpx.Response(200, json=self.issue_session(user))
            if grant == "refresh_token":
                email = self.refresh_tokens.pop(body.get("refresh_token"), None)
                if email is None:
                    return self._error(400, "refresh_token_not_found", "Invalid Refresh Token")
                return httpx.Response(200, json=self.issue_session(self.users[email]))

        if path == "/logout" and request.method == "POST":
            if self._bearer_user(request) is None:
                return self._error(401, "bad_jwt", "invalid JWT: token is expired")
            self.revoked.add(request.headers.get("authorization", "").removeprefix("Bearer "))
            return httpx.Response(204)

        if path == "/user" and request.method == "GET":
            user = self._bearer_user(request)
            if user is None:
                return self._error(401, "bad_jwt", "invalid JWT")
            return httpx.Response(200, json=self._public(user))

        if path == "/recover" and request.method == "POST":
            self.recover_requests.append((body["email"], request.url.params.get("redirect_to")))
            return httpx.Response(200, json={})

        return httpx.Response(404, json={"msg": f"no route {request.method} {path}"})


# ============================================================================
# In-memory profile store
# ============================================================================


class FakeProfiles:
    """Mirrors ProfileRepository's async interface over plain dicts."""

    def __init__(self) -> None:
        self.rows: dict[str, UserProfile] = {}
        self.teams: dict[str, Team] = {}
        self.calls: list[tuple[str, tuple]] = []
        self.fail_reads = False
        # Raised as-is by get_profile, for failures outside ProfileFetchError
        self.read_error: Exception | None = None
        self.fail_creates = False
        # When set, update_profile waits on it (to interleave with auth events)
        self.update_gate: asyncio.Event | None = None

    async def get_profile(self, user_id: str) -> UserProfile | None:
        self.calls.append(("get_profile", (user_id,)))
        if self.read_error is not None:
            raise self.read_error
        if self.fail_reads:
            raise ProfileFetchError("Kunne ikke hente profil: connection reset")
        return self.rows.get(user_id)

    async def create_profile(self, user_id: str, email: str, full_name: str | None) -> UserProfile:
        self.calls.append(("create_profile", (user_id, email, full_name)))
        if self.fail_creates:
            raise ProfileWriteError("Kunne ikke oprette profil: duplicate key")
        now = datetime.now(UTC)
        profile = UserProfile(
            id=user_id, email=email, full_name=full_name, created_at=now, updated_at=now
        )
        self.rows[user_id] = profile
        return profile

    async def update_profile(self, user_id: str, fields: ProfileUpdate) -> UserProfile:
        self.calls.append(("update_profile", (user_id, fields)))
        if self.update_gate is not None:
            await self.update_gate.wait()
        current = self.rows.get(user_id)
        if current is None:
            raise ProfileWriteError(f"Profil ikke fundet: {user_id}")
        updated = current.model_copy(
            update={**fields.changes(), "updated_at": datetime.now(UTC)}
        )
        self.rows[user_id] = updated
        return updated

    async def create_team(self, creator_id: str, name: str, description: str | None = None) -> Team:
        self.calls.append(("create_team", (creator_id, name, description)))
        team = Team(id=str(uuid.uuid4()), name=name, description=description, created_by=creator_id)
        self.teams[team.id] = team
        self.rows[creator_id] = self.rows[creator_id].model_copy(
            update={"team_id": team.id, "role": "admin"}
        )
        return team

    async def join_team(self, user_id: str, team_id: str) -> UserProfile:
        self.calls.append(("join_team", (user_id, team_id)))
        self.rows[user_id] = self.rows[user_id].model_copy(
            update={"team_id": team_id, "role": "member"}
        )
        return self.rows[user_id]


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def settings() -> Settings:
    return Settings(
        supabase_url=SUPABASE_URL,
        supabase_anon_key=ANON_KEY,
        jwt_secret=JWT_SECRET,
        site_url="https://app.flowcaser.dk",
    )


@pytest.fixture
def fake_gotrue() -> FakeGoTrue:
    return FakeGoTrue()


@pytest.fixture
async def gotrue(fake_gotrue: FakeGoTrue):
    client = GoTrueClient(AUTH_URL, ANON_KEY, transport=fake_gotrue)
    yield client
    await client.close()


@pytest.fixture
def auth_client(gotrue: GoTrueClient) -> AuthClient:
    return AuthClient(gotrue)


@pytest.fixture
def profiles() -> FakeProfiles:
    return FakeProfiles()


@pytest.fixture
async def store(auth_client: AuthClient, profiles: FakeProfiles):
    session_store = SessionStore(
        auth_client,
        profiles,
        password_reset_redirect="https://app.flowcaser.dk/reset-password",
    )
    await session_store.start()
    yield session_store
    await session_store.stop()


@pytest.fixture
def mock_transport() -> type[MockTransport]:
    """The MockTransport class, for tests that queue their own responses."""
    return MockTransport


@pytest.fixture
def jwt_secret() -> str:
    return JWT_SECRET
