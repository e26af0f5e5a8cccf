"""Session store: the current user, profile and session for one browser tab.

The store is an explicitly owned object: construct it once per application
shell, `start()` it, and hand it to whatever needs the signed-in user. There is
no module-level state.

State is `{session, user, profile, loading}`. It is mutated only by:

  - the initial session fetch in `start()`
  - the auth-state handler, fired by the AuthClient on sign-in, sign-out and
    token refresh
  - explicit operations (`sign_up`, `update_profile`, `create_team`, ...)

All of these run on one event loop, so no locking is needed, but nothing
orders a handler-triggered profile fetch against an in-flight
`update_profile`: whichever finishes last wins. Treat `profile` as eventually
consistent.

Subscribers registered with `subscribe()` receive an immutable AuthState after
every change.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Protocol

from flowcaser_shared.auth_models import (
    AuthState,
    AuthUser,
    ProfileUpdate,
    Session,
    Team,
    UserProfile,
)
from flowcaser_shared.errors import AuthError, ConfigurationError, ProfileFetchError
from flowcaser_shared.settings import Settings
from flowcaser_shared.validation import (
    require_valid,
    validate_email,
    validate_password,
    validate_required,
)

from flowcaser_auth.client import AuthChangeEvent, AuthClient, Subscription
from flowcaser_auth.gotrue import GoTrueClient

logger = logging.getLogger(__name__)

DEMO_USER_ID = "demo-user-id"
DEMO_EMAIL = "demo@flowcaser.dk"
DEMO_FULL_NAME = "Demo Bruger"
DEMO_TEAM_ID = "demo-team-id"

StateListener = Callable[[AuthState], None]


class ProfileStore(Protocol):
    """The subset of the profile repository the session store relies on."""

    async def get_profile(self, user_id: str) -> UserProfile | None: ...

    async def create_profile(
        self, user_id: str, email: str, full_name: str | None
    ) -> UserProfile: ...

    async def update_profile(self, user_id: str, fields: ProfileUpdate) -> UserProfile: ...

    async def create_team(
        self, creator_id: str, name: str, description: str | None = None
    ) -> Team: ...

    async def join_team(self, user_id: str, team_id: str) -> UserProfile: ...


class SessionStore:
    """Current session, user and profile, kept in step with the auth provider."""

    def __init__(
        self,
        auth: AuthClient | None,
        profiles: ProfileStore | None,
        *,
        password_reset_redirect: str | None = None,
    ) -> None:
        self._auth = auth
        self._profiles = profiles
        self._password_reset_redirect = password_reset_redirect
        self._session: Session | None = None
        self._user: AuthUser | None = None
        self._profile: UserProfile | None = None
        self._loading = True
        self._subscription: Subscription | None = None
        self._listeners: list[StateListener] = []

    @classmethod
    def demo(cls) -> SessionStore:
        """A store with no backend, serving a fixed demo user once started."""
        return cls(auth=None, profiles=None)

    @property
    def is_demo(self) -> bool:
        return self._auth is None

    async def __aenter__(self) -> SessionStore:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def state(self) -> AuthState:
        return AuthState(
            session=self._session,
            user=self._user,
            profile=self._profile,
            loading=self._loading,
        )

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def user(self) -> AuthUser | None:
        return self._user

    @property
    def profile(self) -> UserProfile | None:
        return self._profile

    @property
    def loading(self) -> bool:
        return self._loading

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener for state changes. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_state(self, **changes: Any) -> None:
        for name, value in changes.items():
            setattr(self, f"_{name}", value)
        snapshot = self.state
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.warning("State listener failed", exc_info=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Subscribe to auth changes and load the initial session.

        `loading` stays True until the initial fetch settles, whatever its
        outcome.
        """
        if self._auth is None:
            now = datetime.now(UTC)
            self._set_state(
                user=AuthUser(
                    user_id=DEMO_USER_ID, email=DEMO_EMAIL, full_name=DEMO_FULL_NAME
                ),
                profile=UserProfile(
                    id=DEMO_USER_ID,
                    email=DEMO_EMAIL,
                    full_name=DEMO_FULL_NAME,
                    team_id=DEMO_TEAM_ID,
                    role="admin",
                    created_at=now,
                    updated_at=now,
                ),
                loading=False,
            )
            logger.info("Session store running in demo mode")
            return

        if self._subscription is None:
            self._subscription = self._auth.on_auth_state_change(self._on_auth_change)

        try:
            session = await self._auth.get_session()
        except Exception:
            logger.warning("Initial session fetch failed", exc_info=True)
            self._set_state(loading=False)
            return
        await self._on_auth_change(AuthChangeEvent.INITIAL_SESSION, session)

    async def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    async def _on_auth_change(self, event: AuthChangeEvent, session: Session | None) -> None:
        """Re-derive user and profile from a session change. Never raises."""
        try:
            user = session.user if session else None
            profile: UserProfile | None = None
            if user is not None:
                profile = await self._load_profile(user.user_id)
            self._set_state(session=session, user=user, profile=profile, loading=False)
            logger.debug(f"{event}: user={user.user_id if user else None}")
        except Exception:
            logger.warning(f"Failed to apply auth change {event}", exc_info=True)
            self._set_state(loading=False)

    async def _load_profile(self, user_id: str) -> UserProfile | None:
        """Fetch a profile for the background handler.

        Any failure leaves the profile None; the session and user are still
        applied, so the caller ends up authenticated but profile-less.
        """
        try:
            return await self._require_profiles().get_profile(user_id)
        except ProfileFetchError as e:
            logger.warning(f"Profile fetch failed for {user_id}: {e.message}")
        except Exception:
            logger.warning(f"Profile fetch failed unexpectedly for {user_id}", exc_info=True)
        return None

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def _require_auth(self) -> AuthClient:
        if self._auth is None:
            raise ConfigurationError("Supabase er ikke konfigureret (demo-tilstand)")
        return self._auth

    def _require_profiles(self) -> ProfileStore:
        if self._profiles is None:
            raise ConfigurationError("Supabase er ikke konfigureret (demo-tilstand)")
        return self._profiles

    def _require_user(self) -> AuthUser:
        if self._user is None:
            raise AuthError("User not authenticated")
        return self._user

    async def sign_up(self, email: str, password: str, full_name: str) -> AuthUser:
        """Create the auth subject, then its mirrored profile row.

        If the profile write fails the auth subject already exists and is left
        without a profile; the ProfileWriteError is raised to the caller.
        """
        require_valid(
            validate_required(full_name, "Navn"),
            validate_email(email),
            validate_password(password),
        )
        auth = self._require_auth()
        profiles = self._require_profiles()

        user, session = await auth.sign_up(email, password, full_name)
        logger.info(f"Signed up {user.user_id}")

        profile = await profiles.create_profile(user.user_id, user.email or email, full_name)
        if session is not None:
            self._set_state(profile=profile)
        return user

    async def sign_in(self, email: str, password: str) -> Session:
        """Sign in with the provider.

        Only empty fields are rejected locally. Password rules apply at sign-up;
        accounts created under older rules must still be able to sign in, and
        wrong credentials come back as the provider's AuthError.
        """
        require_valid(
            validate_required(email, "Email"),
            validate_required(password, "Password"),
        )
        self._set_state(loading=True)
        try:
            return await self._require_auth().sign_in(email, password)
        finally:
            self._set_state(loading=False)

    async def sign_out(self) -> None:
        await self._require_auth().sign_out()

    async def reset_password(self, email: str) -> None:
        require_valid(validate_email(email))
        await self._require_auth().reset_password(email, self._password_reset_redirect)

    async def update_profile(self, fields: ProfileUpdate) -> UserProfile:
        user = self._require_user()
        profile = await self._require_profiles().update_profile(user.user_id, fields)
        self._set_state(profile=profile)
        return profile

    async def refresh_profile(self) -> UserProfile | None:
        """Re-read the current user's profile. Fetch errors reach the caller."""
        if self._user is None:
            return None
        profile = await self._require_profiles().get_profile(self._user.user_id)
        self._set_state(profile=profile)
        return profile

    async def create_team(self, name: str, description: str | None = None) -> Team:
        """Create a team with the current user as its admin."""
        require_valid(validate_required(name, "Teamnavn"))
        user = self._require_user()
        profiles = self._require_profiles()
        team = await profiles.create_team(user.user_id, name, description)
        await self.refresh_profile()
        return team

    async def join_team(self, team_id: str) -> UserProfile:
        user = self._require_user()
        profile = await self._require_profiles().join_team(user.user_id, team_id)
        self._set_state(profile=profile)
        return profile


def create_session_store(
    settings: Settings | None = None,
    profiles: ProfileStore | None = None,
) -> SessionStore:
    """Build the session store for the current environment.

    Unconfigured backends get the demo store. Otherwise a GoTrue-backed auth
    client is paired with the given profile store, or a ProfileRepository on
    the default engine.
    """
    settings = settings or Settings.from_env()
    if not settings.is_configured:
        return SessionStore.demo()

    if profiles is None:
        from flowcaser_data.profiles import ProfileRepository

        profiles = ProfileRepository()

    auth = AuthClient(GoTrueClient.from_settings(settings))
    return SessionStore(
        auth,
        profiles,
        password_reset_redirect=settings.password_reset_redirect,
    )
