"""Auth domain models, shared between the session store, the guard and storage.

These types cross every seam in the auth core: GoTrue responses are parsed
into them, the profile repository returns them, and subscribers of the
session store receive them in an AuthState snapshot.
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator

Role = Literal["admin", "member", "viewer"]


class AuthUser(BaseModel):
    """The auth subject as issued by Supabase (JWT claims or /user payload)."""

    user_id: str
    email: str = ""
    role: str = "authenticated"
    exp: int | None = None
    full_name: str | None = None
    avatar_url: str | None = None

    @classmethod
    def from_gotrue(cls, payload: dict[str, Any]) -> AuthUser:
        """Build from a GoTrue user object (`id`, `email`, `user_metadata`)."""
        metadata = payload.get("user_metadata") or {}
        return cls(
            user_id=payload["id"],
            email=payload.get("email") or "",
            role=payload.get("role") or "authenticated",
            full_name=metadata.get("full_name"),
            avatar_url=metadata.get("avatar_url"),
        )


class Session(BaseModel):
    """Provider-issued proof of authentication with expiry and refresh semantics."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_at: int
    user: AuthUser

    @classmethod
    def from_gotrue(cls, payload: dict[str, Any]) -> Session:
        """Build from a GoTrue token response.

        GoTrue returns `expires_in` always and `expires_at` on newer versions;
        fall back to computing it from the former.
        """
        expires_at = payload.get("expires_at")
        if expires_at is None:
            expires_at = int(time.time()) + int(payload.get("expires_in", 3600))
        return cls(
            access_token=payload["access_token"],
            refresh_token=payload["refresh_token"],
            token_type=payload.get("token_type", "bearer"),
            expires_at=int(expires_at),
            user=AuthUser.from_gotrue(payload["user"]),
        )

    def is_expired(self, margin: int = 0) -> bool:
        """True when the access token expires within `margin` seconds."""
        return self.expires_at <= int(time.time()) + margin


class UserProfile(BaseModel):
    """Application-level user record, keyed by the auth subject id."""

    id: str
    email: str
    full_name: str | None = None
    avatar_url: str | None = None
    team_id: str | None = None
    role: Role = "member"
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def has_team(self) -> bool:
        return self.team_id is not None

    @property
    def team_role(self) -> Role | None:
        """Role within the team, only meaningful once the user belongs to one."""
        return self.role if self.team_id is not None else None


class ProfileUpdate(BaseModel):
    """Partial profile fields. Only fields explicitly set are written."""

    full_name: str | None = None
    avatar_url: str | None = None
    email: str | None = None

    @field_validator("email")
    @classmethod
    def reject_null_email(cls, value: str | None) -> str | None:
        # The column is NOT NULL; leave the field unset to keep the current address
        if value is None:
            raise ValueError("email cannot be cleared")
        return value

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class Team(BaseModel):
    """A team. Its creator is granted the admin role when it is created."""

    id: str
    name: str
    description: str | None = None
    created_by: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


class AuthState(BaseModel):
    """Immutable snapshot of the session store, handed to subscribers."""

    model_config = ConfigDict(frozen=True)

    session: Session | None = None
    user: AuthUser | None = None
    profile: UserProfile | None = None
    loading: bool = True

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None
