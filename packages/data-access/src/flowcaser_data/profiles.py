"""Profile and team storage: keyed reads and writes against Supabase Postgres.

Every method opens its own transaction via `engine.begin()`. Read failures
raise ProfileFetchError, write failures ProfileWriteError; the underlying
error is chained as the cause.

The engine is injectable so tests (and callers holding their own engine) can
bypass the module-level singleton.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from flowcaser_shared.auth_models import ProfileUpdate, Team, UserProfile
from flowcaser_shared.errors import ConfigurationError, ProfileFetchError, ProfileWriteError
from sqlalchemy import insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from flowcaser_data.client import get_engine
from flowcaser_data.tables import teams, users

logger = logging.getLogger(__name__)

# Failures of a read: query errors, connect errors from asyncpg, and a missing
# SUPABASE_DB_URL surfacing from the lazily created engine
_READ_ERRORS = (SQLAlchemyError, OSError, ConfigurationError)


def _profile(row: Mapping[str, Any]) -> UserProfile:
    return UserProfile.model_validate(dict(row))


def _team(row: Mapping[str, Any]) -> Team:
    return Team.model_validate(dict(row))


class ProfileRepository:
    """Reads and writes `users` and `teams` rows."""

    def __init__(self, engine: AsyncEngine | None = None) -> None:
        self._engine = engine

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = get_engine()
        return self._engine

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    async def get_profile(self, user_id: str) -> UserProfile | None:
        """Return the profile for an auth subject, or None if it has none."""
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(select(users).where(users.c.id == user_id))
                row = result.mappings().fetchone()
        except _READ_ERRORS as e:
            raise ProfileFetchError(f"Kunne ikke hente profil: {e}", details=user_id) from e
        return _profile(row) if row else None

    async def create_profile(
        self, user_id: str, email: str, full_name: str | None
    ) -> UserProfile:
        """Insert the profile row mirroring a freshly signed-up auth subject."""
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(
                    insert(users)
                    .values(id=user_id, email=email, full_name=full_name)
                    .returning(users)
                )
                row = result.mappings().fetchone()
        except SQLAlchemyError as e:
            logger.warning(f"Profile insert failed for {user_id}; auth user has no profile")
            raise ProfileWriteError(f"Kunne ikke oprette profil: {e}", details=user_id) from e
        return _profile(row)

    async def update_profile(self, user_id: str, fields: ProfileUpdate) -> UserProfile:
        """Apply the explicitly set `fields` and bump `updated_at`."""
        changes = fields.changes()
        changes["updated_at"] = datetime.now(UTC)
        return await self._update_user(user_id, changes)

    async def _update_user(self, user_id: str, changes: dict[str, Any]) -> UserProfile:
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(
                    update(users).where(users.c.id == user_id).values(**changes).returning(users)
                )
                row = result.mappings().fetchone()
        except SQLAlchemyError as e:
            raise ProfileWriteError(f"Kunne ikke opdatere profil: {e}", details=user_id) from e
        if row is None:
            raise ProfileWriteError(f"Profil ikke fundet: {user_id}", details=user_id)
        return _profile(row)

    # ------------------------------------------------------------------
    # Teams
    # ------------------------------------------------------------------

    async def create_team(
        self, creator_id: str, name: str, description: str | None = None
    ) -> Team:
        """Create a team and make its creator the admin, in one transaction."""
        now = datetime.now(UTC)
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(
                    insert(teams)
                    .values(name=name, description=description or None, created_by=creator_id)
                    .returning(teams)
                )
                team = _team(result.mappings().fetchone())

                result = await conn.execute(
                    update(users)
                    .where(users.c.id == creator_id)
                    .values(team_id=team.id, role="admin", updated_at=now)
                    .returning(users.c.id)
                )
                if result.fetchone() is None:
                    raise ProfileWriteError(
                        f"Profil ikke fundet: {creator_id}", details=creator_id
                    )
        except SQLAlchemyError as e:
            raise ProfileWriteError(f"Kunne ikke oprette team: {e}", details=name) from e

        logger.info(f"Team {team.id} created by {creator_id}")
        return team

    async def join_team(self, user_id: str, team_id: str) -> UserProfile:
        """Attach a user to an existing team as a member."""
        return await self._update_user(
            user_id,
            {"team_id": team_id, "role": "member", "updated_at": datetime.now(UTC)},
        )

    async def get_team(self, team_id: str) -> Team | None:
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(select(teams).where(teams.c.id == team_id))
                row = result.mappings().fetchone()
        except _READ_ERRORS as e:
            raise ProfileFetchError(f"Kunne ikke hente team: {e}", details=team_id) from e
        return _team(row) if row else None

    async def list_team_members(self, team_id: str) -> list[UserProfile]:
        """Team members, oldest account first."""
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(
                    select(users)
                    .where(users.c.team_id == team_id)
                    .order_by(users.c.created_at.asc())
                )
                rows = result.mappings().fetchall()
        except _READ_ERRORS as e:
            raise ProfileFetchError(f"Kunne ikke hente teammedlemmer: {e}", details=team_id) from e
        return [_profile(row) for row in rows]
