"""SQLAlchemy Core table definitions for the `users` and `teams` tables.

Python-side mirror of the Supabase migration. Not an ORM: just typed column
references for the query builder. `users.id` is the auth subject id, so a
profile row shares its primary key with the GoTrue user it mirrors.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    MetaData,
    Table,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID

metadata = MetaData(schema="public")

teams = Table(
    "teams",
    metadata,
    Column("id", UUID(as_uuid=False), primary_key=True, server_default="gen_random_uuid()"),
    Column("name", Text, nullable=False),
    Column("description", Text),
    Column("created_by", UUID(as_uuid=False), nullable=False),
    Column("created_at", DateTime(timezone=True), server_default="now()"),
    Column("updated_at", DateTime(timezone=True), server_default="now()"),
)

users = Table(
    "users",
    metadata,
    Column("id", UUID(as_uuid=False), primary_key=True),
    Column("email", Text, nullable=False),
    Column("full_name", Text),
    Column("avatar_url", Text),
    Column("team_id", UUID(as_uuid=False), ForeignKey("public.teams.id")),
    Column("role", Text, nullable=False, server_default="member"),
    Column("created_at", DateTime(timezone=True), server_default="now()"),
    Column("updated_at", DateTime(timezone=True), server_default="now()"),
    CheckConstraint("role in ('admin', 'member', 'viewer')", name="users_role_check"),
)
