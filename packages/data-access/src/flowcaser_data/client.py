"""Process-wide async engine for the profile repository.

The engine talks to Supabase Postgres through asyncpg. Point SUPABASE_DB_URL at
the session-mode pooler (port 5432): asyncpg prepares statements, and the
transaction-mode pooler on 6543 drops them between transactions.

    from flowcaser_data.client import get_engine

    async with get_engine().begin() as conn:
        row = (await conn.execute(select(users).where(users.c.id == uid))).first()
"""

from __future__ import annotations

from flowcaser_shared.errors import ConfigurationError
from flowcaser_shared.settings import Settings
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

ASYNC_SCHEME = "postgresql+asyncpg://"

_engine: AsyncEngine | None = None


def to_async_url(db_url: str) -> str:
    """Swap a plain postgres scheme for the asyncpg driver scheme."""
    for scheme in ("postgresql://", "postgres://"):
        if db_url.startswith(scheme):
            return ASYNC_SCHEME + db_url[len(scheme):]
    return db_url


def get_engine(settings: Settings | None = None) -> AsyncEngine:
    """Return the shared engine, creating it on first call.

    `settings` only matters on that first call; it defaults to the
    environment.
    """
    global _engine
    if _engine is None:
        db_url = (settings or Settings.from_env()).db_url
        if not db_url:
            raise ConfigurationError(
                "SUPABASE_DB_URL is not set; profile storage needs the Supabase "
                "session pooler connection string."
            )
        _engine = create_async_engine(
            to_async_url(db_url),
            pool_size=5,
            max_overflow=0,
            pool_pre_ping=True,
        )
    return _engine


def reset_engine() -> None:
    """Forget the shared engine so the next get_engine() builds a fresh one."""
    global _engine
    _engine = None
