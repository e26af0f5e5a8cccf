"""Profile and team storage over Supabase Postgres (SQLAlchemy Core + asyncpg)."""
