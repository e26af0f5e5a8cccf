"""Environment-driven settings for the auth core.

Two modes, detected from the environment:

1. **Configured**: SUPABASE_URL and SUPABASE_ANON_KEY point at a real project.
   The session store talks to GoTrue and the guard enforces redirects.

2. **Demo / unconfigured**: either value is missing, or the URL still carries
   the `your-project` placeholder from `.env.example`. The session store serves
   a mock user and the guard only redirects the root path.

The NEXT_PUBLIC_* names are accepted as fallbacks so the same `.env` file can
serve the Next.js front-end and Python services.
"""

from __future__ import annotations

import os

from pydantic import BaseModel, ConfigDict

PLACEHOLDER_MARKER = "your-project"


def _env(*names: str) -> str:
    for name in names:
        value = os.environ.get(name, "").strip()
        if value:
            return value
    return ""


class Settings(BaseModel):
    """Backend configuration. Build with `Settings.from_env()`."""

    model_config = ConfigDict(frozen=True)

    supabase_url: str = ""
    supabase_anon_key: str = ""
    jwt_secret: str = ""
    db_url: str = ""
    site_url: str = ""

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            supabase_url=_env("SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL").rstrip("/"),
            supabase_anon_key=_env("SUPABASE_ANON_KEY", "NEXT_PUBLIC_SUPABASE_ANON_KEY"),
            jwt_secret=_env("SUPABASE_JWT_SECRET"),
            db_url=_env("SUPABASE_DB_URL"),
            site_url=_env("FLOWCASER_SITE_URL").rstrip("/"),
        )

    @property
    def is_configured(self) -> bool:
        """False in demo mode: missing credentials or placeholder URL."""
        if not self.supabase_url or not self.supabase_anon_key:
            return False
        return PLACEHOLDER_MARKER not in self.supabase_url

    @property
    def auth_url(self) -> str:
        """Base URL of the GoTrue REST API."""
        return f"{self.supabase_url}/auth/v1"

    @property
    def password_reset_redirect(self) -> str | None:
        if not self.site_url:
            return None
        return f"{self.site_url}/reset-password"
