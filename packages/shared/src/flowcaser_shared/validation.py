"""Input validation for the auth forms.

Messages are Danish because they are shown to end users as-is. Each validator
returns an error message, or None when the value is acceptable.
"""

from __future__ import annotations

import re

from flowcaser_shared.errors import ValidationError

MIN_PASSWORD_LENGTH = 6

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def validate_required(value: object, field_name: str) -> str | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return f"{field_name} er påkrævet"
    return None


def validate_email(email: str) -> str | None:
    if not email:
        return "Email er påkrævet"
    if not _EMAIL_RE.match(email):
        return "Ugyldig email adresse"
    return None


def validate_password(password: str) -> str | None:
    if not password:
        return "Password er påkrævet"
    if len(password) < MIN_PASSWORD_LENGTH:
        return f"Password skal være mindst {MIN_PASSWORD_LENGTH} tegn"
    return None


def require_valid(*results: str | None) -> None:
    """Raise ValidationError for the first failed check."""
    for message in results:
        if message:
            raise ValidationError(message)
