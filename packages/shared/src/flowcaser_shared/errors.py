"""Error taxonomy for the auth core.

Every error carries a stable `code` so callers (and the UI that renders them
as notifications) can branch without string matching on messages. Provider
messages are kept verbatim in `message`.
"""

from __future__ import annotations

from typing import Any


class AppError(Exception):
    """Base class for all errors raised by Flowcaser packages."""

    code: str = "APP_ERROR"

    def __init__(self, message: str, code: str | None = None, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class ConfigurationError(AppError):
    """Backend credentials missing, placeholder values, or backend unreachable."""

    code = "CONFIGURATION_ERROR"


class AuthError(AppError):
    """The auth provider rejected an operation or could not be reached."""

    code = "AUTH_ERROR"


class ProfileFetchError(AppError):
    """Reading a user profile failed."""

    code = "PROFILE_FETCH_ERROR"


class ProfileWriteError(AppError):
    """Creating or updating a profile or team failed."""

    code = "PROFILE_WRITE_ERROR"


class ValidationError(AppError):
    """Input rejected before any call to the backend."""

    code = "VALIDATION_ERROR"


class NetworkError(AppError):
    """HTTP-level failure without a provider message."""

    code = "NETWORK_ERROR"


def normalize_error(error: object) -> AppError:
    """Coerce anything raised or returned by a backend call into an AppError.

    Handles, in order: our own errors (returned as-is), exceptions, bare
    strings, provider JSON payloads with a message, and HTTP status payloads.
    """
    if isinstance(error, AppError):
        return error

    if isinstance(error, Exception):
        return AppError(str(error) or type(error).__name__)

    if isinstance(error, str):
        return AppError(error)

    if isinstance(error, dict):
        message = error.get("msg") or error.get("error_description") or error.get("message")
        if message:
            code = error.get("error_code") or error.get("code")
            return AppError(str(message), str(code) if code is not None else None, error)

        if error.get("status") and error.get("statusText"):
            return NetworkError(f"{error['status']}: {error['statusText']}", details=error)

    return AppError("An unexpected error occurred")
