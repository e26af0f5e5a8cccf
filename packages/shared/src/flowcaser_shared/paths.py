"""Route constants for the Flowcaser front-end.

These are the single source of truth for which paths the route guard
protects. The prefixes must stay byte-for-byte compatible with the deployed
front-end: matching is a plain `startswith`, so `/time` also covers
`/time/new` (and `/timeline`, should such a page ever appear).
"""

ROOT_PATH = "/"

# Where authenticated users land, and where anonymous users are sent
LANDING_PATH = "/dashboard"
LOGIN_PATH = "/auth/login"

# Login, register, password reset
AUTH_PREFIX = "/auth"

PROTECTED_PREFIXES: tuple[str, ...] = (
    "/dashboard",
    "/knowledge",
    "/bugs",
    "/features",
    "/time",
    "/chat",
    "/settings",
    "/notifications",
)

# Never intercepted: API routes, static assets, framework internals
EXEMPT_PREFIXES: tuple[str, ...] = (
    "/api",
    "/static",
    "/_next/static",
    "/_next/image",
    "/favicon.ico",
)


def is_root(path: str) -> bool:
    return path == ROOT_PATH


def is_auth_page(path: str) -> bool:
    return path.startswith(AUTH_PREFIX)


def is_protected(path: str) -> bool:
    return any(path.startswith(prefix) for prefix in PROTECTED_PREFIXES)


def is_exempt(path: str, prefixes: tuple[str, ...] = EXEMPT_PREFIXES) -> bool:
    return any(path.startswith(prefix) for prefix in prefixes)
