"""Session and access-guard logic for the Flowcaser front-end.

Two cooperating pieces: the SessionStore (per-tab user, profile and session,
kept in step with Supabase auth) and the RouteGuard (per-request redirect
rules, run by RouteGuardMiddleware).
"""
