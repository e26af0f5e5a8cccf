"""Shared building blocks for the Flowcaser auth core.

Provides the pydantic boundary models, the error taxonomy, environment-driven
settings, and the route constants used by both the session store and the
route guard.
"""
