"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and access.

Token transport, checked in priority order:
  1. Authorization: Bearer <token> header -- API clients.
  2. Auth cookie (AUTH_COOKIE_NAME, "mt_auth" by default) -- browser clients.

try_get_current_session() is the soft variant (returns None on failure).
get_current_session() wraps it and raises AuthenticationError (401).
require_access() builds a dependency that also checks an AccessRequirement
and raises AuthorizationError (403).

The resolved SessionUser and its ParsedAbilities are cached on request.state
so several guards on one request verify the token only once.

Layer rule: may import from fastapi because this module is part of the
FastAPI dependency injection system. No imports from api/ or directory/.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from auth.abilities import ParsedAbilities, parse_abilities
from auth.access import AccessRequirement, has_access
from auth.models import SessionUser
from core.config import get_settings
from core.errors import AuthenticationError, AuthorizationError


def extract_token(request: Request) -> str | None:
    """Return the raw token from the Bearer header, else from the auth cookie."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header[:7].lower() == "bearer ":
        token = auth_header[7:].strip()
        if token:
            return token
    return request.cookies.get(get_settings().auth_cookie_name) or None


def try_get_current_session(request: Request) -> SessionUser | None:
    """Attempt to authenticate the request. Never raises.

    Callers that need a hard 401 should use get_current_session().
    """
    if hasattr(request.state, "session_user"):
        return request.state.session_user

    token = extract_token(request)
    session = request.app.state.token_store.verify_access_token(token) if token else None

    request.state.session_user = session
    request.state.abilities = parse_abilities(session.abilities) if session else ParsedAbilities()
    request.state.access_token = token if session else None
    return session


def get_current_session(request: Request) -> SessionUser:
    """Require authentication. Raises AuthenticationError if not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(session: SessionUser = Depends(get_current_session)): ...
    """
    session = try_get_current_session(request)
    if session is None:
        raise AuthenticationError()
    return session


def require_access(requirement: AccessRequirement) -> Callable[[Request], SessionUser]:
    """Build a dependency that authenticates and then checks requirement.

    Use as a FastAPI dependency:
        @router.get("/users")
        def route(session: SessionUser = Depends(require_access(
            AccessRequirement.of(permissions=[PermissionName.USER_VIEW])))): ...
    """

    def dependency(request: Request) -> SessionUser:
        session = get_current_session(request)
        if not has_access(request.state.abilities, requirement):
            raise AuthorizationError()
        return session

    return dependency


def require_permissions(*permissions: str, require_all: bool = False) -> Callable[[Request], SessionUser]:
    """Shorthand for require_access() over permissions only."""
    return require_access(AccessRequirement.of(permissions=permissions, require_all=require_all))
