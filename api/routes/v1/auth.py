"""
api/routes/v1/auth.py -- Session endpoints.

Routes:
  POST /api/v1/auth/login    -- identifier + password; issues an opaque token and sets the cookie
  POST /api/v1/auth/logout   -- revokes the presented token; clears the cookie
  GET  /api/v1/auth/me       -- identity and current abilities (requires auth)

Security:
  POST /login is rate-limited per client IP (LOGIN_RATE_LIMIT).
  authenticate_user() provides timing equalization -- use it, never inline.
  Every login failure returns the same generic 401 body.
  Cache-Control: no-store on login responses.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    ErrorDetail,
    ErrorResponse,
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    UserDetailResponse,
)
from auth.abilities import build_abilities
from auth.dependencies import get_current_session
from auth.models import SessionUser
from auth.sessions import TokenStore
from auth.store import UserStore
from auth.tokens import authenticate_user, clear_auth_cookie, set_auth_cookie
from core.config import get_settings
from core.errors import AuthenticationError
from directory.store import DirectoryStore

# Auth policy:
# - POST /api/v1/auth/login:   public, rate limited
# - POST /api/v1/auth/logout:  requires auth (get_current_session)
# - GET  /api/v1/auth/me:      requires auth (get_current_session)
router = APIRouter()

_settings = get_settings()


@limiter.limit(_settings.login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with a username or email and a password.

    On success the raw token is returned once in the body and also written
    to the httpOnly auth cookie; only its hash is stored.
    """
    user_store: UserStore = request.app.state.user_store
    token_store: TokenStore = request.app.state.token_store
    directory: DirectoryStore = request.app.state.directory

    user = authenticate_user(user_store, body.identifier, body.password)
    if user is None:
        exc = AuthenticationError()
        resp = JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(),
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    issued = token_store.create_access_token(
        user.id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
    )
    detail = directory.get_user_detail(user.id)
    body_out = LoginResponse(
        access_token=issued.token,
        expires_at=issued.expires_at,
        user=UserDetailResponse.from_domain(detail),
        abilities=build_abilities(detail.roles, detail.permissions, detail.companies),
    )
    resp = JSONResponse(status_code=200, content=body_out.model_dump(mode="json"))
    set_auth_cookie(resp, issued.token, issued.expires_at)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, session: SessionUser = Depends(get_current_session)) -> JSONResponse:
    """Revoke the token that authenticated this request and clear the cookie.

    Other sessions of the same user stay valid.
    """
    token_store: TokenStore = request.app.state.token_store
    token_store.revoke_token(request.state.access_token)
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    clear_auth_cookie(resp)
    return resp


@router.get("/auth/me", response_model=MeResponse)
def me(session: SessionUser = Depends(get_current_session)) -> MeResponse:
    """Return identity and abilities of the current session, as verified this request."""
    return MeResponse(
        user_id=session.user_id,
        username=session.username,
        email=session.email,
        full_name=session.full_name,
        abilities=session.abilities,
    )
