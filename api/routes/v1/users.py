"""
api/routes/v1/users.py -- User directory and user administration endpoints.

Routes:
  GET    /api/v1/users                 -- cursor-paginated, filtered listing   (USER_VIEW)
  GET    /api/v1/users/{id}            -- user with live roles/permissions/companies (USER_VIEW)
  POST   /api/v1/users                 -- create user with initial assignments (USER_CREATE)
  PUT    /api/v1/users/{id}            -- update profile / is_active          (USER_EDIT)
  DELETE /api/v1/users/{id}            -- soft delete                         (USER_DELETE)
  POST   /api/v1/users/{id}/roles      -- replace live role set               (ROLE_MANAGE)
  POST   /api/v1/users/{id}/companies  -- replace live company set            (USER_EDIT)
  PATCH  /api/v1/users/{id}/password   -- set a new password                  (USER_EDIT)

Every write that changes what a user may do (deactivation, password, role or
company set) revokes all of that user's sessions; DirectoryStore does this in
the same transaction as the write.

Self-protection: a caller cannot deactivate their own account through
PUT or DELETE.
"""

from __future__ import annotations

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Path, Query, Request

from api.models import (
    CompanyAssign,
    MessageResponse,
    PasswordChange,
    RoleAssign,
    UserCreate,
    UserDetailResponse,
    UserListResponse,
    UserUpdate,
)
from auth.catalog import PermissionName
from auth.dependencies import require_permissions
from auth.models import SessionUser
from auth.schema import MAX_ID
from core.errors import InputValidationError, NotFoundError
from directory.models import NewUser, UserListQuery
from directory.store import DirectoryStore

router = APIRouter()

_UserId = Annotated[int, Path(ge=1, le=MAX_ID, description="User id.")]


def _directory(request: Request) -> DirectoryStore:
    return request.app.state.directory


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------


@router.get("/users", response_model=UserListResponse)
def list_users(
    request: Request,
    limit: Annotated[Optional[int], Query(ge=1, le=100, description="Page size, 20 when omitted.")] = None,
    after_cursor: Annotated[Optional[str], Query(max_length=512)] = None,
    before_cursor: Annotated[Optional[str], Query(max_length=512)] = None,
    order: Annotated[str, Query(pattern=r"^(?i:asc|desc)$")] = "DESC",
    search: Annotated[Optional[str], Query(max_length=100)] = None,
    is_active: Optional[bool] = None,
    role_id: Annotated[Optional[int], Query(ge=1, le=MAX_ID)] = None,
    company_id: Annotated[Optional[int], Query(ge=1, le=MAX_ID)] = None,
    session: SessionUser = Depends(require_permissions(PermissionName.USER_VIEW)),
) -> UserListResponse:
    """List users in id order. Pass a returned cursor back to fetch the neighbouring page.

    after_cursor and before_cursor are mutually exclusive.
    """
    page = _directory(request).list_users(
        UserListQuery(
            search=search,
            is_active=is_active,
            role_id=role_id,
            company_id=company_id,
            limit=limit,
            after_cursor=after_cursor,
            before_cursor=before_cursor,
            order=order.upper(),
        )
    )
    return UserListResponse.from_page(page)


@router.get("/users/{user_id}", response_model=UserDetailResponse)
def get_user(
    request: Request,
    user_id: _UserId,
    session: SessionUser = Depends(require_permissions(PermissionName.USER_VIEW)),
) -> UserDetailResponse:
    detail = _directory(request).get_user_detail(user_id)
    if detail is None:
        raise NotFoundError("User not found.")
    return UserDetailResponse.from_domain(detail)


# ---------------------------------------------------------------------------
# Write
# ---------------------------------------------------------------------------


@router.post("/users", response_model=UserDetailResponse, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    session: SessionUser = Depends(require_permissions(PermissionName.USER_CREATE)),
) -> UserDetailResponse:
    """Create a user. role_ids and company_ids must name active entities."""
    detail = _directory(request).create_user(
        NewUser(
            username=body.username,
            email=body.email,
            password=body.password,
            full_name=body.full_name,
            image=body.image,
            is_active=body.is_active,
            role_ids=list(body.role_ids),
            company_ids=list(body.company_ids),
        )
    )
    return UserDetailResponse.from_domain(detail)


@router.put("/users/{user_id}", response_model=UserDetailResponse)
def update_user(
    request: Request,
    body: UserUpdate,
    user_id: _UserId,
    session: SessionUser = Depends(require_permissions(PermissionName.USER_EDIT)),
) -> UserDetailResponse:
    """Update profile fields. Setting is_active=false also ends all of the user's sessions."""
    if body.is_active is False and user_id == session.user_id:
        raise InputValidationError.for_field("is_active", "You cannot deactivate your own account.")
    changes = body.model_dump(exclude_unset=True)
    if not changes:
        raise InputValidationError("No fields to update.")
    detail = _directory(request).update_user(user_id, **changes)
    return UserDetailResponse.from_domain(detail)


@router.delete("/users/{user_id}", response_model=MessageResponse)
def delete_user(
    request: Request,
    user_id: _UserId,
    session: SessionUser = Depends(require_permissions(PermissionName.USER_DELETE)),
) -> MessageResponse:
    """Soft delete: the row stays, is_active becomes false, sessions are revoked."""
    if user_id == session.user_id:
        raise InputValidationError.for_field("user_id", "You cannot deactivate your own account.")
    _directory(request).deactivate_user(user_id)
    return MessageResponse(message="User deactivated.")


@router.post("/users/{user_id}/roles", response_model=UserDetailResponse)
def assign_roles(
    request: Request,
    body: RoleAssign,
    user_id: _UserId,
    session: SessionUser = Depends(require_permissions(PermissionName.ROLE_MANAGE)),
) -> UserDetailResponse:
    detail = _directory(request).assign_roles(user_id, body.role_ids)
    return UserDetailResponse.from_domain(detail)


@router.post("/users/{user_id}/companies", response_model=UserDetailResponse)
def assign_companies(
    request: Request,
    body: CompanyAssign,
    user_id: _UserId,
    session: SessionUser = Depends(require_permissions(PermissionName.USER_EDIT)),
) -> UserDetailResponse:
    detail = _directory(request).assign_companies(user_id, body.company_ids)
    return UserDetailResponse.from_domain(detail)


@router.patch("/users/{user_id}/password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: PasswordChange,
    user_id: _UserId,
    session: SessionUser = Depends(require_permissions(PermissionName.USER_EDIT)),
) -> MessageResponse:
    """Set a new password. Every session of the user, including the caller's own, ends."""
    _directory(request).change_password(user_id, body.new_password)
    return MessageResponse(message="Password changed.")
