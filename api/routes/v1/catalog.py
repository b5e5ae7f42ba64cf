"""
api/routes/v1/catalog.py -- Read-only listings of the RBAC catalog.

Routes:
  GET /api/v1/roles        -- active roles         (ROLE_VIEW)
  GET /api/v1/permissions  -- active permissions   (PERMISSION_VIEW)
  GET /api/v1/companies    -- active companies     (any authenticated user)

Catalog writes (create, activate/deactivate, role->permission grants) are
done through UserStore from the management CLI, not over HTTP.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import CompanyOut, PermissionOut, RoleOut
from auth.catalog import PermissionName
from auth.dependencies import get_current_session, require_permissions
from auth.models import SessionUser
from auth.store import UserStore

router = APIRouter()


@router.get("/roles", response_model=list[RoleOut])
def list_roles(
    request: Request,
    session: SessionUser = Depends(require_permissions(PermissionName.ROLE_VIEW)),
) -> list[RoleOut]:
    user_store: UserStore = request.app.state.user_store
    return [RoleOut.from_domain(r) for r in user_store.list_roles()]


@router.get("/permissions", response_model=list[PermissionOut])
def list_permissions(
    request: Request,
    session: SessionUser = Depends(require_permissions(PermissionName.PERMISSION_VIEW)),
) -> list[PermissionOut]:
    user_store: UserStore = request.app.state.user_store
    return [PermissionOut.from_domain(p) for p in user_store.list_permissions()]


@router.get("/companies", response_model=list[CompanyOut])
def list_companies(
    request: Request,
    session: SessionUser = Depends(get_current_session),
) -> list[CompanyOut]:
    user_store: UserStore = request.app.state.user_store
    return [CompanyOut.from_domain(c) for c in user_store.list_companies()]
