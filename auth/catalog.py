"""
auth/catalog.py -- The enumerated role and permission vocabularies.

Ability parsing only accepts names listed here. A role or permission row in
the database whose name is not enumerated still works for storage and
listing, but never survives parse_abilities() and so never grants access.
Adding a capability is a code change on purpose.

Layer rule: no imports from api/, directory/, or core/.
"""

from __future__ import annotations

from enum import Enum


class RoleName(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    DIRECTOR = "DIRECTOR"
    IT_ADMIN = "IT_ADMIN"
    PROD_MANAGER = "PROD_MANAGER"
    PROJECT_MANAGER = "PROJECT_MANAGER"
    SHOP_OPERATOR = "SHOP_OPERATOR"
    DEVELOPER = "DEVELOPER"


class PermissionName(str, Enum):
    PRJ_VIEW = "PRJ_VIEW"
    PRJ_CREATE = "PRJ_CREATE"
    PRJ_EDIT = "PRJ_EDIT"
    PRJ_DELETE = "PRJ_DELETE"
    USER_VIEW = "USER_VIEW"
    USER_CREATE = "USER_CREATE"
    USER_EDIT = "USER_EDIT"
    USER_DELETE = "USER_DELETE"
    ROLE_VIEW = "ROLE_VIEW"
    ROLE_MANAGE = "ROLE_MANAGE"
    PERMISSION_VIEW = "PERMISSION_VIEW"
    PERMISSION_MANAGE = "PERMISSION_MANAGE"


# The single role that short-circuits every access check.
SUPER_ADMIN_ROLE = RoleName.SUPER_ADMIN.value

ROLE_NAMES: frozenset[str] = frozenset(r.value for r in RoleName)
PERMISSION_NAMES: frozenset[str] = frozenset(p.value for p in PermissionName)

ROLE_DESCRIPTIONS: dict[str, str] = {
    RoleName.SUPER_ADMIN.value: "System administrator: full configuration and support access",
    RoleName.DIRECTOR.value: "Leadership: dashboards, reports and schedules (read only)",
    RoleName.IT_ADMIN.value: "Application admin: users, roles, permissions and master data",
    RoleName.PROD_MANAGER.value: "Production manager: runs projects and planning",
    RoleName.PROJECT_MANAGER.value: "Project manager",
    RoleName.SHOP_OPERATOR.value: "Shop floor operator: views plans and records actual hours",
    RoleName.DEVELOPER.value: "Developer",
}
