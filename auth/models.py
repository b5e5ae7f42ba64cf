"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores return these;
routes map them onto the Pydantic response models in api/models.py.

Timestamps are timezone-aware UTC datetimes. The store strips tzinfo on the
way in and adds it back on the way out.

Layer rule: no imports from api/, directory/, or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class User:
    """An identity. Never deleted; is_active=False is the soft delete.

    hashed_password is a bcrypt hash. It is loaded only by the identity
    lookups used for login, and is None everywhere else.
    """

    username: str
    email: str
    full_name: str | None = None
    id: int | None = None
    hashed_password: str | None = None
    image: str | None = None
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Role:
    name: str
    description: str | None = None
    id: int | None = None
    is_active: bool = True


@dataclass
class Permission:
    name: str
    description: str | None = None
    id: int | None = None
    is_active: bool = True


@dataclass
class Company:
    """A tenant. code is unique and stable; name is for display."""

    code: str
    name: str
    id: int | None = None
    is_active: bool = True


@dataclass
class Grants:
    """The live authorization graph of one user.

    Only assignments whose junction row and both endpoints are active appear
    here. permissions are the ones reachable through the live roles.
    """

    roles: list[Role] = field(default_factory=list)
    permissions: list[Permission] = field(default_factory=list)
    companies: list[Company] = field(default_factory=list)


@dataclass
class IssuedToken:
    """Returned once at login. The raw token is never persisted."""

    token: str
    expires_at: datetime


@dataclass
class SessionInfo:
    """Metadata of one live session. Deliberately has no token field."""

    id: int
    user_id: int
    expires_at: datetime
    created_at: datetime
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass
class SessionUser:
    """What verify_access_token() resolves a token to.

    abilities is the sorted, duplicate-free wire list, e.g.
    ["DIRECTOR", "company:1", "permission:PRJ_VIEW"].
    """

    user_id: int
    username: str
    email: str
    full_name: str | None
    is_active: bool
    abilities: list[str] = field(default_factory=list)
