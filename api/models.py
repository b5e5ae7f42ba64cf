"""
API request and response models for TenantGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
directory/models.py, which own the internal domain representation. Route
handlers map between the two with the from_domain() factories below.

Separation of concerns: domain dataclasses = domain truth; api/ models = API contract.
"""

from datetime import datetime
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Company, Permission, Role
from auth.schema import MAX_ID
from directory.models import Page, UserDetail, UserListItem

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one "@", no whitespace, a dot in the domain part.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
USERNAME_PATTERN = r"^[A-Za-z0-9_.\-]+$"

_Username = Annotated[str, Field(min_length=3, max_length=50, pattern=USERNAME_PATTERN)]
_Email = Annotated[str, Field(max_length=255, pattern=EMAIL_PATTERN)]
_Password = Annotated[str, Field(min_length=6, max_length=128)]
_Id = Annotated[int, Field(ge=1, le=MAX_ID)]


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class FieldError(BaseModel):
    """One field-level validation problem."""

    model_config = ConfigDict(frozen=True)

    field: str
    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    fields: list[FieldError] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"  # "healthy" | "degraded"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class RoleOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: Optional[str] = None

    @classmethod
    def from_domain(cls, role: Role) -> "RoleOut":
        return cls(id=role.id, name=role.name, description=role.description)


class PermissionOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: Optional[str] = None

    @classmethod
    def from_domain(cls, permission: Permission) -> "PermissionOut":
        return cls(id=permission.id, name=permission.name, description=permission.description)


class CompanyOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    code: str
    name: str

    @classmethod
    def from_domain(cls, company: Company) -> "CompanyOut":
        return cls(id=company.id, code=company.code, name=company.name)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserListItemResponse(BaseModel):
    """One row of GET /api/v1/users. Only live memberships are listed."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    full_name: Optional[str]
    is_active: bool
    image: Optional[str]
    created_at: datetime
    roles: list[RoleOut]
    companies: list[CompanyOut]

    @classmethod
    def from_domain(cls, item: UserListItem) -> "UserListItemResponse":
        return cls(
            id=item.id,
            username=item.username,
            email=item.email,
            full_name=item.full_name,
            is_active=item.is_active,
            image=item.image,
            created_at=item.created_at,
            roles=[RoleOut.from_domain(r) for r in item.roles],
            companies=[CompanyOut.from_domain(c) for c in item.companies],
        )


class CursorInfo(BaseModel):
    """Opaque cursors for the neighbouring pages. None when there is no such page."""

    model_config = ConfigDict(frozen=True)

    after_cursor: Optional[str] = None
    before_cursor: Optional[str] = None


class UserListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    data: list[UserListItemResponse]
    cursor: CursorInfo

    @classmethod
    def from_page(cls, page: Page[UserListItem]) -> "UserListResponse":
        return cls(
            data=[UserListItemResponse.from_domain(item) for item in page.items],
            cursor=CursorInfo(after_cursor=page.after_cursor, before_cursor=page.before_cursor),
        )


class UserDetailResponse(BaseModel):
    """A user with the live grant graph, including permissions derived from roles."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    full_name: Optional[str]
    is_active: bool
    image: Optional[str]
    created_at: datetime
    updated_at: datetime
    roles: list[RoleOut]
    permissions: list[PermissionOut]
    companies: list[CompanyOut]

    @classmethod
    def from_domain(cls, detail: UserDetail) -> "UserDetailResponse":
        return cls(
            id=detail.id,
            username=detail.username,
            email=detail.email,
            full_name=detail.full_name,
            is_active=detail.is_active,
            image=detail.image,
            created_at=detail.created_at,
            updated_at=detail.updated_at,
            roles=[RoleOut.from_domain(r) for r in detail.roles],
            permissions=[PermissionOut.from_domain(p) for p in detail.permissions],
            companies=[CompanyOut.from_domain(c) for c in detail.companies],
        )


class UserCreate(BaseModel):
    """Request body for POST /api/v1/users."""

    username: _Username
    email: _Email
    password: _Password
    full_name: Optional[str] = Field(default=None, max_length=100)
    image: Optional[str] = Field(default=None, max_length=500)
    is_active: bool = True
    role_ids: list[_Id] = Field(default_factory=list)
    company_ids: list[_Id] = Field(default_factory=list)


class UserUpdate(BaseModel):
    """Request body for PUT /api/v1/users/{id}. Omitted fields are left unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: Optional[_Username] = None
    email: Optional[_Email] = None
    full_name: Optional[str] = Field(default=None, max_length=100)
    image: Optional[str] = Field(default=None, max_length=500)
    is_active: Optional[bool] = None


class RoleAssign(BaseModel):
    """Request body for POST /api/v1/users/{id}/roles. Replaces the live role set."""

    role_ids: list[_Id] = Field(min_length=1, max_length=50)


class CompanyAssign(BaseModel):
    """Request body for POST /api/v1/users/{id}/companies. Replaces the live company set."""

    company_ids: list[_Id] = Field(min_length=1, max_length=200)


class PasswordChange(BaseModel):
    """Request body for PATCH /api/v1/users/{id}/password."""

    new_password: _Password


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login. identifier is a username or an email."""

    identifier: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)


class LoginResponse(BaseModel):
    """Successful login. The same token is also set as an httpOnly cookie."""

    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    user: UserDetailResponse
    abilities: list[str]


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    username: str
    email: str
    full_name: Optional[str]
    abilities: list[str]
