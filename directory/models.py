"""
directory/models.py -- Dataclasses for the user directory.

Pure data containers. DirectoryStore builds them; api/routes/v1/users.py maps
them onto Pydantic response models.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Generic, Optional, TypeVar

from auth.models import Company, Permission, Role

T = TypeVar("T")


@dataclass
class UserListQuery:
    """Filters and paging for DirectoryStore.list_users().

    None means "no filter". order is "ASC" or "DESC" on users.id.
    """

    search: Optional[str] = None
    is_active: Optional[bool] = None
    role_id: Optional[int] = None
    company_id: Optional[int] = None
    limit: Optional[int] = None
    after_cursor: Optional[str] = None
    before_cursor: Optional[str] = None
    order: str = "DESC"


@dataclass
class UserListItem:
    """One directory row: the user plus live role and company memberships."""

    id: int
    username: str
    email: str
    full_name: Optional[str]
    is_active: bool
    image: Optional[str]
    created_at: datetime
    roles: list[Role] = field(default_factory=list)
    companies: list[Company] = field(default_factory=list)


@dataclass
class UserDetail:
    """A user with the full live grant graph, including derived permissions."""

    id: int
    username: str
    email: str
    full_name: Optional[str]
    is_active: bool
    image: Optional[str]
    created_at: datetime
    updated_at: datetime
    roles: list[Role] = field(default_factory=list)
    permissions: list[Permission] = field(default_factory=list)
    companies: list[Company] = field(default_factory=list)


@dataclass
class NewUser:
    """Input for DirectoryStore.create_user(). password is plaintext here only."""

    username: str
    email: str
    password: str
    full_name: Optional[str] = None
    image: Optional[str] = None
    is_active: bool = True
    role_ids: list[int] = field(default_factory=list)
    company_ids: list[int] = field(default_factory=list)


@dataclass
class Page(Generic[T]):
    """One page of results with the opaque cursors for its neighbours.

    after_cursor fetches the page that follows this one; before_cursor the
    page that precedes it. Either is None when there is nothing that way.
    """

    items: list[T] = field(default_factory=list)
    after_cursor: Optional[str] = None
    before_cursor: Optional[str] = None
