"""
auth/store.py -- Identity lookups, live-grant loading, and the RBAC catalog.

Pattern: Repository + Data Mapper. UserStore is the repository; the _row_to_*
functions are the mappers. Route and dependency code never touches SQL.

The store receives an Engine; it does not own one. Tests hand it an
in-memory SQLite engine, the app hands it the configured database.

Live grants:
  A role is live for a user when user_roles.is_active AND roles.is_active.
  A permission is live when it is reachable through a live role via an active
  role_permissions row AND permissions.is_active. Companies follow the same
  rule as roles. The batch loaders below are the single definition of that
  rule for multi-user reads; TokenStore.verify_access_token() applies the
  same predicates in its one-statement join.

Security:
  All queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy import or_, select, true
from sqlalchemy.engine import Connection, Engine

from auth.models import Company, Grants, Permission, Role, User
from auth.schema import (
    as_aware,
    companies,
    permissions,
    role_permissions,
    roles,
    user_companies,
    user_roles,
    users,
    utcnow,
)

logger = logging.getLogger("tenantgate.auth.store")


class UserStore:
    """Repository for users (read side), roles, permissions and companies.

    Usage:
        store = UserStore(make_engine("sqlite:///tenantgate.db"))
        user = store.get_active_by_identifier("alice@example.com")
        grants = store.load_grants(user.id)
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def get_active_by_identifier(self, identifier: str) -> User | None:
        """Resolve an active user by username OR email, with the password hash.

        Returns None when nothing matches or when the identifier matches two
        different users (one by username, another by email).
        """
        if not identifier:
            return None
        with self.engine.connect() as conn:
            rows = conn.execute(
                users.select()
                .where(or_(users.c.username == identifier, users.c.email == identifier))
                .where(users.c.is_active == true())
                .limit(2)
            ).fetchall()
        if len(rows) != 1:
            return None
        return _row_to_user(rows[0], with_password=True)

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key, active or not. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_active_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                users.select().where(users.c.id == user_id).where(users.c.is_active == true())
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            rows = conn.execute(select(users.c.id)).fetchall()
        return len(rows)

    # ------------------------------------------------------------------
    # Live grants
    # ------------------------------------------------------------------

    def load_grants(self, user_id: int) -> Grants:
        """Return the live roles, permissions and companies of one user.

        All three reads share one connection so they observe the same data on
        databases that give a connection a consistent snapshot.
        """
        with self.engine.connect() as conn:
            user_role_map = batch_load_user_roles(conn, [user_id])
            user_company_map = batch_load_user_companies(conn, [user_id])
            role_list = user_role_map.get(user_id, [])
            perm_list = batch_load_permissions_by_roles(conn, [r.id for r in role_list])
        return Grants(
            roles=role_list,
            permissions=perm_list,
            companies=user_company_map.get(user_id, []),
        )

    # ------------------------------------------------------------------
    # Catalog: create
    # ------------------------------------------------------------------

    def create_role(self, name: str, description: str | None = None, is_active: bool = True) -> int:
        """Insert a role and return its ID. Raises IntegrityError on a duplicate name."""
        with self.engine.begin() as conn:
            result = conn.execute(
                roles.insert().values(name=name, description=description, is_active=is_active, created_at=utcnow())
            )
        return result.inserted_primary_key[0]

    def create_permission(self, name: str, description: str | None = None, is_active: bool = True) -> int:
        """Insert a permission and return its ID. Raises IntegrityError on a duplicate name."""
        with self.engine.begin() as conn:
            result = conn.execute(
                permissions.insert().values(
                    name=name, description=description, is_active=is_active, created_at=utcnow()
                )
            )
        return result.inserted_primary_key[0]

    def create_company(self, code: str, name: str, is_active: bool = True) -> int:
        """Insert a company and return its ID. Raises IntegrityError on a duplicate code."""
        with self.engine.begin() as conn:
            result = conn.execute(
                companies.insert().values(code=code, name=name, is_active=is_active, created_at=utcnow())
            )
        return result.inserted_primary_key[0]

    def grant_permission(self, role_id: int, permission_id: int) -> None:
        """Map a permission to a role, reactivating an existing mapping if present."""
        with self.engine.begin() as conn:
            result = conn.execute(
                role_permissions.update()
                .where(role_permissions.c.role_id == role_id)
                .where(role_permissions.c.permission_id == permission_id)
                .values(is_active=True)
            )
            if result.rowcount == 0:
                conn.execute(
                    role_permissions.insert().values(
                        role_id=role_id, permission_id=permission_id, is_active=True, created_at=utcnow()
                    )
                )

    def revoke_permission(self, role_id: int, permission_id: int) -> bool:
        """Deactivate a role->permission mapping. Returns True if a live row changed."""
        with self.engine.begin() as conn:
            result = conn.execute(
                role_permissions.update()
                .where(role_permissions.c.role_id == role_id)
                .where(role_permissions.c.permission_id == permission_id)
                .where(role_permissions.c.is_active == true())
                .values(is_active=False)
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Catalog: activate / deactivate
    # ------------------------------------------------------------------

    def set_role_active(self, role_id: int, is_active: bool) -> bool:
        return self._set_active(roles, role_id, is_active)

    def set_permission_active(self, permission_id: int, is_active: bool) -> bool:
        return self._set_active(permissions, permission_id, is_active)

    def set_company_active(self, company_id: int, is_active: bool) -> bool:
        return self._set_active(companies, company_id, is_active)

    def _set_active(self, table, row_id: int, is_active: bool) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(table.update().where(table.c.id == row_id).values(is_active=is_active))
        logger.info("%s id=%s is_active=%s", table.name, row_id, is_active)
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Catalog: read
    # ------------------------------------------------------------------

    def get_role_by_name(self, name: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(roles.select().where(roles.c.name == name)).fetchone()
        return _row_to_role(row) if row is not None else None

    def list_roles(self, active_only: bool = True) -> list[Role]:
        return [_row_to_role(r) for r in self._list(roles, roles.c.name, active_only)]

    def list_permissions(self, active_only: bool = True) -> list[Permission]:
        return [_row_to_permission(r) for r in self._list(permissions, permissions.c.name, active_only)]

    def list_companies(self, active_only: bool = True) -> list[Company]:
        return [_row_to_company(r) for r in self._list(companies, companies.c.code, active_only)]

    def _list(self, table, order_column, active_only: bool):
        query = table.select().order_by(order_column)
        if active_only:
            query = query.where(table.c.is_active == true())
        with self.engine.connect() as conn:
            return conn.execute(query).fetchall()


# ---------------------------------------------------------------------------
# Batch loaders
#
# Module-level and connection-scoped so DirectoryStore can run them inside its
# own transaction. Each returns only live assignments.
# ---------------------------------------------------------------------------


def batch_load_user_roles(conn: Connection, user_ids: Iterable[int]) -> dict[int, list[Role]]:
    """Map user_id -> live roles, in assignment order, without duplicates."""
    ids = list(user_ids)
    if not ids:
        return {}
    rows = conn.execute(
        select(user_roles.c.user_id, roles)
        .join(roles, roles.c.id == user_roles.c.role_id)
        .where(user_roles.c.user_id.in_(ids))
        .where(user_roles.c.is_active == true())
        .where(roles.c.is_active == true())
        .order_by(user_roles.c.user_id, user_roles.c.id)
    ).fetchall()
    result: dict[int, list[Role]] = {}
    for row in rows:
        bucket = result.setdefault(row.user_id, [])
        if all(r.id != row.id for r in bucket):
            bucket.append(_row_to_role(row))
    return result


def batch_load_user_companies(conn: Connection, user_ids: Iterable[int]) -> dict[int, list[Company]]:
    """Map user_id -> live companies, in assignment order, without duplicates."""
    ids = list(user_ids)
    if not ids:
        return {}
    rows = conn.execute(
        select(user_companies.c.user_id, companies)
        .join(companies, companies.c.id == user_companies.c.company_id)
        .where(user_companies.c.user_id.in_(ids))
        .where(user_companies.c.is_active == true())
        .where(companies.c.is_active == true())
        .order_by(user_companies.c.user_id, user_companies.c.id)
    ).fetchall()
    result: dict[int, list[Company]] = {}
    for row in rows:
        bucket = result.setdefault(row.user_id, [])
        if all(c.id != row.id for c in bucket):
            bucket.append(_row_to_company(row))
    return result


def batch_load_permissions_by_roles(conn: Connection, role_ids: Iterable[int]) -> list[Permission]:
    """Live permissions reachable from any of role_ids, ordered by name."""
    ids = list(role_ids)
    if not ids:
        return []
    rows = conn.execute(
        select(permissions)
        .distinct()
        .join(role_permissions, role_permissions.c.permission_id == permissions.c.id)
        .join(roles, roles.c.id == role_permissions.c.role_id)
        .where(role_permissions.c.role_id.in_(ids))
        .where(role_permissions.c.is_active == true())
        .where(roles.c.is_active == true())
        .where(permissions.c.is_active == true())
        .order_by(permissions.c.name)
    ).fetchall()
    return [_row_to_permission(r) for r in rows]


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row, with_password: bool = False) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        full_name=row.full_name,
        image=row.image,
        hashed_password=row.hashed_password if with_password else None,
        is_active=bool(row.is_active),
        created_at=as_aware(row.created_at),
        updated_at=as_aware(row.updated_at),
    )


def _row_to_role(row) -> Role:
    return Role(id=row.id, name=row.name, description=row.description, is_active=bool(row.is_active))


def _row_to_permission(row) -> Permission:
    return Permission(id=row.id, name=row.name, description=row.description, is_active=bool(row.is_active))


def _row_to_company(row) -> Company:
    return Company(id=row.id, code=row.code, name=row.name, is_active=bool(row.is_active))
