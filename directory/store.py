"""
directory/store.py -- The user directory: cursor-paginated listing and user administration.

Pattern: Repository + Data Mapper, like auth/store.py. DirectoryStore owns the
write side of users and their role/company assignments, and the read side of
the paginated listing.

Security-relevant writes revoke every session of the affected user in the
same transaction as the change itself:
  - password change
  - role-set or company-set replacement
  - single role or company revocation
  - is_active true -> false (update or deactivate)

Multi-step writes run on one connection inside one transaction at
ASSIGNMENT_ISOLATION_LEVEL, so a concurrent replacement can never interleave
its deactivate/insert steps with ours.

Security: all queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager

from sqlalchemy import Table, select, true
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from auth.schema import (
    as_aware,
    companies,
    roles,
    user_companies,
    user_roles,
    users,
    utcnow,
)
from auth.sessions import TokenStore
from auth.store import (
    batch_load_permissions_by_roles,
    batch_load_user_companies,
    batch_load_user_roles,
)
from auth.tokens import hash_password
from core.config import get_settings, supported_isolation_levels
from core.errors import ConflictError, FieldIssue, InputValidationError, NotFoundError
from directory.filters import FilterSpec, RelationFilter, apply_filters
from directory.models import NewUser, Page, UserDetail, UserListItem, UserListQuery
from directory.pagination import PageRequest, execute_cursor_pagination

logger = logging.getLogger("tenantgate.directory")

# Columns update_user() may change. Anything else is a caller bug.
_UPDATABLE_FIELDS = frozenset({"username", "email", "full_name", "image", "is_active"})


class DirectoryStore:
    """Repository for the user directory.

    Usage:
        directory = DirectoryStore(engine, TokenStore(engine))
        page = directory.list_users(UserListQuery(search="ann", limit=20))
        next_page = directory.list_users(UserListQuery(after_cursor=page.after_cursor))
    """

    def __init__(self, engine: Engine, token_store: TokenStore, isolation_level: str | None = None) -> None:
        self.engine = engine
        self.token_store = token_store
        level = (isolation_level or get_settings().assignment_isolation_level).upper()
        if level not in supported_isolation_levels(engine.dialect.name):
            raise ValueError(f"Isolation level {level} is not supported by {engine.dialect.name}.")
        self.isolation_level = level

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def list_users(self, query: UserListQuery) -> Page[UserListItem]:
        """Return one page of users matching query, in users.id order.

        Raises InputValidationError for a malformed cursor or when both
        cursors are supplied.
        """
        request = PageRequest.build(
            limit=query.limit,
            after_cursor=query.after_cursor,
            before_cursor=query.before_cursor,
            order=query.order,
        )
        spec = FilterSpec(
            search=query.search,
            search_columns=(users.c.username, users.c.full_name, users.c.email),
            active_column=users.c.is_active,
            is_active=query.is_active,
            relations=(
                RelationFilter(
                    junction=user_roles,
                    owner_fk=user_roles.c.user_id,
                    target_fk=user_roles.c.role_id,
                    target_id=query.role_id,
                    target_active=roles.c.is_active,
                ),
                RelationFilter(
                    junction=user_companies,
                    owner_fk=user_companies.c.user_id,
                    target_fk=user_companies.c.company_id,
                    target_id=query.company_id,
                    target_active=companies.c.is_active,
                ),
            ),
        )
        # Keys only; the heavy columns come from the batched hydrate step.
        key_query = apply_filters(select(users.c.id), users.c.id, spec)
        with self.engine.connect() as conn:
            return execute_cursor_pagination(conn, key_query, users.c.id, request, _hydrate_list_items)

    def get_user_detail(self, user_id: int) -> UserDetail | None:
        """Return the user with live roles, permissions and companies, or None."""
        with self.engine.connect() as conn:
            return _load_detail(conn, user_id)

    # ------------------------------------------------------------------
    # Create / update / deactivate
    # ------------------------------------------------------------------

    def create_user(self, new_user: NewUser) -> UserDetail:
        """Create a user with its initial role and company assignments.

        Raises ConflictError for a taken username or email, NotFoundError if
        any role or company id is missing or inactive. Nothing is written on
        failure.
        """
        hashed = hash_password(new_user.password)
        role_ids = _dedupe(new_user.role_ids)
        company_ids = _dedupe(new_user.company_ids)
        with self._transaction() as conn:
            _check_unique(conn, username=new_user.username, email=new_user.email)
            _require_active_ids(conn, roles, role_ids, "role_ids")
            _require_active_ids(conn, companies, company_ids, "company_ids")
            now = utcnow()
            try:
                result = conn.execute(
                    users.insert().values(
                        username=new_user.username,
                        email=new_user.email,
                        hashed_password=hashed,
                        full_name=new_user.full_name,
                        image=new_user.image,
                        is_active=new_user.is_active,
                        created_at=now,
                        updated_at=now,
                    )
                )
            except IntegrityError as exc:
                raise ConflictError("Username or email already exists.") from exc
            user_id = result.inserted_primary_key[0]
            _insert_assignments(conn, user_roles, user_roles.c.role_id, user_id, role_ids, now)
            _insert_assignments(conn, user_companies, user_companies.c.company_id, user_id, company_ids, now)
            detail = _load_detail(conn, user_id)
        logger.info("User created: user_id=%s roles=%s companies=%s", user_id, role_ids, company_ids)
        return detail

    def update_user(self, user_id: int, **fields) -> UserDetail:
        """Update profile fields and/or is_active.

        Accepted keys: username, email, full_name, image, is_active. Keys
        whose value is None are ignored. Deactivating an active user revokes
        all of their sessions in the same transaction.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise InputValidationError(
                fields=[FieldIssue(field=name, message="Field cannot be updated.") for name in sorted(unknown)]
            )
        changes = {k: v for k, v in fields.items() if v is not None}

        with self._transaction() as conn:
            current = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
            if current is None:
                raise NotFoundError("User not found.")
            _check_unique(
                conn,
                username=changes.get("username") if changes.get("username") != current.username else None,
                email=changes.get("email") if changes.get("email") != current.email else None,
            )
            if changes:
                try:
                    conn.execute(
                        users.update().where(users.c.id == user_id).values(**changes, updated_at=utcnow())
                    )
                except IntegrityError as exc:
                    raise ConflictError("Username or email already exists.") from exc
            if current.is_active and changes.get("is_active") is False:
                self.token_store.revoke_all_user_tokens(user_id, conn=conn)
                logger.info("User deactivated: user_id=%s", user_id)
            detail = _load_detail(conn, user_id)
        return detail

    def deactivate_user(self, user_id: int) -> None:
        """Soft delete: is_active=False and every session revoked.

        Raises NotFoundError if the user does not exist.
        """
        with self._transaction() as conn:
            result = conn.execute(
                users.update().where(users.c.id == user_id).values(is_active=False, updated_at=utcnow())
            )
            if result.rowcount == 0:
                raise NotFoundError("User not found.")
            self.token_store.revoke_all_user_tokens(user_id, conn=conn)
        logger.info("User deactivated: user_id=%s", user_id)

    def change_password(self, user_id: int, new_password: str) -> None:
        """Rehash the password and revoke every session of the user."""
        hashed = hash_password(new_password)
        with self._transaction() as conn:
            result = conn.execute(
                users.update().where(users.c.id == user_id).values(hashed_password=hashed, updated_at=utcnow())
            )
            if result.rowcount == 0:
                raise NotFoundError("User not found.")
            self.token_store.revoke_all_user_tokens(user_id, conn=conn)
        logger.info("Password changed: user_id=%s", user_id)

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    def assign_roles(self, user_id: int, role_ids: Sequence[int]) -> UserDetail:
        """Replace the user's live role set with role_ids and revoke their sessions."""
        return self._replace_assignments(
            user_id, role_ids, junction=user_roles, target_fk=user_roles.c.role_id, target=roles, field="role_ids"
        )

    def assign_companies(self, user_id: int, company_ids: Sequence[int]) -> UserDetail:
        """Replace the user's live company set with company_ids and revoke their sessions."""
        return self._replace_assignments(
            user_id,
            company_ids,
            junction=user_companies,
            target_fk=user_companies.c.company_id,
            target=companies,
            field="company_ids",
        )

    def revoke_role(self, user_id: int, role_id: int) -> None:
        """Deactivate one live role assignment. Raises NotFoundError if none is live."""
        self._revoke_assignment(user_id, role_id, user_roles, user_roles.c.role_id, "role")

    def revoke_company(self, user_id: int, company_id: int) -> None:
        """Deactivate one live company membership. Raises NotFoundError if none is live."""
        self._revoke_assignment(user_id, company_id, user_companies, user_companies.c.company_id, "company")

    def _replace_assignments(
        self,
        user_id: int,
        ids: Sequence[int],
        *,
        junction: Table,
        target_fk,
        target: Table,
        field: str,
    ) -> UserDetail:
        new_ids = _dedupe(ids)
        with self._transaction() as conn:
            _require_user(conn, user_id)
            _require_active_ids(conn, target, new_ids, field)
            conn.execute(
                junction.update()
                .where(junction.c.user_id == user_id)
                .where(junction.c.is_active == true())
                .values(is_active=False)
            )
            _insert_assignments(conn, junction, target_fk, user_id, new_ids, utcnow())
            self.token_store.revoke_all_user_tokens(user_id, conn=conn)
            detail = _load_detail(conn, user_id)
        logger.info("%s replaced for user_id=%s: %s", junction.name, user_id, new_ids)
        return detail

    def _revoke_assignment(self, user_id: int, target_id: int, junction: Table, target_fk, label: str) -> None:
        with self._transaction() as conn:
            result = conn.execute(
                junction.update()
                .where(junction.c.user_id == user_id)
                .where(target_fk == target_id)
                .where(junction.c.is_active == true())
                .values(is_active=False)
            )
            if result.rowcount == 0:
                raise NotFoundError(f"User has no active {label} assignment with id {target_id}.")
            self.token_store.revoke_all_user_tokens(user_id, conn=conn)
        logger.info("Revoked %s id=%s from user_id=%s", label, target_id, user_id)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def _transaction(self) -> Iterator[Connection]:
        """One connection at ASSIGNMENT_ISOLATION_LEVEL inside BEGIN/COMMIT.

        Rolls back if the block raises.
        """
        with self.engine.connect() as conn:
            conn.execution_options(isolation_level=self.isolation_level)
            with conn.begin():
                yield conn


# ---------------------------------------------------------------------------
# Helpers (connection-scoped so they join the caller's transaction)
# ---------------------------------------------------------------------------


def _dedupe(ids: Sequence[int]) -> list[int]:
    return list(dict.fromkeys(ids))


def _require_user(conn: Connection, user_id: int) -> None:
    if conn.execute(select(users.c.id).where(users.c.id == user_id)).fetchone() is None:
        raise NotFoundError("User not found.")


def _require_active_ids(conn: Connection, table: Table, ids: list[int], field: str) -> None:
    """Raise NotFoundError unless every id names an active row of table."""
    if not ids:
        return
    found = {
        row.id
        for row in conn.execute(select(table.c.id).where(table.c.id.in_(ids)).where(table.c.is_active == true()))
    }
    missing = [i for i in ids if i not in found]
    if missing:
        raise NotFoundError(
            f"Invalid or inactive {table.name}: {missing}",
            fields=[FieldIssue(field=field, message=f"Unknown or inactive ids: {missing}")],
        )


def _check_unique(conn: Connection, username: str | None = None, email: str | None = None) -> None:
    issues: list[FieldIssue] = []
    if username is not None:
        if conn.execute(select(users.c.id).where(users.c.username == username)).fetchone() is not None:
            issues.append(FieldIssue(field="username", message="Username already exists."))
    if email is not None:
        if conn.execute(select(users.c.id).where(users.c.email == email)).fetchone() is not None:
            issues.append(FieldIssue(field="email", message="Email already exists."))
    if issues:
        raise ConflictError("Username or email already exists.", fields=issues)


def _insert_assignments(conn: Connection, junction: Table, target_fk, user_id: int, ids: list[int], now) -> None:
    if not ids:
        return
    conn.execute(
        junction.insert(),
        [{"user_id": user_id, target_fk.name: target_id, "is_active": True, "created_at": now} for target_id in ids],
    )


def _hydrate_list_items(conn: Connection, keys: Sequence[int]) -> dict[int, UserListItem]:
    """Batch-load users and their live memberships for one page of keys."""
    rows = conn.execute(users.select().where(users.c.id.in_(list(keys)))).fetchall()
    role_map = batch_load_user_roles(conn, keys)
    company_map = batch_load_user_companies(conn, keys)
    return {
        row.id: UserListItem(
            id=row.id,
            username=row.username,
            email=row.email,
            full_name=row.full_name,
            is_active=bool(row.is_active),
            image=row.image,
            created_at=as_aware(row.created_at),
            roles=role_map.get(row.id, []),
            companies=company_map.get(row.id, []),
        )
        for row in rows
    }


def _load_detail(conn: Connection, user_id: int) -> UserDetail | None:
    row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
    if row is None:
        return None
    role_list = batch_load_user_roles(conn, [user_id]).get(user_id, [])
    return UserDetail(
        id=row.id,
        username=row.username,
        email=row.email,
        full_name=row.full_name,
        is_active=bool(row.is_active),
        image=row.image,
        created_at=as_aware(row.created_at),
        updated_at=as_aware(row.updated_at),
        roles=role_list,
        permissions=batch_load_permissions_by_roles(conn, [r.id for r in role_list]),
        companies=batch_load_user_companies(conn, [user_id]).get(user_id, []),
    )
