"""
auth/sessions.py -- Opaque access-token persistence and verification.

Pattern: Repository. TokenStore owns the access_tokens table. Every other
module goes through it to issue, verify, or revoke a session.

Lifecycle of a token:
  create_access_token()   -> row inserted, raw token returned once
  verify_access_token()   -> one SELECT: token + owner + live grant graph
  revoke_token()          -> that row deleted (logout)
  revoke_all_user_tokens()-> every row of the user deleted (security events)
  cleanup_expired_tokens()-> rows past expiry deleted (periodic sweep)

Verification never trusts cached state. Abilities are rebuilt from the live
role/permission/company graph on every call, so a revoked role stops working
on the very next request even if the token itself is still valid.

Security:
  Only HMAC-SHA256 hashes of tokens are stored (see auth/tokens.py).
  All queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import Integer, String, and_, cast, literal, null, select, true, union_all
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.sql import CompoundSelect

from auth.abilities import encode_abilities
from auth.models import IssuedToken, SessionInfo, SessionUser
from auth.schema import (
    access_tokens,
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
from auth.tokens import generate_opaque_token, hash_token
from core.config import get_settings

logger = logging.getLogger("tenantgate.sessions")

# Bounds for client metadata stored next to a session.
_MAX_IP_LEN = 45
_MAX_USER_AGENT_LEN = 512


class TokenStore:
    """Repository for opaque session tokens.

    Usage:
        tokens = TokenStore(engine)
        issued = tokens.create_access_token(user.id, ip_address="10.0.0.1")
        session = tokens.verify_access_token(issued.token)
        tokens.revoke_token(issued.token)
    """

    def __init__(self, engine: Engine, ttl_seconds: int | None = None) -> None:
        self.engine = engine
        self.ttl = timedelta(seconds=ttl_seconds if ttl_seconds is not None else get_settings().token_ttl_seconds)

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def create_access_token(
        self,
        user_id: int,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> IssuedToken:
        """Issue a new session for user_id and return the raw token with its expiry.

        Several live sessions per user are allowed; each login adds a row.
        """
        raw = generate_opaque_token()
        now = utcnow()
        expires_at = now + self.ttl
        with self.engine.begin() as conn:
            conn.execute(
                access_tokens.insert().values(
                    user_id=user_id,
                    token_hash=hash_token(raw),
                    expires_at=expires_at,
                    ip_address=ip_address[:_MAX_IP_LEN] if ip_address else None,
                    user_agent=user_agent[:_MAX_USER_AGENT_LEN] if user_agent else None,
                    created_at=now,
                )
            )
        logger.info("Session issued for user_id=%s", user_id)
        return IssuedToken(token=raw, expires_at=as_aware(expires_at))

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify_access_token(self, token: str | None) -> SessionUser | None:
        """Resolve a raw token to its owner and current abilities.

        Returns None when the token is unknown, expired, or owned by an
        inactive user. Inactive junction rows, roles, permissions and
        companies contribute nothing.
        """
        if not token:
            return None

        with self.engine.connect() as conn:
            rows = conn.execute(session_graph_query(hash_token(token), utcnow())).fetchall()
        owner = next((r for r in rows if r.kind == _OWNER), None)
        if owner is None:
            return None

        role_names = {r.grant_name for r in rows if r.kind == _ROLE}
        permission_names = {r.grant_name for r in rows if r.kind == _PERMISSION}
        company_ids = {r.company_id for r in rows if r.kind == _COMPANY}
        return SessionUser(
            user_id=owner.user_id,
            username=owner.username,
            email=owner.email,
            full_name=owner.full_name,
            is_active=bool(owner.is_active),
            abilities=encode_abilities(role_names, permission_names, company_ids),
        )

    # ------------------------------------------------------------------
    # Revoke
    # ------------------------------------------------------------------

    def revoke_token(self, token: str | None) -> None:
        """Delete the session for token. A missing row is not an error."""
        if not token:
            return
        with self.engine.begin() as conn:
            result = conn.execute(access_tokens.delete().where(access_tokens.c.token_hash == hash_token(token)))
        if result.rowcount:
            logger.info("Session revoked")

    def revoke_all_user_tokens(self, user_id: int, conn: Connection | None = None) -> int:
        """Delete every session of user_id and return how many were removed.

        Pass conn to run the delete inside the caller's transaction; the
        caller then owns the commit.
        """
        stmt = access_tokens.delete().where(access_tokens.c.user_id == user_id)
        if conn is not None:
            count = conn.execute(stmt).rowcount
        else:
            with self.engine.begin() as own:
                count = own.execute(stmt).rowcount
        logger.info("Revoked %d session(s) for user_id=%s", count, user_id)
        return count

    def cleanup_expired_tokens(self) -> int:
        """Delete sessions past their expiry. Safe to run concurrently."""
        with self.engine.begin() as conn:
            count = conn.execute(access_tokens.delete().where(access_tokens.c.expires_at <= utcnow())).rowcount
        if count:
            logger.info("Swept %d expired session(s)", count)
        return count

    # ------------------------------------------------------------------
    # Inspect
    # ------------------------------------------------------------------

    def list_user_sessions(self, user_id: int) -> list[SessionInfo]:
        """Return unexpired sessions of user_id, newest first. Never includes the token."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                access_tokens.select()
                .where(access_tokens.c.user_id == user_id)
                .where(access_tokens.c.expires_at > utcnow())
                .order_by(access_tokens.c.created_at.desc(), access_tokens.c.id.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]


def _row_to_session(row) -> SessionInfo:
    return SessionInfo(
        id=row.id,
        user_id=row.user_id,
        expires_at=as_aware(row.expires_at),
        created_at=as_aware(row.created_at),
        ip_address=row.ip_address,
        user_agent=row.user_agent,
    )


# ---------------------------------------------------------------------------
# Session graph
# ---------------------------------------------------------------------------

_OWNER = "owner"
_ROLE = "role"
_PERMISSION = "permission"
_COMPANY = "company"


def session_graph_query(token_hash: str, now: datetime) -> CompoundSelect:
    """One statement returning the token owner and each live grant as its own row.

    The owner CTE holds the token and user predicates. Each grant category is a
    narrow branch joined to it, so the row count is 1 + roles + permissions +
    companies rather than their product. No rows means no valid session.
    """
    owner = (
        select(users.c.id, users.c.username, users.c.email, users.c.full_name, users.c.is_active)
        .select_from(access_tokens.join(users, users.c.id == access_tokens.c.user_id))
        .where(access_tokens.c.token_hash == token_hash)
        .where(access_tokens.c.expires_at > now)
        .where(users.c.is_active == true())
        .cte("session_owner")
    )

    def columns(kind: str, grant_name=None, company_id=None) -> list:
        return [
            owner.c.id.label("user_id"),
            owner.c.username,
            owner.c.email,
            owner.c.full_name,
            owner.c.is_active,
            literal(kind, String).label("kind"),
            (grant_name if grant_name is not None else cast(null(), String)).label("grant_name"),
            (company_id if company_id is not None else cast(null(), Integer)).label("company_id"),
        ]

    live_roles = owner.join(
        user_roles,
        and_(user_roles.c.user_id == owner.c.id, user_roles.c.is_active == true()),
    ).join(
        roles,
        and_(roles.c.id == user_roles.c.role_id, roles.c.is_active == true()),
    )
    live_permissions = live_roles.join(
        role_permissions,
        and_(role_permissions.c.role_id == roles.c.id, role_permissions.c.is_active == true()),
    ).join(
        permissions,
        and_(permissions.c.id == role_permissions.c.permission_id, permissions.c.is_active == true()),
    )
    live_companies = owner.join(
        user_companies,
        and_(user_companies.c.user_id == owner.c.id, user_companies.c.is_active == true()),
    ).join(
        companies,
        and_(companies.c.id == user_companies.c.company_id, companies.c.is_active == true()),
    )

    return union_all(
        select(*columns(_OWNER)).select_from(owner),
        select(*columns(_ROLE, grant_name=roles.c.name)).select_from(live_roles),
        select(*columns(_PERMISSION, grant_name=permissions.c.name)).select_from(live_permissions).distinct(),
        select(*columns(_COMPANY, company_id=companies.c.id)).select_from(live_companies),
    )
