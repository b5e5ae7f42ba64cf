"""
tests/conftest.py -- Shared test fixtures for TenantGate.

This module provides:
  - engine / user_store / token_store / directory: unit-test stores on a
    private in-memory SQLite database, fresh for every test
  - catalog: the standard roles, permissions and companies seeded into it
  - make_user() / new_user: create an active user with given roles/companies
  - api_env: TestClient wired to isolated stores, with ready-made sessions

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the TestClient fixture because route handlers run in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

The environment must be prepared before any tenantgate import:
  DEBUG=true                    get_settings() auto-generates SECRET_KEY
  LOGIN_RATE_LIMIT=1000/minute  login tests are not throttled
  TOKEN_CLEANUP_INTERVAL_SECONDS=0  no background sweep task
"""

from __future__ import annotations

import itertools
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

# CRITICAL: Set these before any auth/core import -- get_settings() is cached.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("TOKEN_CLEANUP_INTERVAL_SECONDS", "0")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.main import app
from auth.catalog import PermissionName, RoleName
from auth.schema import make_engine
from auth.sessions import TokenStore
from auth.store import UserStore
from directory.models import NewUser
from directory.store import DirectoryStore

_db_counter = itertools.count()

# Role -> permissions granted in the seeded catalog.
ROLE_GRANTS: dict[str, list[str]] = {
    RoleName.SUPER_ADMIN.value: [],
    RoleName.IT_ADMIN.value: [
        PermissionName.USER_VIEW.value,
        PermissionName.USER_CREATE.value,
        PermissionName.USER_EDIT.value,
        PermissionName.USER_DELETE.value,
        PermissionName.ROLE_VIEW.value,
        PermissionName.ROLE_MANAGE.value,
        PermissionName.PERMISSION_VIEW.value,
    ],
    RoleName.DIRECTOR.value: [PermissionName.PRJ_VIEW.value],
    RoleName.PROJECT_MANAGER.value: [
        PermissionName.PRJ_VIEW.value,
        PermissionName.PRJ_CREATE.value,
        PermissionName.PRJ_EDIT.value,
    ],
}

COMPANY_CODES = ("ACME", "GLOBEX", "INITECH")


@dataclass
class Catalog:
    """Ids of the seeded catalog, keyed by name / code."""

    roles: dict[str, int] = field(default_factory=dict)
    permissions: dict[str, int] = field(default_factory=dict)
    companies: dict[str, int] = field(default_factory=dict)


def seed_catalog(user_store: UserStore) -> Catalog:
    """Create every enumerated permission, the ROLE_GRANTS roles, and three companies."""
    catalog = Catalog()
    for perm in PermissionName:
        catalog.permissions[perm.value] = user_store.create_permission(perm.value, f"{perm.value} permission")
    for role_name, perm_names in ROLE_GRANTS.items():
        role_id = user_store.create_role(role_name, f"{role_name} role")
        catalog.roles[role_name] = role_id
        for perm_name in perm_names:
            user_store.grant_permission(role_id, catalog.permissions[perm_name])
    for code in COMPANY_CODES:
        catalog.companies[code] = user_store.create_company(code, f"{code.title()} Corp")
    return catalog


def make_user(
    directory: DirectoryStore,
    username: str,
    role_ids: list[int] | None = None,
    company_ids: list[int] | None = None,
    password: str = "secret123",
    full_name: str | None = None,
    is_active: bool = True,
) -> int:
    detail = directory.create_user(
        NewUser(
            username=username,
            email=f"{username}@example.com",
            password=password,
            full_name=full_name,
            is_active=is_active,
            role_ids=role_ids or [],
            company_ids=company_ids or [],
        )
    )
    return detail.id


# ---------------------------------------------------------------------------
# Unit-test stores -- one private in-memory database per test
# ---------------------------------------------------------------------------


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    eng = make_engine("sqlite://")
    yield eng
    eng.dispose()


@pytest.fixture
def user_store(engine: Engine) -> UserStore:
    return UserStore(engine)


@pytest.fixture
def token_store(engine: Engine) -> TokenStore:
    return TokenStore(engine)


@pytest.fixture
def directory(engine: Engine, token_store: TokenStore) -> DirectoryStore:
    return DirectoryStore(engine, token_store)


@pytest.fixture
def catalog(user_store: UserStore) -> Catalog:
    return seed_catalog(user_store)


@pytest.fixture
def new_user(directory: DirectoryStore):
    """make_user() bound to this test's directory: new_user("alice", role_ids=[...])."""

    def _make(username: str, **kwargs) -> int:
        return make_user(directory, username, **kwargs)

    return _make


# ---------------------------------------------------------------------------
# API integration fixture
# ---------------------------------------------------------------------------


@dataclass
class ApiEnv:
    """Everything an API test needs: the client, the stores, and live sessions.

    tokens maps a persona ("admin", "viewer", "root", "plain") to a raw
    bearer token; user_ids maps the same personas to user ids.
    """

    client: TestClient
    user_store: UserStore
    token_store: TokenStore
    directory: DirectoryStore
    catalog: Catalog
    tokens: dict[str, str]
    user_ids: dict[str, int]

    def auth(self, persona: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.tokens[persona]}"}


def _patch_lifespan(engine: Engine, user_store: UserStore, token_store: TokenStore, directory: DirectoryStore):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see an
    isolated test DB rather than DATABASE_URL.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.engine = engine
        app.state.user_store = user_store
        app.state.token_store = token_store
        app.state.directory = directory
        app.state.sweep_task = None
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_env() -> Generator[ApiEnv, None, None]:
    """Yield an ApiEnv backed by a fresh named shared-memory database.

    Personas:
      admin  -- IT_ADMIN in ACME: every USER_* permission plus ROLE_VIEW,
                ROLE_MANAGE and PERMISSION_VIEW
      viewer -- DIRECTOR in GLOBEX: PRJ_VIEW only
      root   -- SUPER_ADMIN with no explicit permissions (bypass)
      plain  -- no roles at all
    Every persona's password is "secret123".
    """
    url = f"sqlite:///file:tenantgate_api_{next(_db_counter)}?mode=memory&cache=shared&uri=true"
    engine = make_engine(url)
    user_store = UserStore(engine)
    token_store = TokenStore(engine)
    directory = DirectoryStore(engine, token_store)
    catalog = seed_catalog(user_store)

    user_ids = {
        "admin": make_user(
            directory,
            "admin",
            role_ids=[catalog.roles[RoleName.IT_ADMIN.value]],
            company_ids=[catalog.companies["ACME"]],
            full_name="Ada Admin",
        ),
        "viewer": make_user(
            directory,
            "viewer",
            role_ids=[catalog.roles[RoleName.DIRECTOR.value]],
            company_ids=[catalog.companies["GLOBEX"]],
            full_name="Victor Viewer",
        ),
        "root": make_user(directory, "root", role_ids=[catalog.roles[RoleName.SUPER_ADMIN.value]]),
        "plain": make_user(directory, "plain"),
    }
    tokens = {persona: token_store.create_access_token(uid).token for persona, uid in user_ids.items()}

    app.router.lifespan_context = _patch_lifespan(engine, user_store, token_store, directory)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiEnv(
            client=client,
            user_store=user_store,
            token_store=token_store,
            directory=directory,
            catalog=catalog,
            tokens=tokens,
            user_ids=user_ids,
        )

    engine.dispose()
