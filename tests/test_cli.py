"""Tests for the management CLI in main.py.

main._stores is patched to return the in-memory stores from conftest.py, so
every command runs against the per-test database.

Covers:
- create-superadmin: role created on demand, reactivated if inactive,
  password prompt, short/mismatched password, duplicate user
- sessions / revoke-sessions / cleanup-tokens output and exit codes
"""

from datetime import timedelta

import pytest
from sqlalchemy import update

import main
from auth.catalog import SUPER_ADMIN_ROLE
from auth.schema import access_tokens, utcnow


@pytest.fixture
def cli(monkeypatch, user_store, token_store, directory):
    monkeypatch.setattr(main, "_stores", lambda: (user_store, token_store, directory))
    return main.main


# ---------------------------------------------------------------------------
# create-superadmin
# ---------------------------------------------------------------------------


class TestCreateSuperadmin:
    def test_creates_role_and_user(self, cli, user_store, token_store, capsys):
        rc = cli(["create-superadmin", "--username", "root", "--email", "root@example.com", "--password", "toor123"])
        assert rc == 0
        assert "Created SUPER_ADMIN user 'root'" in capsys.readouterr().out

        user = user_store.get_active_by_identifier("root")
        assert user is not None
        assert [r.name for r in user_store.load_grants(user.id).roles] == [SUPER_ADMIN_ROLE]

    def test_reuses_existing_role(self, cli, user_store, catalog):
        rc = cli(["create-superadmin", "--username", "root", "--email", "root@example.com", "--password", "toor123"])
        assert rc == 0
        assert [r.name for r in user_store.list_roles() if r.name == SUPER_ADMIN_ROLE] == [SUPER_ADMIN_ROLE]
        user = user_store.get_active_by_identifier("root")
        assert user_store.load_grants(user.id).roles[0].id == catalog.roles[SUPER_ADMIN_ROLE]

    def test_reactivates_inactive_role(self, cli, user_store, catalog, capsys):
        user_store.set_role_active(catalog.roles[SUPER_ADMIN_ROLE], False)
        rc = cli(["create-superadmin", "--username", "root", "--email", "root@example.com", "--password", "toor123"])
        assert rc == 0
        assert "reactivated" in capsys.readouterr().out
        assert user_store.get_role_by_name(SUPER_ADMIN_ROLE).is_active is True

    def test_prompts_for_password(self, cli, user_store, monkeypatch):
        answers = iter(["prompted1", "prompted1"])
        monkeypatch.setattr(main.getpass, "getpass", lambda prompt="": next(answers))
        rc = cli(["create-superadmin", "--username", "root", "--email", "root@example.com"])
        assert rc == 0
        assert user_store.get_active_by_identifier("root") is not None

    def test_prompt_mismatch(self, cli, user_store, monkeypatch, capsys):
        answers = iter(["prompted1", "different"])
        monkeypatch.setattr(main.getpass, "getpass", lambda prompt="": next(answers))
        rc = cli(["create-superadmin", "--username", "root", "--email", "root@example.com"])
        assert rc == 1
        assert "do not match" in capsys.readouterr().out
        assert user_store.count_users() == 0

    def test_short_password(self, cli, user_store):
        rc = cli(["create-superadmin", "--username", "root", "--email", "root@example.com", "--password", "123"])
        assert rc == 1
        assert user_store.count_users() == 0

    def test_duplicate_user(self, cli, new_user, capsys, catalog):
        new_user("root")
        rc = cli(["create-superadmin", "--username", "root", "--email", "x@example.com", "--password", "toor123"])
        assert rc == 1
        assert "username" in capsys.readouterr().out


# ---------------------------------------------------------------------------
# Session commands
# ---------------------------------------------------------------------------


class TestSessionCommands:
    def test_sessions_lists_metadata(self, cli, token_store, new_user, catalog, capsys):
        uid = new_user("alice")
        issued = token_store.create_access_token(uid, ip_address="10.1.2.3", user_agent="curl/8.0")
        rc = cli(["sessions", str(uid)])
        out = capsys.readouterr().out
        assert rc == 0
        assert "10.1.2.3" in out
        assert "curl/8.0" in out
        assert issued.token not in out

    def test_sessions_none(self, cli, new_user, catalog, capsys):
        uid = new_user("bob")
        assert cli(["sessions", str(uid)]) == 0
        assert "No live sessions" in capsys.readouterr().out

    def test_sessions_unknown_user(self, cli, catalog):
        assert cli(["sessions", "4242"]) == 1

    def test_revoke_sessions(self, cli, token_store, new_user, catalog, capsys):
        uid = new_user("carol")
        token = token_store.create_access_token(uid).token
        token_store.create_access_token(uid)
        assert cli(["revoke-sessions", str(uid)]) == 0
        assert "Revoked 2 session(s)" in capsys.readouterr().out
        assert token_store.verify_access_token(token) is None

    def test_cleanup_tokens(self, cli, engine, token_store, new_user, catalog, capsys):
        uid = new_user("dave")
        token_store.create_access_token(uid)
        with engine.begin() as conn:
            conn.execute(update(access_tokens).values(expires_at=utcnow() - timedelta(minutes=1)))
        assert cli(["cleanup-tokens"]) == 0
        assert "Deleted 1 expired session(s)" in capsys.readouterr().out

    def test_unknown_command(self, cli):
        with pytest.raises(SystemExit):
            cli(["frobnicate"])

    def test_sessions_rejects_out_of_range_id(self, cli):
        with pytest.raises(SystemExit):
            cli(["sessions", str(10**30)])
