"""Unit tests for access decisions in auth/access.py.

Covers:
- Super-admin bypass regardless of requirement
- require_all vs any-of semantics per category
- Categories ANDed; absent/empty categories impose nothing
- has_role / has_permission / belongs_to_company wrappers
- Enum members accepted when building a requirement
"""

import pytest

from auth.abilities import ParsedAbilities, parse_abilities
from auth.access import AccessRequirement, belongs_to_company, has_access, has_permission, has_role
from auth.catalog import PermissionName, RoleName


@pytest.fixture
def director() -> ParsedAbilities:
    return parse_abilities(["DIRECTOR", "company:1", "permission:PRJ_VIEW"])


@pytest.fixture
def super_admin() -> ParsedAbilities:
    return parse_abilities(["SUPER_ADMIN"])


# ---------------------------------------------------------------------------
# Super-admin bypass
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "requirement",
    [
        None,
        AccessRequirement(required_roles=("DIRECTOR", "IT_ADMIN"), require_all=True),
        AccessRequirement(required_permissions=("USER_DELETE",)),
        AccessRequirement(required_companies=(999,)),
        AccessRequirement(
            required_roles=("DEVELOPER",),
            required_permissions=("ROLE_MANAGE",),
            required_companies=(1, 2, 3),
            require_all=True,
        ),
    ],
)
def test_super_admin_bypasses_everything(super_admin, requirement):
    assert has_access(super_admin, requirement) is True


def test_super_admin_bypasses_wrappers(super_admin):
    assert has_role(super_admin, "DIRECTOR")
    assert has_permission(super_admin, "USER_DELETE")
    assert belongs_to_company(super_admin, 42)


# ---------------------------------------------------------------------------
# Category semantics
# ---------------------------------------------------------------------------


def test_no_requirement_allows(director):
    assert has_access(director) is True
    assert has_access(director, AccessRequirement()) is True


def test_empty_categories_impose_nothing(director):
    assert has_access(director, AccessRequirement(required_roles=(), required_permissions=())) is True


def test_any_role_suffices(director):
    req = AccessRequirement(required_roles=("DIRECTOR", "IT_ADMIN"))
    assert has_access(director, req) is True


def test_require_all_roles(director):
    req = AccessRequirement(required_roles=("DIRECTOR", "IT_ADMIN"), require_all=True)
    assert has_access(director, req) is False

    both = parse_abilities(["DIRECTOR", "IT_ADMIN"])
    assert has_access(both, req) is True


def test_categories_are_anded(director):
    ok = AccessRequirement(required_roles=("DIRECTOR",), required_companies=(1,))
    wrong_company = AccessRequirement(required_roles=("DIRECTOR",), required_companies=(2,))
    assert has_access(director, ok) is True
    assert has_access(director, wrong_company) is False


def test_permission_category(director):
    assert has_access(director, AccessRequirement(required_permissions=("PRJ_VIEW",))) is True
    assert has_access(director, AccessRequirement(required_permissions=("PRJ_EDIT",))) is False


def test_empty_abilities_denied_when_anything_required():
    assert has_access(ParsedAbilities(), AccessRequirement(required_roles=("DIRECTOR",))) is False


# ---------------------------------------------------------------------------
# Wrappers and construction
# ---------------------------------------------------------------------------


def test_wrappers(director):
    assert has_role(director, "DEVELOPER", "DIRECTOR")
    assert not has_role(director, "DEVELOPER")
    assert has_permission(director, "PRJ_VIEW")
    assert not has_permission(director, "USER_VIEW")
    assert belongs_to_company(director, 1)
    assert not belongs_to_company(director, 2, 3)


def test_of_accepts_enum_members(director):
    req = AccessRequirement.of(roles=[RoleName.DIRECTOR], permissions=[PermissionName.PRJ_VIEW])
    assert req.required_roles == ("DIRECTOR",)
    assert req.required_permissions == ("PRJ_VIEW",)
    assert req.required_companies is None
    assert has_access(director, req) is True


def test_requirement_is_immutable():
    req = AccessRequirement.of(roles=["DIRECTOR"])
    with pytest.raises(AttributeError):
        req.require_all = True  # type: ignore[misc]
