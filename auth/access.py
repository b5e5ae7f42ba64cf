"""
auth/access.py -- Access decisions over a parsed ability set.

Pure functions, no I/O. The FastAPI dependency parses the caller's
abilities once per request; every check after that is set arithmetic.

Rules:
  1. SUPER_ADMIN in roles -> allowed, whatever the requirement says.
  2. Each non-empty category (roles, permissions, companies) must pass:
     all listed values when require_all, otherwise any one of them.
  3. Categories are ANDed. A category left as None (or empty) is no constraint.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable
from dataclasses import dataclass

from auth.abilities import ParsedAbilities
from auth.catalog import SUPER_ADMIN_ROLE


@dataclass(frozen=True)
class AccessRequirement:
    """What an operation needs. None means the category is not checked."""

    required_roles: tuple[str, ...] | None = None
    required_permissions: tuple[str, ...] | None = None
    required_companies: tuple[int, ...] | None = None
    require_all: bool = False

    @classmethod
    def of(
        cls,
        *,
        roles: Iterable[str] | None = None,
        permissions: Iterable[str] | None = None,
        companies: Iterable[int] | None = None,
        require_all: bool = False,
    ) -> "AccessRequirement":
        """Build from any iterables; enum members are reduced to their values."""
        return cls(
            required_roles=_freeze(roles),
            required_permissions=_freeze(permissions),
            required_companies=tuple(companies) if companies is not None else None,
            require_all=require_all,
        )


def _freeze(values: Iterable[str] | None) -> tuple[str, ...] | None:
    if values is None:
        return None
    return tuple(getattr(v, "value", v) for v in values)


def _satisfied(required: Collection | None, granted: set, require_all: bool) -> bool:
    if not required:
        return True
    if require_all:
        return all(item in granted for item in required)
    return any(item in granted for item in required)


def has_access(abilities: ParsedAbilities, requirement: AccessRequirement | None = None) -> bool:
    if SUPER_ADMIN_ROLE in abilities.roles:
        return True
    if requirement is None:
        return True
    require_all = requirement.require_all
    return (
        _satisfied(requirement.required_roles, abilities.roles, require_all)
        and _satisfied(requirement.required_permissions, abilities.permissions, require_all)
        and _satisfied(requirement.required_companies, abilities.companies, require_all)
    )


def has_role(abilities: ParsedAbilities, *roles: str) -> bool:
    """True if the caller holds any of the roles."""
    return has_access(abilities, AccessRequirement.of(roles=roles))


def has_permission(abilities: ParsedAbilities, *permissions: str) -> bool:
    """True if the caller holds any of the permissions."""
    return has_access(abilities, AccessRequirement.of(permissions=permissions))


def belongs_to_company(abilities: ParsedAbilities, *company_ids: int) -> bool:
    """True if the caller is a live member of any of the companies."""
    return has_access(abilities, AccessRequirement.of(companies=company_ids))
