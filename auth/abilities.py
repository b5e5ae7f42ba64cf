"""
auth/abilities.py -- Build and parse the flat ability list.

Wire format (stable, clients depend on it):
    ["DIRECTOR", "company:1", "permission:PRJ_VIEW"]

Three shapes only: a bare role name, "company:<positive int>", and
"permission:<known permission name>". Lists are sorted and duplicate-free.

decode_ability() is the only place that looks at string prefixes. Everything
else works with the tagged variants RoleAbility / PermissionAbility /
CompanyAbility, or with the ParsedAbilities sets built from them.

parse_abilities() is permissive on purpose: it runs on every authenticated
request, so it drops anything malformed or unknown instead of raising. The
number of dropped entries is logged so format drift is visible.

Layer rule: no imports from api/, directory/, or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Union

from auth.catalog import PERMISSION_NAMES, ROLE_NAMES
from auth.models import Company, Permission, Role

logger = logging.getLogger("tenantgate.auth.abilities")

_COMPANY_PREFIX = "company:"
_PERMISSION_PREFIX = "permission:"


# ---------------------------------------------------------------------------
# Tagged variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RoleAbility:
    name: str

    def encode(self) -> str:
        return self.name


@dataclass(frozen=True)
class PermissionAbility:
    name: str

    def encode(self) -> str:
        return f"{_PERMISSION_PREFIX}{self.name}"


@dataclass(frozen=True)
class CompanyAbility:
    company_id: int

    def encode(self) -> str:
        return f"{_COMPANY_PREFIX}{self.company_id}"


Ability = Union[RoleAbility, PermissionAbility, CompanyAbility]


@dataclass
class ParsedAbilities:
    """Set view of an ability list for O(1) membership checks."""

    roles: set[str] = field(default_factory=set)
    permissions: set[str] = field(default_factory=set)
    companies: set[int] = field(default_factory=set)

    def to_list(self) -> list[str]:
        """Re-encode to the sorted wire format."""
        return encode_abilities(self.roles, self.permissions, self.companies)


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def _parse_company_id(raw: str) -> int | None:
    # int() accepts " 7", "+7" and "7_0"; the wire format does not.
    if not raw.isascii() or not raw.isdigit():
        return None
    value = int(raw)
    return value if value > 0 else None


def decode_ability(value: object) -> Ability | None:
    """Decode one wire string. Returns None for anything not well-formed."""
    if not isinstance(value, str) or not value:
        return None
    if value in ROLE_NAMES:
        return RoleAbility(value)
    if value.startswith(_COMPANY_PREFIX):
        company_id = _parse_company_id(value[len(_COMPANY_PREFIX) :])
        return CompanyAbility(company_id) if company_id is not None else None
    if value.startswith(_PERMISSION_PREFIX):
        name = value[len(_PERMISSION_PREFIX) :]
        return PermissionAbility(name) if name in PERMISSION_NAMES else None
    return None


def parse_abilities(values: object) -> ParsedAbilities:
    """Classify a wire list into role, permission and company sets.

    Never raises. Non-list input yields an empty result.
    """
    parsed = ParsedAbilities()
    if not isinstance(values, (list, tuple)):
        if values is not None:
            logger.warning("Ability payload is not a list (%s); treating as empty", type(values).__name__)
        return parsed

    dropped = 0
    for value in values:
        ability = decode_ability(value)
        if isinstance(ability, RoleAbility):
            parsed.roles.add(ability.name)
        elif isinstance(ability, PermissionAbility):
            parsed.permissions.add(ability.name)
        elif isinstance(ability, CompanyAbility):
            parsed.companies.add(ability.company_id)
        else:
            dropped += 1

    if dropped:
        logger.warning("Dropped %d unrecognised ability entries out of %d", dropped, len(values))
    return parsed


# ---------------------------------------------------------------------------
# Building
# ---------------------------------------------------------------------------


def encode_abilities(
    role_names: Iterable[str],
    permission_names: Iterable[str],
    company_ids: Iterable[int],
) -> list[str]:
    """Encode raw names/ids into the sorted, duplicate-free wire list."""
    abilities: set[str] = set()
    abilities.update(RoleAbility(name).encode() for name in role_names if name)
    abilities.update(CompanyAbility(cid).encode() for cid in company_ids if cid)
    abilities.update(PermissionAbility(name).encode() for name in permission_names if name)
    return sorted(abilities)


def build_abilities(
    roles: Iterable[Role],
    permissions: Iterable[Permission],
    companies: Iterable[Company],
) -> list[str]:
    """Build the wire list from domain objects.

    Roles without a name, permissions without a name and companies without
    an id are skipped.
    """
    return encode_abilities(
        (r.name for r in roles),
        (p.name for p in permissions),
        (c.id for c in companies if c.id is not None),
    )


def build_ability_details(
    roles: Iterable[Role],
    permissions: Iterable[Permission],
    companies: Iterable[Company],
) -> dict[str, list[dict]]:
    """Structured counterpart of build_abilities() for response bodies."""
    return {
        "roles": [{"id": r.id, "name": r.name, "description": r.description} for r in roles],
        "permissions": [{"id": p.id, "name": p.name, "description": p.description} for p in permissions],
        "companies": [{"id": c.id, "code": c.code, "name": c.name} for c in companies],
    }
