"""
directory/filters.py -- Composable WHERE-clause builders for directory queries.

Each helper takes a Select and returns a new Select; a None value leaves the
query untouched, so callers chain them without branching.

Membership filters use a correlated EXISTS instead of a join. A join would
return one row per matching membership and break keyset pagination.

Security: user text only ever reaches SQL as a bound parameter, and LIKE
wildcards in it are escaped so "50%" matches a literal percent sign.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from sqlalchemy import Column, Table, or_, select, true
from sqlalchemy.sql import Select


def apply_search_filter(query: Select, columns: Sequence[Column], text: str | None) -> Select:
    """Case-insensitive substring match of text against any of columns."""
    if text is None:
        return query
    text = text.strip()
    if not text or not columns:
        return query
    return query.where(or_(*(col.icontains(text, autoescape=True) for col in columns)))


def apply_boolean_filter(query: Select, column: Column, value: bool | None) -> Select:
    if value is None:
        return query
    return query.where(column == value)


def apply_relation_exists_filter(
    query: Select,
    junction: Table,
    owner_fk: Column,
    owner_key: Column,
    target_fk: Column,
    target_id: int | None,
    target_active: Column | None = None,
) -> Select:
    """Keep rows that have an active junction row pointing at target_id.

    owner_fk/target_fk are the junction's foreign keys; owner_key is the
    outer query's key that owner_fk must match. When target_active is given
    (e.g. roles.c.is_active) the referenced entity must be active too.
    """
    if target_id is None:
        return query
    sub = (
        select(junction.c.id)
        .where(owner_fk == owner_key)
        .where(target_fk == target_id)
        .where(junction.c.is_active == true())
    )
    if target_active is not None:
        target_table = target_active.table
        sub = sub.where(
            select(target_table.c.id)
            .where(target_table.c.id == target_fk)
            .where(target_active == true())
            .exists()
        )
    return query.where(sub.exists())


@dataclass(frozen=True)
class RelationFilter:
    """One EXISTS membership filter: which junction, which keys, which value."""

    junction: Table
    owner_fk: Column
    target_fk: Column
    target_id: int | None
    target_active: Column | None = None


@dataclass(frozen=True)
class FilterSpec:
    """Everything apply_filters() needs for one query.

    Empty fields are no-ops.
    """

    search: str | None = None
    search_columns: tuple[Column, ...] = ()
    active_column: Column | None = None
    is_active: bool | None = None
    relations: tuple[RelationFilter, ...] = ()


def apply_filters(query: Select, key_column: Column, spec: FilterSpec) -> Select:
    """Apply search, active-flag and membership filters in one pass.

    key_column is the outer key the membership filters correlate with.
    """
    query = apply_search_filter(query, spec.search_columns, spec.search)
    if spec.active_column is not None:
        query = apply_boolean_filter(query, spec.active_column, spec.is_active)
    for rel in spec.relations:
        query = apply_relation_exists_filter(
            query,
            rel.junction,
            rel.owner_fk,
            key_column,
            rel.target_fk,
            rel.target_id,
            rel.target_active,
        )
    return query
