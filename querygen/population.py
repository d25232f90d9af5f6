# File: querygen/population.py
"""
NexaFlow QueryGen - Child & Reference Population
=================================================
Builds the correlated subqueries that nest children into a parent row on
read.  ``FetchType.ID`` returns the child ids (an array for ``many``
relations), ``FetchType.DATA`` returns ``JSONB_BUILD_OBJECT`` rows.
Relations that go through a join model read the join table and, for
data fetches, join the child table to it.

The organization predicate uses the same binding as the outer query, so
a populated read never leaks rows from another tenant.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from querygen.models import ChildRelation, FetchType, ModelField, ReferencePopulation
from querygen.utils import quote_identifier, sql_string

logger: logging.Logger = logging.getLogger("querygen.population")


def jsonb_build_object_contents(
    fields: Sequence[ModelField],
    table_alias: str = "",
) -> str:
    """
    Argument list for ``JSONB_BUILD_OBJECT``: alternating key literal and column.

    >>> jsonb_build_object_contents([title_field], "t")
    "'title', t.title"
    """
    parts: List[str] = []
    for f in fields:
        parts.append(sql_string(f.name))
        parts.append(f.qualified(table_alias) if table_alias else f.sql_name)
    return ", ".join(parts)


def child_population(
    child: ChildRelation,
    fetch_type: FetchType,
    org_binding: Optional[str],
    parent_id_match: str,
) -> Optional[str]:
    """
    Correlated subquery selecting *child* for one parent row.

    Args:
        child: The relation to populate.
        fetch_type: ``id``, ``data`` or ``none`` (returns ``None``).
        org_binding: Placeholder of the organization binding, or ``None``
            for global parents.
        parent_id_match: SQL expression for the parent id, e.g. ``$1`` in
            a select-one or ``tb.id`` in a list.
    """
    if fetch_type == FetchType.NONE:
        return None

    many: bool = child.many
    if fetch_type == FetchType.ID:
        if child.through is not None:
            schema, table = child.through.schema_name, child.through.table
            id_column: str = child.through.to_id_field
        else:
            schema, table, id_column = child.schema_name, child.table, "id"

        select_expr: str = f"ct.{id_column}"
        if many:
            select_expr = f"COALESCE(ARRAY_AGG({select_expr}), ARRAY[]::uuid[])"
        text: str = (
            f"(SELECT {select_expr} FROM {schema}.{table} ct "
            f"WHERE ct.{child.parent_field} = {parent_id_match}"
        )
        org_alias: str = "ct"
    else:
        select_expr = f"JSONB_BUILD_OBJECT({jsonb_build_object_contents(child.fields, 't')})"
        if many:
            select_expr = f"COALESCE(ARRAY_AGG({select_expr}), ARRAY[]::jsonb[])"
        if child.through is not None:
            text = (
                f"(SELECT {select_expr} "
                f"FROM {child.through.schema_name}.{child.through.table} tt "
                f"JOIN {child.schema_name}.{child.table} t "
                f"ON tt.{child.through.to_id_field} = t.id "
                f"WHERE tt.{child.parent_field} = {parent_id_match}"
            )
            org_alias = "tt"
        else:
            text = (
                f"(SELECT {select_expr} FROM {child.schema_name}.{child.table} t "
                f"WHERE t.{child.parent_field} = {parent_id_match}"
            )
            org_alias = "t"

    if org_binding is not None:
        text += f" AND {org_alias}.organization_id = {org_binding}"
    if not many:
        text += " LIMIT 1"
    return text + ")"


def reference_case_expression(ref: ReferencePopulation) -> str:
    """``CASE WHEN ref_x.id IS NOT NULL THEN JSONB_BUILD_OBJECT(...)`` for a joined reference."""
    alias: str = ref.alias
    return (
        f"CASE WHEN {alias}.id IS NOT NULL "
        f"THEN JSONB_BUILD_OBJECT({jsonb_build_object_contents(ref.fields, alias)}) "
        f"ELSE NULL END AS {quote_identifier(ref.full_name)}"
    )


def reference_join_clause(ref: ReferencePopulation, tenant_scoped: bool) -> str:
    """``LEFT JOIN`` bringing *ref* in under its ``ref_<name>`` alias."""
    alias: str = ref.alias
    text: str = (
        f" LEFT JOIN {ref.schema_name}.{ref.table} {alias} "
        f"ON {alias}.id = tb.{ref.id_field}"
    )
    if tenant_scoped and not ref.is_global:
        text += f" AND {alias}.organization_id = tb.organization_id"
    return text


def reference_subquery(ref: ReferencePopulation, tenant_scoped: bool) -> str:
    """Scalar subquery form of a reference, used by list queries."""
    alias: str = ref.alias
    text: str = (
        f"(SELECT JSONB_BUILD_OBJECT({jsonb_build_object_contents(ref.fields, alias)}) "
        f"FROM {ref.schema_name}.{ref.table} {alias} "
        f"WHERE {alias}.id = tb.{ref.id_field}"
    )
    if tenant_scoped and not ref.is_global:
        text += f" AND {alias}.organization_id = tb.organization_id"
    return f"{text}) AS {quote_identifier(ref.full_name)}"


__all__: List[str] = [
    "jsonb_build_object_contents",
    "child_population",
    "reference_case_expression",
    "reference_join_clause",
    "reference_subquery",
]

logger.debug("querygen.population loaded.")
