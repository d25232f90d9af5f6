# File: querygen/queries.py
"""
NexaFlow QueryGen - Per-Operation Query Generators
===================================================
Pure functions from a ``ModelSchema`` to finished ``SqlQueryContext``
values.  Every statement follows the same filtering contract:

    - rows are identified through ``identity.id_fields`` (``id`` or the
      two parent ids of a join model);
    - tenant-scoped models always filter on, or insert,
      ``organization_id``; global models never mention it;
    - values are bindings, never literals.

Operation kinds form a closed set (``OperationKind``) dispatched through
``_GENERATORS``.  Every dispatch entry returns a list; designed skips
(populated reads on a model without children, parent variants on a model
without parents) return an empty list rather than raising.

Binding order for insert is ``id`` (or ``join_id_0``, ``join_id_1``),
``organization_id`` when tenant-scoped, then the owner-writable fields in
declaration order.  Callers pass values positionally in exactly that order.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from querygen import bindings
from querygen.exceptions import UnsupportedOperationError
from querygen.identity import id_fields, other_id_field, push_id_where_clause
from querygen.models import BelongsTo, ModelField, ModelSchema, OperationKind
from querygen.permissions import (
    object_permissions_value_query,
    permissions_check_where_clause,
)
from querygen.population import (
    child_population,
    reference_case_expression,
    reference_join_clause,
    reference_subquery,
)
from querygen.query_builder import QueryBuilder, Separated, SqlQueryContext
from querygen.sorting import OrderBy, parse_order_by
from querygen.utils import quote_identifier

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("querygen.queries")

TABLE_ALIAS: str = "tb"


# ---------------------------------------------------------------------------
# Insert
# ---------------------------------------------------------------------------


def insert(model: ModelSchema) -> SqlQueryContext:
    """``INSERT ... RETURNING`` over the owner-writable fields."""
    data_fields: List[ModelField] = model.owner_writable_fields
    q = QueryBuilder()
    q.push(f"INSERT INTO {model.full_table} (")

    columns = q.separated(", ")
    for column, _ in id_fields(model):
        columns.push(column)
    if not model.is_global:
        columns.push("organization_id")
    for f in data_fields:
        columns.push(f.sql_name)

    q.push(") VALUES (")
    values = q.separated(", ")
    for _, binding in id_fields(model):
        values.push_binding(binding)
    if not model.is_global:
        values.push_binding(bindings.ORGANIZATION)
    for f in data_fields:
        values.push_binding(bindings.field_binding(f.name))

    q.push(") RETURNING ")
    _push_returning(q, model)
    return q.finish_with_field_bindings("insert", [f.name for f in data_fields])


def _push_returning(q: QueryBuilder, model: ModelSchema) -> None:
    returning = q.separated(", ")
    for f in model.readable_fields:
        returning.push(f.sql_full_name)


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------


def _update_query(model: ModelSchema, parent: Optional[BelongsTo]) -> QueryBuilder:
    q = QueryBuilder()
    for _, binding in id_fields(model):
        q.create_binding(binding)

    q.push(f"UPDATE {model.full_table} SET ")
    assignments = q.separated(", ")
    for f in model.writable_fields:
        assignments.push(f"{f.sql_name} = ")
        assignments.push_binding_unseparated(bindings.field_binding(f.name))
    assignments.push("updated_at = NOW()")

    q.push(" WHERE ")
    push_id_where_clause(model, q)
    if parent is not None:
        q.push(f" AND {parent.sql_name} = ")
        q.push_binding(bindings.PARENT_ID)
    if not model.is_global:
        q.push(" AND organization_id = ")
        q.push_binding(bindings.ORGANIZATION)
    return q


def update(model: ModelSchema) -> SqlQueryContext:
    q = _update_query(model, None)
    return q.finish_with_field_bindings("update", [f.name for f in model.writable_fields])


def update_one_with_parent(model: ModelSchema) -> List[SqlQueryContext]:
    """
    One update variant per parent, additionally matching ``<parent col> = $parent_id``.

    Join models get none: their two ids already pin the row down.
    """
    if model.is_join:
        return []

    field_names: List[str] = [f.name for f in model.writable_fields]
    return [
        _update_query(model, parent).finish_with_field_bindings(
            f"update_one_with_parent_of_{parent.model_snake_name}", field_names
        )
        for parent in model.belongs_to
    ]


# ---------------------------------------------------------------------------
# Select
# ---------------------------------------------------------------------------


def select_one(model: ModelSchema, populate_children: bool = False) -> Optional[SqlQueryContext]:
    """
    Fetch one row by id, optionally with children and references nested in.

    Returns ``None`` when population is requested but the model has no
    children.
    """
    if populate_children and not model.children:
        logger.debug("No children on %s; skipping select_one_populated.", model.name)
        return None

    q = QueryBuilder()
    for _, binding in id_fields(model):
        q.create_binding(binding)
    org: Optional[str] = None if model.is_global else q.create_binding(bindings.ORGANIZATION)

    q.push("SELECT ")
    projection = q.separated(", ")
    for f in model.readable_fields:
        projection.push(f.qualified(TABLE_ALIAS))

    joins: List[str] = []
    if populate_children:
        parent_match: str = q.create_binding(bindings.ID)
        for child in model.children:
            clause: Optional[str] = child_population(
                child, child.populate_on_get, org, parent_match
            )
            if clause is None:
                continue
            projection.push(clause)
            projection.push_unseparated(f" AS {quote_identifier(child.get_field_name)}")

        for ref in model.reference_populations:
            if not ref.on_get:
                continue
            projection.push(reference_case_expression(ref))
            joins.append(reference_join_clause(ref, not model.is_global))

    q.push(f" FROM {model.full_table} {TABLE_ALIAS}")
    for join in joins:
        q.push(join)

    q.push(" WHERE ")
    push_id_where_clause(model, q, TABLE_ALIAS)
    if not model.is_global:
        q.push(f" AND {TABLE_ALIAS}.organization_id = ")
        q.push_binding(bindings.ORGANIZATION)

    return q.finish("select_one_populated" if populate_children else "select_one")


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------


def delete(model: ModelSchema) -> SqlQueryContext:
    q = QueryBuilder()
    q.push(f"DELETE FROM {model.full_table} WHERE ")
    push_id_where_clause(model, q)
    if not model.is_global:
        q.push(" AND organization_id = ")
        q.push_binding(bindings.ORGANIZATION)
    if model.auth_check_in_query:
        q.push(" AND ")
        permissions_check_where_clause(model, q, [model.owner_permission])
    return q.finish("delete")


def _delete_with_parent_where(
    model: ModelSchema,
    parent: BelongsTo,
    q: QueryBuilder,
) -> Separated:
    q.push(f"DELETE FROM {model.full_table} WHERE ")
    where_sep = q.separated(" AND ")
    if not model.is_global:
        where_sep.push("organization_id = ")
        where_sep.push_binding_unseparated(bindings.ORGANIZATION)
    where_sep.push(f"{parent.sql_name} = ")
    where_sep.push_binding_unseparated(bindings.PARENT_ID)
    return where_sep


def delete_all_children(model: ModelSchema, parent: BelongsTo) -> SqlQueryContext:
    """Delete every row owned by one parent."""
    q = QueryBuilder()
    _delete_with_parent_where(model, parent, q)
    return q.finish(f"delete_all_children_of_{parent.model_snake_name}")


def delete_removed_children(model: ModelSchema, parent: BelongsTo) -> SqlQueryContext:
    """Delete a parent's rows whose id is not in the ``$ids`` array."""
    q = QueryBuilder()
    where_sep = _delete_with_parent_where(model, parent, q)
    where_sep.push(f"{other_id_field(model, parent.sql_name)} <> ALL(")
    where_sep.push_binding_unseparated(bindings.IDS)
    where_sep.push_unseparated(")")
    return q.finish(f"delete_removed_children_of_{parent.model_snake_name}")


def delete_with_parent(model: ModelSchema, parent: BelongsTo) -> SqlQueryContext:
    """Delete one row, only if it belongs to the given parent."""
    q = QueryBuilder()
    _delete_with_parent_where(model, parent, q)
    q.push(" AND ")
    push_id_where_clause(model, q)
    return q.finish(f"delete_with_parent_of_{parent.model_snake_name}")


def delete_children_queries(model: ModelSchema) -> List[SqlQueryContext]:
    queries: List[SqlQueryContext] = []
    for parent in model.belongs_to:
        queries.append(delete_all_children(model, parent))
        queries.append(delete_removed_children(model, parent))
        queries.append(delete_with_parent(model, parent))
    return queries


# ---------------------------------------------------------------------------
# List
# ---------------------------------------------------------------------------


def list_query(
    model: ModelSchema,
    populate_children: bool = False,
    order_by: Optional[str] = None,
) -> Optional[SqlQueryContext]:
    """
    Paginated list filtered by organization.

    *order_by* (``"field"`` or ``"-field"``) is checked against the model's
    sort whitelist before any text is built; ``None`` uses the model's
    default sort.  Returns ``None`` for a populated list on a model with
    no children.

    Raises:
        OrderByError: the requested sort is not allowed.
    """
    if populate_children and not model.children:
        logger.debug("No children on %s; skipping list_populated.", model.name)
        return None

    sort: Optional[OrderBy] = parse_order_by(model, order_by)

    q = QueryBuilder()
    org: Optional[str] = None if model.is_global else q.create_binding(bindings.ORGANIZATION)

    q.push("SELECT ")
    projection = q.separated(", ")
    for f in model.list_fields:
        projection.push(f.qualified(TABLE_ALIAS))

    if populate_children:
        for child in model.children:
            clause: Optional[str] = child_population(
                child, child.populate_on_list, org, f"{TABLE_ALIAS}.id"
            )
            if clause is None:
                continue
            projection.push(clause)
            projection.push_unseparated(f" AS {quote_identifier(child.list_field_name)}")

        for ref in model.reference_populations:
            if ref.on_list:
                projection.push(reference_subquery(ref, not model.is_global))

    q.push(f" FROM {model.full_table} {TABLE_ALIAS}")

    where_sep = q.separated(" AND ")
    where_sep.on_first(" WHERE ")
    if not model.is_global:
        where_sep.push(f"{TABLE_ALIAS}.organization_id = ")
        where_sep.push_binding_unseparated(bindings.ORGANIZATION)

    if sort is not None:
        q.push(f" ORDER BY {sort.to_sql(TABLE_ALIAS)}")

    if not model.pagination_disabled:
        q.push(" LIMIT ")
        q.push_binding(bindings.LIMIT)
        q.push(" OFFSET ")
        q.push_binding(bindings.OFFSET)

    return q.finish("list_populated" if populate_children else "list")


# ---------------------------------------------------------------------------
# Upsert
# ---------------------------------------------------------------------------


def _upsert_fields(model: ModelSchema, parent: BelongsTo) -> List[ModelField]:
    """
    Fields an upsert may set.

    A globally unique join row may also move its other parent id, since
    the conflict target is the parent column rather than both ids.
    """
    join_ids = set(model.join_id_names)
    chosen: List[ModelField] = []
    for f in model.fields:
        if f.name in ("id", "organization_id"):
            continue
        if f.writable and f.name not in join_ids:
            chosen.append(f)
        elif parent.globally_unique and f.name in join_ids and f.name != parent.field_name:
            chosen.append(f)
    return chosen


def upsert_single_child(model: ModelSchema, parent: BelongsTo) -> SqlQueryContext:
    """Insert one child of *parent*, updating it in place on conflict."""
    fields: List[ModelField] = _upsert_fields(model, parent)
    id_columns: List[str] = [column for column, _ in id_fields(model)]
    data_fields: List[ModelField] = [f for f in fields if f.name not in id_columns]

    q = QueryBuilder()
    q.push(f"INSERT INTO {model.full_table} (")
    columns = q.separated(", ")
    for column in id_columns:
        columns.push(column)
    if not model.is_global:
        columns.push("organization_id")
    for f in data_fields:
        columns.push(f.sql_name)

    q.push(") VALUES (")
    values = q.separated(", ")
    for _, binding in id_fields(model):
        values.push_binding(binding)
    if not model.is_global:
        values.push_binding(bindings.ORGANIZATION)
    for f in data_fields:
        values.push_binding(bindings.field_binding(f.name))
    q.push(")")

    conflict: str = parent.sql_name if parent.globally_unique else ", ".join(id_columns)
    if not fields:
        q.push(f" ON CONFLICT ({conflict}) DO NOTHING")
    else:
        q.push(f" ON CONFLICT ({conflict}) DO UPDATE SET ")
        assignments = q.separated(", ")
        for f in fields:
            assignments.push(f"{f.sql_name} = EXCLUDED.{f.sql_name}")
        assignments.push("updated_at = NOW()")

        q.push(" WHERE ")
        if not model.is_global:
            q.push(f"{model.table}.organization_id = ")
            q.push_binding(bindings.ORGANIZATION)
            q.push(" AND ")
        q.push(f"{model.table}.{parent.sql_name} = ")
        q.push_binding(bindings.PARENT_ID)

    q.push(" RETURNING ")
    _push_returning(q, model)
    return q.finish_with_field_bindings(
        f"upsert_single_child_of_{parent.model_snake_name}",
        [f.name for f in data_fields],
    )


def upsert_queries(model: ModelSchema) -> List[SqlQueryContext]:
    return [upsert_single_child(model, parent) for parent in model.belongs_to]


# ---------------------------------------------------------------------------
# Object permission lookup
# ---------------------------------------------------------------------------


def lookup_object_permissions(model: ModelSchema) -> SqlQueryContext:
    """
    Highest permission tier (``owner`` > ``write`` > ``read``) any of the
    caller's actors holds on one object.

    Raises:
        UnsupportedOperationError: for join models, which have no single
            object id to look permissions up by.
    """
    if model.is_join:
        raise UnsupportedOperationError(
            OperationKind.LOOKUP_OBJECT_PERMISSIONS.value,
            model.name,
            "join models have no single object id",
        )
    q = QueryBuilder()
    object_permissions_value_query(model, q)
    return q.finish("lookup_object_permissions")


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def _present(*contexts: Optional[SqlQueryContext]) -> List[SqlQueryContext]:
    return [c for c in contexts if c is not None]


_GENERATORS: Dict[OperationKind, Callable[[ModelSchema], List[SqlQueryContext]]] = {
    OperationKind.INSERT: lambda m: [insert(m)],
    OperationKind.UPDATE: lambda m: [update(m)],
    OperationKind.UPDATE_ONE_WITH_PARENT: update_one_with_parent,
    OperationKind.SELECT_ONE: lambda m: _present(select_one(m, False)),
    OperationKind.SELECT_ONE_POPULATED: lambda m: _present(select_one(m, True)),
    OperationKind.DELETE: lambda m: [delete(m)],
    OperationKind.DELETE_CHILDREN: delete_children_queries,
    OperationKind.LIST: lambda m: _present(list_query(m, False)),
    OperationKind.LIST_POPULATED: lambda m: _present(list_query(m, True)),
    OperationKind.UPSERT: upsert_queries,
    OperationKind.LOOKUP_OBJECT_PERMISSIONS: lambda m: [lookup_object_permissions(m)],
}


def generate_operation(model: ModelSchema, kind: OperationKind) -> List[SqlQueryContext]:
    """Generate every query of one operation kind for *model*."""
    return _GENERATORS[OperationKind(kind)](model)


def applicable_operations(
    model: ModelSchema,
    kinds: Optional[Iterable[OperationKind]] = None,
) -> List[OperationKind]:
    """
    Requested kinds (default: all) that make sense for *model*, in enum order.

    Object-permission lookups are left out for join models.
    """
    wanted = {OperationKind(k) for k in (kinds if kinds is not None else OperationKind)}
    result: List[OperationKind] = []
    for kind in OperationKind:
        if kind not in wanted:
            continue
        if kind == OperationKind.LOOKUP_OBJECT_PERMISSIONS and model.is_join:
            logger.debug("Not planning %s for join model %s.", kind.value, model.name)
            continue
        result.append(kind)
    return result


def create_model_queries(
    model: ModelSchema,
    kinds: Optional[Sequence[OperationKind]] = None,
) -> List[SqlQueryContext]:
    """All queries for *model*, concatenated in ``OperationKind`` order."""
    queries: List[SqlQueryContext] = []
    for kind in applicable_operations(model, kinds):
        queries.extend(generate_operation(model, kind))
    logger.debug("Generated %d queries for %s.", len(queries), model.name)
    return queries


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "insert",
    "update",
    "update_one_with_parent",
    "select_one",
    "delete",
    "delete_all_children",
    "delete_removed_children",
    "delete_with_parent",
    "delete_children_queries",
    "list_query",
    "upsert_single_child",
    "upsert_queries",
    "lookup_object_permissions",
    "generate_operation",
    "applicable_operations",
    "create_model_queries",
]

logger.debug("querygen.queries loaded.")
