# File: querygen/identity.py
"""
NexaFlow QueryGen - Identity / Join Resolver
=============================================
Derives how a row is identified.  Ordinary models are keyed by ``id``;
join models are keyed by their two parent-id columns, bound as
``join_id_0`` and ``join_id_1``.  Generators go through these helpers so
single-key and composite-key tables are handled uniformly.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from querygen import bindings
from querygen.models import ModelSchema
from querygen.query_builder import QueryBuilder

logger: logging.Logger = logging.getLogger("querygen.identity")


def id_fields(model: ModelSchema) -> List[Tuple[str, str]]:
    """
    Return ``(column, binding_name)`` pairs identifying one row.

    >>> id_fields(post_tag)
    [('post_id', 'join_id_0'), ('tag_id', 'join_id_1')]
    """
    if model.join is not None:
        first, second = model.join.model_ids
        return [(first, bindings.JOIN_ID_0), (second, bindings.JOIN_ID_1)]
    return [("id", bindings.ID)]


def push_id_where_clause(
    model: ModelSchema,
    q: QueryBuilder,
    table_alias: Optional[str] = None,
) -> None:
    """Append ``col = $n [AND col = $m]`` over ``id_fields`` to *q*."""
    where_sep = q.separated(" AND ")
    for column, binding in id_fields(model):
        where_sep.push(f"{table_alias}.{column}" if table_alias else column)
        where_sep.push_unseparated(" = ")
        where_sep.push_binding_unseparated(binding)


def other_id_field(model: ModelSchema, id_field: str) -> str:
    """
    For a join model, the parent-id column that is not *id_field*.

    Non-join models always answer ``"id"``.
    """
    if model.join is not None:
        first, second = model.join.model_ids
        return second if id_field == first else first
    return "id"


__all__: List[str] = [
    "id_fields",
    "push_id_where_clause",
    "other_id_field",
]

logger.debug("querygen.identity loaded.")
