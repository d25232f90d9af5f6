# File: querygen/sorting.py
"""
NexaFlow QueryGen - List Sort Whitelist
========================================
Parses a caller-supplied order string (``"title"`` for ascending,
``"-title"`` for descending) against the model's whitelist of sortable
fields.  Anything not on the whitelist, or a direction the field does not
allow, raises ``OrderByError`` before any SQL text is produced.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from querygen.exceptions import OrderByError
from querygen.models import ModelField, ModelSchema, Sortable

logger: logging.Logger = logging.getLogger("querygen.sorting")


@dataclass(frozen=True, slots=True)
class OrderBy:
    """A validated sort request."""

    field: str
    column: str
    descending: bool

    def to_sql(self, table_alias: str = "tb") -> str:
        direction: str = "DESC" if self.descending else "ASC"
        return f"{table_alias}.{self.column} {direction}"


def allowed_direction(field: ModelField, descending: bool) -> bool:
    if field.sortable == Sortable.NONE:
        return False
    if field.sortable == Sortable.ASCENDING_ONLY:
        return not descending
    if field.sortable == Sortable.DESCENDING_ONLY:
        return descending
    return True


def sort_whitelist(model: ModelSchema) -> Dict[str, ModelField]:
    """Fields a list query on *model* may be ordered by."""
    return model.sortable_fields


def parse_order_by(model: ModelSchema, order_by: Optional[str] = None) -> Optional[OrderBy]:
    """
    Validate *order_by* for *model*.

    ``None`` falls back to the model's ``default_sort``; a model without
    one yields ``None`` (no ORDER BY clause).

    Raises:
        OrderByError: unknown or non-sortable field (``invalid_field``),
            or a direction the field forbids (``invalid_direction``).
    """
    requested: Optional[str] = order_by if order_by is not None else model.default_sort
    if requested is None:
        return None

    descending: bool = requested.startswith("-")
    name: str = requested[1:] if descending else requested

    field: Optional[ModelField] = sort_whitelist(model).get(name)
    if field is None:
        logger.debug("Rejected sort field %r for model %s.", name, model.name)
        raise OrderByError(OrderByError.INVALID_FIELD, model.name, name)

    if not allowed_direction(field, descending):
        logger.debug(
            "Rejected %s sort on %s.%s.",
            "descending" if descending else "ascending",
            model.name,
            name,
        )
        raise OrderByError(OrderByError.INVALID_DIRECTION, model.name, name)

    return OrderBy(field=field.name, column=field.sql_name, descending=descending)


__all__: List[str] = [
    "OrderBy",
    "allowed_direction",
    "sort_whitelist",
    "parse_order_by",
]

logger.debug("querygen.sorting loaded.")
