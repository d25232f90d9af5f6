# File: querygen/bindings.py
"""
NexaFlow QueryGen - Binding Registry
=====================================
Canonical binding names shared by every generated query.  A binding is a
named placeholder; the query builder turns each distinct name into one
PostgreSQL positional parameter (``$1``, ``$2``, ...) and records the
name in ``SqlQueryContext.bindings`` so code emitters can pass values in
the right order.

Writable fields bind under their logical field name, so a field name must
never collide with one of the canonical names below (checked in
``querygen.validators``).
"""

from __future__ import annotations

import logging
from typing import FrozenSet, List

logger: logging.Logger = logging.getLogger("querygen.bindings")

# ---------------------------------------------------------------------------
# Canonical names
# ---------------------------------------------------------------------------

ID: str = "id"
ORGANIZATION: str = "organization_id"
PARENT_ID: str = "parent_id"
JOIN_ID_0: str = "join_id_0"
JOIN_ID_1: str = "join_id_1"
ACTOR_IDS: str = "actor_ids"
IDS: str = "ids"
LIMIT: str = "limit"
OFFSET: str = "offset"

# Names a writable field must not use. ``id`` and ``organization_id`` are
# loader-managed columns that already bind under their canonical name.
RESERVED_BINDING_NAMES: FrozenSet[str] = frozenset({
    PARENT_ID,
    JOIN_ID_0,
    JOIN_ID_1,
    ACTOR_IDS,
    IDS,
    LIMIT,
    OFFSET,
})


def field_binding(field_name: str) -> str:
    """Binding name for a writable field."""
    return field_name


def placeholder(index: int) -> str:
    """PostgreSQL positional parameter for a 1-based binding index."""
    return f"${index}"


__all__: List[str] = [
    "ID",
    "ORGANIZATION",
    "PARENT_ID",
    "JOIN_ID_0",
    "JOIN_ID_1",
    "ACTOR_IDS",
    "IDS",
    "LIMIT",
    "OFFSET",
    "RESERVED_BINDING_NAMES",
    "field_binding",
    "placeholder",
]

logger.debug("querygen.bindings loaded.")
