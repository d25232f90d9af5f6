# File: querygen/query_builder.py
"""
NexaFlow QueryGen - Query Builder Primitive
============================================
A small text + named-binding assembler.  Every generator creates a fresh
``QueryBuilder``, pushes SQL fragments and bindings into it, then freezes
it with ``finish()`` into an immutable ``SqlQueryContext``.

Binding rules:
    - Each distinct binding name gets exactly one positional parameter.
    - Requesting a name again reuses its existing ``$n``.
    - ``bindings[i]`` is always the name behind placeholder ``$i+1``.

Once finished, a builder is consumed: any further push or a second
finish raises ``BuilderConsumedError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from querygen.bindings import placeholder
from querygen.exceptions import BuilderConsumedError, EmptyQueryError

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("querygen.query_builder")


# ---------------------------------------------------------------------------
# Frozen result
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SqlQueryContext:
    """Finished query: text, binding order, and operation name."""

    operation_name: str
    sql_text: str
    bindings: Tuple[str, ...]
    field_bindings: Tuple[str, ...] = ()

    @property
    def num_bindings(self) -> int:
        return len(self.bindings)

    def placeholder_for(self, name: str) -> str:
        """Return the ``$n`` placeholder used for *name*. Raises KeyError if unbound."""
        try:
            return placeholder(self.bindings.index(name) + 1)
        except ValueError:
            raise KeyError(
                f"Binding '{name}' is not used by query '{self.operation_name}'."
            ) from None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation_name": self.operation_name,
            "bindings": list(self.bindings),
            "field_bindings": list(self.field_bindings),
        }

    def __repr__(self) -> str:
        return f"<SqlQueryContext {self.operation_name} ({self.num_bindings} bindings)>"


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


class QueryBuilder:
    """
    Mutable query assembler, owned by a single generator call.

    Usage::

        q = QueryBuilder()
        q.push("SELECT * FROM app.posts WHERE id = ")
        q.push_binding(bindings.ID)
        ctx = q.finish("select_one")
    """

    __slots__ = ("_parts", "_bindings", "_finished_as")

    def __init__(
        self,
        initial: str = "",
        bindings: Optional[Sequence[str]] = None,
    ) -> None:
        self._parts: List[str] = [initial] if initial else []
        self._bindings: List[str] = list(bindings or [])
        self._finished_as: Optional[str] = None

    # -- Inspection ---------------------------------------------------------

    @property
    def sql(self) -> str:
        """Text assembled so far."""
        return "".join(self._parts)

    @property
    def bindings(self) -> Tuple[str, ...]:
        return tuple(self._bindings)

    @property
    def is_finished(self) -> bool:
        return self._finished_as is not None

    # -- Mutation -----------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._finished_as is not None:
            raise BuilderConsumedError(self._finished_as)

    def push(self, sql: str) -> None:
        """Append raw SQL text."""
        self._ensure_open()
        self._parts.append(sql)

    def create_binding_index(self, name: str) -> int:
        """
        Create or reuse the binding *name* without emitting anything.

        Returns the 1-based parameter number.
        """
        self._ensure_open()
        try:
            return self._bindings.index(name) + 1
        except ValueError:
            self._bindings.append(name)
            return len(self._bindings)

    def create_binding(self, name: str) -> str:
        """Create or reuse a binding and return its ``$n`` text for later splicing."""
        return placeholder(self.create_binding_index(name))

    def push_binding(self, name: str) -> None:
        """Create or reuse a binding and append its placeholder."""
        self.push(self.create_binding(name))

    def separated(self, sep: str) -> "Separated":
        self._ensure_open()
        return Separated(self, sep)

    # -- Freezing -----------------------------------------------------------

    def finish(self, operation_name: str) -> SqlQueryContext:
        """Freeze the builder into a ``SqlQueryContext``."""
        return self._freeze(operation_name, ())

    def finish_with_field_bindings(
        self,
        operation_name: str,
        fields: Sequence[str],
    ) -> SqlQueryContext:
        """
        Freeze the builder and also report which of *fields* were bound.

        ``field_bindings`` lists the bound field names in binding order, so
        callers can supply values positionally without re-deriving the
        field list.
        """
        wanted = set(fields)
        bound: Tuple[str, ...] = tuple(b for b in self._bindings if b in wanted)
        return self._freeze(operation_name, bound)

    def _freeze(
        self,
        operation_name: str,
        field_bindings: Tuple[str, ...],
    ) -> SqlQueryContext:
        self._ensure_open()
        text: str = self.sql
        if not text.strip():
            raise EmptyQueryError(operation_name)

        self._finished_as = operation_name
        ctx = SqlQueryContext(
            operation_name=operation_name,
            sql_text=text,
            bindings=tuple(self._bindings),
            field_bindings=field_bindings,
        )
        logger.debug(
            "Finished query %s with %d binding(s).",
            operation_name,
            ctx.num_bindings,
        )
        return ctx

    def __repr__(self) -> str:
        state: str = f"finished as {self._finished_as}" if self.is_finished else "open"
        return f"<QueryBuilder {state}, {len(self._bindings)} bindings>"


class Separated:
    """
    Writes a separator between successive pushes into a ``QueryBuilder``.

    ``push_unseparated`` appends without a separator, so ``col = $1`` can
    be built from two pushes.  ``on_first`` sets text emitted just before
    the first separated push, e.g. ``" WHERE "`` that only appears when
    at least one predicate follows.
    """

    __slots__ = ("_builder", "_sep", "_first", "_on_first")

    def __init__(self, builder: QueryBuilder, sep: str) -> None:
        self._builder: QueryBuilder = builder
        self._sep: str = sep
        self._first: bool = True
        self._on_first: str = ""

    def on_first(self, text: str) -> None:
        self._on_first = text

    def _separate(self) -> None:
        if self._first:
            self._first = False
            if self._on_first:
                self._builder.push(self._on_first)
        else:
            self._builder.push(self._sep)

    def push(self, sql: str) -> None:
        self._separate()
        self._builder.push(sql)

    def push_unseparated(self, sql: str) -> None:
        self._builder.push(sql)

    def push_binding(self, name: str) -> None:
        self._separate()
        self._builder.push_binding(name)

    def push_binding_unseparated(self, name: str) -> None:
        self._builder.push_binding(name)

    @property
    def is_empty(self) -> bool:
        """True until the first separated push."""
        return self._first


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "QueryBuilder",
    "Separated",
    "SqlQueryContext",
]

logger.debug("querygen.query_builder loaded.")
