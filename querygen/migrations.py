# File: querygen/migrations.py
"""
NexaFlow QueryGen - Migration Text
===================================
Produces the ``up``/``down`` DDL for each model.  Tables are described
with SQLAlchemy Core and compiled against the PostgreSQL dialect, so
column types, constraints and quoting come from SQLAlchemy rather than
string templates.

All models share one ``MetaData`` so foreign keys between them resolve.
Migrations are emitted in dependency order (parents before children)
using Kahn's algorithm; cycles fall back to declaration order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Sequence, Set

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    Table,
    Text,
    text,
)
from sqlalchemy.dialects import postgresql
from sqlalchemy.schema import CreateIndex, CreateTable, DropTable

from querygen.models import ModelField, ModelSchema, SqlType

logger: logging.Logger = logging.getLogger("querygen.migrations")

_DIALECT = postgresql.dialect()

_TYPE_FACTORIES: Dict[str, Callable[[], Any]] = {
    SqlType.TEXT.value: Text,
    SqlType.INTEGER.value: Integer,
    SqlType.BIGINT.value: BigInteger,
    SqlType.FLOAT.value: Float,
    SqlType.NUMERIC.value: Numeric,
    SqlType.BOOLEAN.value: Boolean,
    SqlType.UUID.value: postgresql.UUID,
    SqlType.TIMESTAMP.value: lambda: DateTime(timezone=True),
    SqlType.DATE.value: Date,
    SqlType.JSONB.value: postgresql.JSONB,
    SqlType.TEXT_ARRAY.value: lambda: postgresql.ARRAY(Text),
    SqlType.UUID_ARRAY.value: lambda: postgresql.ARRAY(postgresql.UUID),
}


@dataclass(frozen=True, slots=True)
class MigrationText:
    """Rendered DDL for one model."""

    module_name: str
    up: str
    down: str


# ---------------------------------------------------------------------------
# Table construction
# ---------------------------------------------------------------------------


def _column_type(f: ModelField) -> Any:
    return _TYPE_FACTORIES[SqlType(f.sql_type).value]()


def _primary_key(model: ModelSchema) -> Set[str]:
    return set(model.join_id_names) if model.is_join else {"id"}


def _build_table(model: ModelSchema, metadata: MetaData, known: Set[str]) -> Table:
    pk: Set[str] = _primary_key(model)
    columns: List[Column] = []
    for f in model.fields:
        args: List[Any] = []
        if f.references:
            if f.references in known:
                args.append(ForeignKey(f"{f.references}.id", ondelete="CASCADE"))
            else:
                logger.warning(
                    "%s.%s references unknown table %s; emitting no foreign key.",
                    model.name,
                    f.name,
                    f.references,
                )
        is_pk: bool = f.name in pk
        columns.append(
            Column(
                f.sql_name,
                _column_type(f),
                *args,
                primary_key=is_pk,
                nullable=f.nullable and not is_pk,
                unique=f.unique or None,
                server_default=text(f.default_sql) if f.default_sql else None,
            )
        )

    table = Table(model.table, metadata, *columns, schema=model.schema_name)

    for f in model.fields:
        if f.indexed and not f.unique and f.name not in pk:
            Index(f"{model.table}_{f.sql_name}_idx", table.c[f.sql_name])
    for cols in model.indexes:
        Index(f"{model.table}_{'_'.join(cols)}_idx", *(table.c[c] for c in cols))
    return table


def build_metadata(models: Sequence[ModelSchema]) -> MetaData:
    """One ``MetaData`` holding a ``Table`` for every model."""
    metadata = MetaData()
    known: Set[str] = {m.full_table for m in models}
    for model in models:
        _build_table(model, metadata, known)
    return metadata


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def generate_up_migration(model: ModelSchema, metadata: MetaData) -> str:
    table: Table = metadata.tables[model.full_table]
    statements: List[str] = [str(CreateTable(table).compile(dialect=_DIALECT)).strip()]
    for index in sorted(table.indexes, key=lambda i: i.name or ""):
        statements.append(str(CreateIndex(index).compile(dialect=_DIALECT)).strip())
    return ";\n\n".join(statements) + ";\n"


def generate_down_migration(model: ModelSchema, metadata: MetaData) -> str:
    table: Table = metadata.tables[model.full_table]
    return str(DropTable(table, if_exists=True).compile(dialect=_DIALECT)).strip() + ";\n"


def migration_order(models: Sequence[ModelSchema]) -> List[ModelSchema]:
    """
    Models ordered so referenced tables are created first.

    Kahn's algorithm over ``references`` edges; O(V + E).
    """
    by_table: Dict[str, ModelSchema] = {m.full_table: m for m in models}
    in_degree: Dict[str, int] = {t: 0 for t in by_table}
    adjacency: Dict[str, List[str]] = {t: [] for t in by_table}

    for model in models:
        targets: Set[str] = {
            f.references
            for f in model.fields
            if f.references and f.references in by_table and f.references != model.full_table
        }
        for target in sorted(targets):
            adjacency[target].append(model.full_table)
            in_degree[model.full_table] += 1

    queue: List[str] = [t for t in by_table if in_degree[t] == 0]
    ordered: List[str] = []
    while queue:
        node: str = queue.pop(0)
        ordered.append(node)
        for dependant in adjacency[node]:
            in_degree[dependant] -= 1
            if in_degree[dependant] == 0:
                queue.append(dependant)

    if len(ordered) != len(by_table):
        logger.warning(
            "Circular references between tables; remaining migrations "
            "follow declaration order."
        )
        seen: Set[str] = set(ordered)
        ordered.extend(t for t in by_table if t not in seen)

    return [by_table[t] for t in ordered]


def render_migrations(models: Sequence[ModelSchema]) -> List[MigrationText]:
    """Up/down DDL for every model, in dependency order."""
    metadata: MetaData = build_metadata(models)
    return [
        MigrationText(
            module_name=model.module_name,
            up=generate_up_migration(model, metadata),
            down=generate_down_migration(model, metadata),
        )
        for model in migration_order(models)
    ]


__all__: List[str] = [
    "MigrationText",
    "build_metadata",
    "generate_up_migration",
    "generate_down_migration",
    "migration_order",
    "render_migrations",
]

logger.debug("querygen.migrations loaded.")
