# File: querygen/__init__.py
"""
NexaFlow QueryGen - Model-to-SQL Query Compiler
================================================

Compiles declarative model definitions (YAML/JSON) into parameterized,
tenant-aware PostgreSQL statements: insert, update, select (plain and
child-populated), delete, list, upsert and object-permission lookups, plus
migration DDL.  Every statement comes with its binding order so callers
can pass values by position safely.

Architecture overview::

    ┌──────────────┐     ┌────────────────┐     ┌───────────────┐
    │  CLI / Entry │────▶│ QueryGenerator │────▶│  queries.py   │
    │   (cli.py)   │     │ (generator.py) │     │ (generators)  │
    └──────────────┘     └───────┬────────┘     └───────┬───────┘
                                 │                      ▼
                    ┌────────────┼────────────┐  ┌──────────────┐
                    ▼            ▼            ▼  │ QueryBuilder │
             ┌──────────┐ ┌───────────┐ ┌──────┐ └──────────────┘
             │  loader  │ │validators │ │export│
             └──────────┘ └───────────┘ └──────┘

Usage::

    from querygen import create_model_queries, load_project
    models, config = load_project(Path("models.yaml"))
    for ctx in create_model_queries(models[0]):
        print(ctx.operation_name, ctx.bindings)

    python -m querygen --definition models.yaml --output ./sql -v
"""

from __future__ import annotations

__version__: str = "1.0.0"
__author__: str = "NexaFlow Team"
__license__: str = "MIT"

from querygen.exceptions import (
    ConfigurationError,
    ErrorCode,
    FormatterError,
    OrderByError,
    QueryBuildError,
    QueryGenError,
    UnsupportedOperationError,
)
from querygen.models import (
    FetchType,
    GenerationConfig,
    ModelField,
    ModelSchema,
    OperationKind,
    Sortable,
    SqlType,
)
from querygen.query_builder import QueryBuilder, SqlQueryContext
from querygen.queries import create_model_queries, generate_operation
from querygen.loader import build_model_schemas, load_project
from querygen.validators import ValidationResult, validate_full
from querygen.exporters import ExportManifest, ExportResult, ProjectExporter
from querygen.generator import GenerationReport, QueryGenerator

__all__: list[str] = [
    "__version__",
    "__author__",
    "__license__",
    # Errors
    "ConfigurationError",
    "ErrorCode",
    "FormatterError",
    "OrderByError",
    "QueryBuildError",
    "QueryGenError",
    "UnsupportedOperationError",
    # Models
    "FetchType",
    "GenerationConfig",
    "ModelField",
    "ModelSchema",
    "OperationKind",
    "Sortable",
    "SqlType",
    # Compiler
    "QueryBuilder",
    "SqlQueryContext",
    "create_model_queries",
    "generate_operation",
    # Pipeline
    "build_model_schemas",
    "load_project",
    "ValidationResult",
    "validate_full",
    "ExportManifest",
    "ExportResult",
    "ProjectExporter",
    "GenerationReport",
    "QueryGenerator",
]
