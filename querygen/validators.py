# File: querygen/validators.py
"""
NexaFlow QueryGen - Semantic Validators
========================================
Pure-function validation pipeline over loaded ``ModelSchema`` objects.

Pydantic validators on the models already guarantee each model is
structurally sound on its own.  This module adds the cross-model checks:
relation targets resolve, tenancy agrees across relations, field names do
not shadow canonical binding names, identifiers are not SQL keywords
(identifiers are spliced into SQL unquoted), and each model's default sort
is on its whitelist.

Usage::

    result = validate_full(models, config)
    if not result.is_valid:
        print(result.format_report())
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Sequence

from querygen.bindings import RESERVED_BINDING_NAMES
from querygen.exceptions import OrderByError
from querygen.models import GenerationConfig, ModelSchema
from querygen.sorting import parse_order_by

logger: logging.Logger = logging.getLogger("querygen.validators")

# ---------------------------------------------------------------------------
# Validation result container
# ---------------------------------------------------------------------------


class ValidationIssue:
    """One finding of the pipeline."""

    __slots__ = ("level", "code", "message", "context")

    def __init__(
        self,
        level: str,
        code: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.level: str = level  # "error" | "warning" | "info"
        self.code: str = code
        self.message: str = message
        self.context: Dict[str, Any] = context or {}

    @property
    def is_error(self) -> bool:
        return self.level == "error"

    @property
    def is_warning(self) -> bool:
        return self.level == "warning"

    def __repr__(self) -> str:
        return f"[{self.level.upper()}] {self.code}: {self.message}"

    def __str__(self) -> str:
        return self.__repr__()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level,
            "code": self.code,
            "message": self.message,
            "context": self.context,
        }


class ValidationResult:
    """Accumulates ``ValidationIssue`` instances; truthy when there are no errors."""

    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: List[ValidationIssue] = []

    def add_error(self, code: str, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        self._items.append(ValidationIssue("error", code, message, context))

    def add_warning(
        self, code: str, message: str, context: Optional[Dict[str, Any]] = None
    ) -> None:
        self._items.append(ValidationIssue("warning", code, message, context))

    def merge(self, other: "ValidationResult") -> None:
        self._items.extend(other._items)

    @property
    def errors(self) -> List[ValidationIssue]:
        return [e for e in self._items if e.is_error]

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [e for e in self._items if e.is_warning]

    @property
    def codes(self) -> List[str]:
        return [e.code for e in self._items]

    @property
    def has_errors(self) -> bool:
        return any(e.is_error for e in self._items)

    @property
    def is_valid(self) -> bool:
        return not self.has_errors

    def summary(self) -> str:
        return (
            f"Validation: {len(self.errors)} error(s), "
            f"{len(self.warnings)} warning(s), "
            f"{len(self._items)} total item(s)."
        )

    def __repr__(self) -> str:
        return f"<ValidationResult {self.summary()}>"

    def __bool__(self) -> bool:
        return self.is_valid

    def __len__(self) -> int:
        return len(self._items)

    def format_report(self) -> str:
        """Human-readable multi-line report."""
        lines: List[str] = [self.summary(), ""]
        for item in self._items:
            prefix: str = {"error": "❌", "warning": "⚠️"}.get(item.level, "•")
            lines.append(f"  {prefix} [{item.code}] {item.message}")
            for k, v in item.context.items():
                lines.append(f"       {k}: {v}")
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_PROJECT_NAME_RE: re.Pattern[str] = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_\-]*$")
_SEMANTIC_VERSION_RE: re.Pattern[str] = re.compile(r"^\d+\.\d+\.\d+([a-zA-Z0-9\.\-]+)?$")

# PostgreSQL keywords that cannot appear as bare table or column names.
_SQL_RESERVED_WORDS: FrozenSet[str] = frozenset(
    {
        "all", "and", "any", "array", "as", "asc", "both", "case", "cast",
        "check", "collate", "column", "constraint", "create", "default",
        "desc", "distinct", "do", "else", "end", "except", "false", "fetch",
        "for", "foreign", "from", "grant", "group", "having", "in",
        "intersect", "into", "leading", "limit", "not", "null", "offset",
        "on", "only", "or", "order", "primary", "references", "returning",
        "select", "some", "table", "then", "to", "trailing", "true", "union",
        "unique", "user", "using", "when", "where", "window", "with",
    }
)


# ---------------------------------------------------------------------------
# Individual validators
# ---------------------------------------------------------------------------


def validate_model_names(models: Sequence[ModelSchema]) -> ValidationResult:
    """Duplicate model names, tables and output modules; reserved table names."""
    result: ValidationResult = ValidationResult()
    for label, code, values in (
        ("Model name", "DUPLICATE_MODEL_NAME", [m.name for m in models]),
        ("Table", "DUPLICATE_TABLE", [m.full_table for m in models]),
        ("Module name", "DUPLICATE_MODULE_NAME", [m.module_name for m in models]),
    ):
        for value, count in Counter(values).items():
            if count > 1:
                result.add_error(code, f"{label} '{value}' is used by {count} models.")

    for model in models:
        for ident in (model.schema_name, model.table):
            if ident in _SQL_RESERVED_WORDS:
                result.add_error(
                    "TABLE_NAME_SQL_RESERVED",
                    f"'{ident}' in {model.full_table} is a SQL reserved word.",
                    {"model": model.name},
                )
    return result


def validate_field_names(models: Sequence[ModelSchema]) -> ValidationResult:
    """Column keywords and writable fields shadowing canonical binding names."""
    result: ValidationResult = ValidationResult()
    for model in models:
        for f in model.fields:
            ctx: Dict[str, Any] = {"model": model.name, "field": f.name}
            if f.sql_name in _SQL_RESERVED_WORDS:
                result.add_error(
                    "COLUMN_NAME_SQL_RESERVED",
                    f"Column '{model.table}.{f.sql_name}' is a SQL reserved word.",
                    ctx,
                )
            if f.name in RESERVED_BINDING_NAMES:
                level: Callable[..., None] = (
                    result.add_error if f.owner_writable else result.add_warning
                )
                level(
                    "FIELD_SHADOWS_BINDING",
                    f"Field '{model.name}.{f.name}' uses the reserved binding name "
                    f"'{f.name}'.",
                    ctx,
                )
    return result


def validate_relationships(models: Sequence[ModelSchema]) -> ValidationResult:
    """
    Every relation target resolves, and tenancy agrees along it.

    A tenant-scoped parent populating a global child would filter on a
    missing ``organization_id``; a global parent populating tenant-scoped
    children would return rows across organizations.
    """
    result: ValidationResult = ValidationResult()
    by_name: Dict[str, ModelSchema] = {m.name: m for m in models}
    join_tables: Dict[str, ModelSchema] = {m.full_table: m for m in models if m.is_join}

    for model in models:
        for parent in model.belongs_to:
            target: Optional[ModelSchema] = by_name.get(parent.model)
            if target is None:
                result.add_error(
                    "UNKNOWN_PARENT",
                    f"{model.name} belongs to unknown model '{parent.model}'.",
                    {"model": model.name},
                )
            elif target.is_join:
                result.add_error(
                    "PARENT_IS_JOIN",
                    f"{model.name} belongs to join model '{target.name}', which has no 'id'.",
                    {"model": model.name},
                )
            elif model.get_field(parent.field_name) is None:
                result.add_error(
                    "MISSING_PARENT_FIELD",
                    f"{model.name} has no field '{parent.field_name}' for parent "
                    f"'{parent.model}'.",
                    {"model": model.name},
                )

        for child in model.children:
            target = by_name.get(child.model)
            if target is None:
                result.add_error(
                    "UNKNOWN_CHILD",
                    f"{model.name} has unknown child model '{child.model}'.",
                    {"model": model.name},
                )
                continue
            if target.is_global != model.is_global:
                result.add_error(
                    "CHILD_TENANCY_MISMATCH",
                    f"{model.name} ({'global' if model.is_global else 'tenant-scoped'}) "
                    f"cannot populate {target.name} "
                    f"({'global' if target.is_global else 'tenant-scoped'}).",
                    {"model": model.name, "child": target.name},
                )
            if child.through is not None:
                join: Optional[ModelSchema] = by_name.get(child.through.model)
                if join is None or not join.is_join:
                    result.add_error(
                        "INVALID_THROUGH",
                        f"{model.name}.{child.get_field_name} goes through "
                        f"'{child.through.model}', which is not a join model.",
                        {"model": model.name},
                    )

        for ref in model.reference_populations:
            if ref.model not in by_name:
                result.add_error(
                    "UNKNOWN_REFERENCE",
                    f"{model.name} references unknown model '{ref.model}'.",
                    {"model": model.name},
                )
            elif by_name[ref.model].is_join:
                result.add_error(
                    "REFERENCE_IS_JOIN",
                    f"{model.name} references join model '{ref.model}', which has no 'id'.",
                    {"model": model.name},
                )
            elif model.is_global and not ref.is_global:
                result.add_warning(
                    "GLOBAL_REFERENCES_TENANT",
                    f"Global model {model.name} references tenant-scoped "
                    f"'{ref.model}'; the reference is not filtered by organization.",
                    {"model": model.name},
                )

        # Plain foreign-key columns; relation columns were reported above.
        reported_fields = {p.field_name for p in model.belongs_to}
        reported_columns = {r.id_field for r in model.reference_populations}
        for f in model.fields:
            if f.name in reported_fields or f.sql_name in reported_columns:
                continue
            if f.references in join_tables:
                result.add_error(
                    "REFERENCE_IS_JOIN",
                    f"Field '{model.name}.{f.name}' references join table "
                    f"{f.references}, which has no 'id'.",
                    {"model": model.name, "field": f.name},
                )
    return result


def validate_join_models(models: Sequence[ModelSchema]) -> ValidationResult:
    """Join models name two existing parents sharing the join's tenancy."""
    result: ValidationResult = ValidationResult()
    by_name: Dict[str, ModelSchema] = {m.name: m for m in models}
    for model in models:
        if model.join is None or model.join.models is None:
            continue
        for parent_name in model.join.models:
            parent: Optional[ModelSchema] = by_name.get(parent_name)
            if parent is None:
                result.add_error(
                    "UNKNOWN_JOIN_PARENT",
                    f"Join model {model.name} joins unknown model '{parent_name}'.",
                    {"model": model.name},
                )
            elif parent.is_global != model.is_global:
                result.add_error(
                    "JOIN_TENANCY_MISMATCH",
                    f"Join model {model.name} and parent {parent.name} disagree on tenancy.",
                    {"model": model.name},
                )
            elif parent.is_join:
                result.add_error(
                    "JOIN_OF_JOIN",
                    f"Join model {model.name} cannot join another join model "
                    f"'{parent.name}'.",
                    {"model": model.name},
                )
    return result


def validate_sorting(models: Sequence[ModelSchema]) -> ValidationResult:
    """Each model's ``default_sort`` must itself pass the sort whitelist."""
    result: ValidationResult = ValidationResult()
    for model in models:
        if model.default_sort is None:
            continue
        try:
            parse_order_by(model, model.default_sort)
        except OrderByError as exc:
            result.add_error(
                "INVALID_DEFAULT_SORT",
                f"{model.name} default_sort '{model.default_sort}' is rejected: {exc.reason}.",
                {"model": model.name},
            )
    return result


def validate_indexes(models: Sequence[ModelSchema]) -> ValidationResult:
    result: ValidationResult = ValidationResult()
    for model in models:
        columns = {f.sql_name for f in model.fields}
        for index in model.indexes:
            if not index:
                result.add_error(
                    "EMPTY_INDEX", f"{model.name} declares an index with no columns."
                )
                continue
            missing: List[str] = [c for c in index if c not in columns]
            if missing:
                result.add_error(
                    "INDEX_UNKNOWN_COLUMN",
                    f"{model.name} index {index} names unknown column(s) {missing}.",
                    {"model": model.name},
                )
    return result


def validate_generation_config(config: GenerationConfig) -> ValidationResult:
    """Semantic checks beyond the ``GenerationConfig`` field constraints."""
    result: ValidationResult = ValidationResult()

    if not _PROJECT_NAME_RE.match(config.project_name):
        result.add_error(
            "INVALID_PROJECT_NAME",
            f"Project name '{config.project_name}' is not a valid package name.",
            {"project_name": config.project_name},
        )
    if not _SEMANTIC_VERSION_RE.match(config.project_version):
        result.add_warning(
            "INVALID_SEMVER",
            f"Project version '{config.project_version}' does not follow "
            f"semantic versioning (e.g. 1.0.0).",
            {"version": config.project_version},
        )
    if not config.output_dir:
        result.add_error("EMPTY_OUTPUT_DIR", "output_dir must not be empty.")
    if not config.operations:
        result.add_warning("NO_OPERATIONS", "No operations selected; only migrations will be written.")
    return result


# ---------------------------------------------------------------------------
# Aggregate entry points
# ---------------------------------------------------------------------------


def validate_models(models: Sequence[ModelSchema]) -> ValidationResult:
    """Run every model-level validator and merge the results."""
    result: ValidationResult = ValidationResult()
    validators: List[Callable[[Sequence[ModelSchema]], ValidationResult]] = [
        validate_model_names,
        validate_field_names,
        validate_relationships,
        validate_join_models,
        validate_sorting,
        validate_indexes,
    ]
    for validator_fn in validators:
        logger.debug("Running validator: %s", validator_fn.__name__)
        result.merge(validator_fn(models))
    return result


def validate_full(models: Sequence[ModelSchema], config: GenerationConfig) -> ValidationResult:
    """
    Master validation entry point, called by the driver and the CLI before
    any SQL is generated.
    """
    logger.info("Starting full validation - %d model(s).", len(models))
    result: ValidationResult = validate_models(models)
    result.merge(validate_generation_config(config))

    if result.has_errors:
        logger.error("Validation FAILED with %d error(s).", len(result.errors))
    else:
        logger.info("Validation PASSED. %s", result.summary())
    return result


__all__: List[str] = [
    "ValidationIssue",
    "ValidationResult",
    "validate_model_names",
    "validate_field_names",
    "validate_relationships",
    "validate_join_models",
    "validate_sorting",
    "validate_indexes",
    "validate_generation_config",
    "validate_models",
    "validate_full",
]

logger.debug("querygen.validators loaded - %d public symbols.", len(__all__))
