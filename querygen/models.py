# File: querygen/models.py
"""
NexaFlow QueryGen - Core Data Models
=====================================
Pydantic V2 models describing declared models (tables), their fields and
relationships, and the generation configuration.  A ``ModelSchema`` is
built once by ``querygen.loader`` and is read-only for the rest of the run;
every query generator is a pure function of it.

Structural invariants are enforced here at construction time:

    - field names are unique and every SQL identifier is a plain
      lower-case identifier (identifiers are the only text spliced into
      SQL; values always travel as bindings);
    - a model is global XOR tenant-scoped, and tenant-scoped models carry
      an ``organization_id`` field;
    - a join model has exactly two parent-id fields, each named as its
      column, and no ``id`` field;
    - every other model has exactly one ``id`` field.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("querygen.models")

IDENTIFIER_RE: re.Pattern[str] = re.compile(r"^[a-z_][a-z0-9_]*$")

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SqlType(str, Enum):
    """PostgreSQL column types supported in model definitions."""

    TEXT = "text"
    INTEGER = "integer"
    BIGINT = "bigint"
    FLOAT = "float"
    NUMERIC = "numeric"
    BOOLEAN = "boolean"
    UUID = "uuid"
    TIMESTAMP = "timestamp"
    DATE = "date"
    JSONB = "jsonb"
    TEXT_ARRAY = "text[]"
    UUID_ARRAY = "uuid[]"


class FetchType(str, Enum):
    """How a child relation is populated on read."""

    NONE = "none"
    ID = "id"
    DATA = "data"


class Sortable(str, Enum):
    """Which sort directions a list query accepts for a field."""

    NONE = "none"
    DEFAULT_ASCENDING = "default_ascending"
    DEFAULT_DESCENDING = "default_descending"
    ASCENDING_ONLY = "ascending_only"
    DESCENDING_ONLY = "descending_only"


class OperationKind(str, Enum):
    """Closed set of query families a model can generate."""

    INSERT = "insert"
    UPDATE = "update"
    UPDATE_ONE_WITH_PARENT = "update_one_with_parent"
    SELECT_ONE = "select_one"
    SELECT_ONE_POPULATED = "select_one_populated"
    DELETE = "delete"
    DELETE_CHILDREN = "delete_children"
    LIST = "list"
    LIST_POPULATED = "list_populated"
    UPSERT = "upsert"
    LOOKUP_OBJECT_PERMISSIONS = "lookup_object_permissions"


# ---------------------------------------------------------------------------
# Shared model configuration
# ---------------------------------------------------------------------------

_SHARED_CONFIG: ConfigDict = ConfigDict(
    strict=False,
    populate_by_name=True,
    use_enum_values=True,
    frozen=True,
    extra="forbid",
    protected_namespaces=(),
)


def _check_identifier(value: str, what: str) -> str:
    if not IDENTIFIER_RE.match(value):
        raise ValueError(
            f"{what} '{value}' is not a valid SQL identifier "
            f"(expected {IDENTIFIER_RE.pattern})."
        )
    return value


# ---------------------------------------------------------------------------
# Fields
# ---------------------------------------------------------------------------


class ModelField(BaseModel):
    """
    One column of a model.

    ``writable`` fields may be set by any caller with write permission;
    ``owner_write`` fields by owners.  Owners can always do at least what
    writers can, so ``owner_writable`` is the union of both flags.
    """

    model_config = _SHARED_CONFIG

    name: str = Field(..., min_length=1, description="Logical field name (binding name).")
    sql_name: str = Field(default="", description="Column name; defaults to name.")
    sql_full_name: str = Field(
        default="", description="Table-qualified column name, e.g. 'posts.title'."
    )
    sql_type: SqlType = Field(default=SqlType.TEXT, description="Column type.")
    nullable: bool = Field(default=False, description="Column allows NULL.")
    unique: bool = Field(default=False, description="Column has a UNIQUE constraint.")
    indexed: bool = Field(default=False, description="Create a single-column index.")
    owner_write: bool = Field(default=False, description="Owners may set this field.")
    writable: bool = Field(default=False, description="Writers may set this field.")
    never_read: bool = Field(default=False, description="Never returned by reads.")
    omit_in_list: bool = Field(default=False, description="Excluded from list queries.")
    sortable: Sortable = Field(default=Sortable.NONE, description="List sort policy.")
    default_sql: Optional[str] = Field(
        default=None, alias="default", description="SQL default expression."
    )
    references: Optional[str] = Field(
        default=None,
        description="Qualified table ('schema.table') whose id this column references.",
    )

    @model_validator(mode="before")
    @classmethod
    def _default_sql_name(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("sql_name") and data.get("name"):
            data = dict(data)
            data["sql_name"] = data["name"]
        return data

    @field_validator("sql_name")
    @classmethod
    def _valid_sql_name(cls, v: str) -> str:
        return _check_identifier(v, "Column name")

    @computed_field  # type: ignore[misc]
    @property
    def owner_writable(self) -> bool:
        return self.owner_write or self.writable

    def qualified(self, alias: str) -> str:
        """Column name prefixed with a table alias, e.g. ``tb.title``."""
        return f"{alias}.{self.sql_name}"

    def __repr__(self) -> str:
        return f"<ModelField {self.name} {self.sql_type}>"


# ---------------------------------------------------------------------------
# Relationships
# ---------------------------------------------------------------------------


class JoinInfo(BaseModel):
    """Marks a model as a many-to-many join table keyed by two parent ids."""

    model_config = _SHARED_CONFIG

    model_ids: Tuple[str, str] = Field(
        ..., description="The two parent-id field names, in binding order."
    )
    models: Optional[Tuple[str, str]] = Field(
        default=None, description="Names of the two joined models."
    )

    @field_validator("model_ids")
    @classmethod
    def _distinct_ids(cls, v: Tuple[str, str]) -> Tuple[str, str]:
        if v[0] == v[1]:
            raise ValueError(f"Join model ids must be distinct, got {v[0]!r} twice.")
        return v


class BelongsTo(BaseModel):
    """A parent reference through a foreign-key column on this model."""

    model_config = _SHARED_CONFIG

    model: str = Field(..., min_length=1, description="Parent model name.")
    model_snake_name: str = Field(..., description="snake_case parent name.")
    field_name: str = Field(..., description="Logical name of the foreign-key field.")
    sql_name: str = Field(..., description="Foreign-key column name.")
    globally_unique: bool = Field(
        default=False,
        description="At most one row per parent, across the whole table.",
    )

    @field_validator("sql_name", "model_snake_name")
    @classmethod
    def _valid_identifier(cls, v: str) -> str:
        return _check_identifier(v, "Identifier")


class ThroughInfo(BaseModel):
    """The join table a many-to-many child relation goes through."""

    model_config = _SHARED_CONFIG

    model: str = Field(..., description="Join model name.")
    schema_name: str
    table: str
    to_id_field: str = Field(..., description="Join-table column pointing at the child.")

    @field_validator("schema_name", "table", "to_id_field")
    @classmethod
    def _valid_identifier(cls, v: str) -> str:
        return _check_identifier(v, "Identifier")


class ChildRelation(BaseModel):
    """A one-to-many (or one-to-one) relation eligible for nested reads."""

    model_config = _SHARED_CONFIG

    model: str = Field(..., description="Child model name.")
    schema_name: str
    table: str
    parent_field: str = Field(
        ..., description="Column (on the child, or on the join table) matching the parent id."
    )
    many: bool = Field(default=True, description="Aggregate into an array.")
    populate_on_get: FetchType = Field(default=FetchType.NONE)
    populate_on_list: FetchType = Field(default=FetchType.NONE)
    get_field_name: str = Field(..., description="Output column name in select_one.")
    list_field_name: str = Field(..., description="Output column name in list.")
    fields: List[ModelField] = Field(
        default_factory=list, description="Child fields included when fetching data."
    )
    through: Optional[ThroughInfo] = None

    @field_validator("schema_name", "table", "parent_field")
    @classmethod
    def _valid_identifier(cls, v: str) -> str:
        return _check_identifier(v, "Identifier")


class ReferencePopulation(BaseModel):
    """A foreign reference resolved into a nested JSON object on read."""

    model_config = _SHARED_CONFIG

    name: str = Field(..., description="Short name; the SQL alias is ref_<name>.")
    full_name: str = Field(..., description="Output column name.")
    model: str = Field(..., description="Referenced model name.")
    schema_name: str
    table: str
    id_field: str = Field(..., description="Column on this model holding the referenced id.")
    fields: List[ModelField] = Field(default_factory=list)
    on_get: bool = False
    on_list: bool = False
    is_global: bool = Field(default=False, description="Referenced model is global.")

    @field_validator("name", "schema_name", "table", "id_field")
    @classmethod
    def _valid_identifier(cls, v: str) -> str:
        return _check_identifier(v, "Identifier")

    @computed_field  # type: ignore[misc]
    @property
    def alias(self) -> str:
        return f"ref_{self.name}"


# ---------------------------------------------------------------------------
# Model schema
# ---------------------------------------------------------------------------


class ModelSchema(BaseModel):
    """
    Complete, validated description of one declared model.

    Instances are frozen; the loader builds them once per run.
    """

    model_config = _SHARED_CONFIG

    name: str = Field(..., min_length=1, description="PascalCase model name.")
    module_name: str = Field(..., description="snake_case name; drives output paths.")
    schema_name: str = Field(default="public", description="Database schema.")
    table: str = Field(..., description="Table name.")
    is_global: bool = Field(
        default=False, alias="global", description="Rows are not partitioned by organization."
    )
    fields: List[ModelField] = Field(..., min_length=1)
    join: Optional[JoinInfo] = None
    belongs_to: List[BelongsTo] = Field(default_factory=list)
    children: List[ChildRelation] = Field(default_factory=list)
    reference_populations: List[ReferencePopulation] = Field(default_factory=list)

    auth_schema: str = Field(default="auth", description="Schema holding permission tables.")
    owner_permission: str = Field(default="", description="Defaults to '<Name>::owner'.")
    write_permission: str = Field(default="", description="Defaults to '<Name>::write'.")
    read_permission: str = Field(default="", description="Defaults to '<Name>::read'.")
    auth_check_in_query: bool = Field(
        default=False, description="Embed the permission check in delete queries."
    )
    pagination_disabled: bool = Field(default=False)
    default_sort: Optional[str] = Field(
        default=None, description="Order used when list callers give none, e.g. '-updated_at'."
    )
    indexes: List[List[str]] = Field(
        default_factory=list, description="Extra (possibly composite) indexes by column."
    )

    # -- Normalisation ------------------------------------------------------

    @model_validator(mode="before")
    @classmethod
    def _fill_derived_names(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        name: str = data.get("name", "")
        for perm in ("owner", "write", "read"):
            key: str = f"{perm}_permission"
            if not data.get(key) and name:
                data[key] = f"{name}::{perm}"

        table: Optional[str] = data.get("table")
        raw_fields: Any = data.get("fields")
        if table and isinstance(raw_fields, list):
            filled: List[Any] = []
            for f in raw_fields:
                if isinstance(f, ModelField):
                    if not f.sql_full_name:
                        f = f.model_copy(update={"sql_full_name": f"{table}.{f.sql_name}"})
                elif isinstance(f, dict) and not f.get("sql_full_name"):
                    f = dict(f)
                    f["sql_full_name"] = f"{table}.{f.get('sql_name') or f.get('name')}"
                filled.append(f)
            data["fields"] = filled
        return data

    # -- Invariants ---------------------------------------------------------

    @field_validator("schema_name", "table", "module_name", "auth_schema")
    @classmethod
    def _valid_identifier(cls, v: str) -> str:
        return _check_identifier(v, "Identifier")

    @model_validator(mode="after")
    def _validate_unique_fields(self) -> "ModelSchema":
        names: List[str] = [f.name for f in self.fields]
        columns: List[str] = [f.sql_name for f in self.fields]
        for label, values in (("field", names), ("column", columns)):
            if len(values) != len(set(values)):
                dupes: List[str] = sorted({v for v in values if values.count(v) > 1})
                raise ValueError(f"Model '{self.name}' has duplicate {label} names: {dupes}")
        return self

    @model_validator(mode="after")
    def _validate_identity(self) -> "ModelSchema":
        names = {f.name for f in self.fields}
        if self.join is not None:
            missing: List[str] = [i for i in self.join.model_ids if i not in names]
            if missing:
                raise ValueError(
                    f"Join model '{self.name}' is missing parent-id field(s) {missing}."
                )
            renamed: List[str] = [
                f.name for f in self.fields if f.name in self.join.model_ids and f.sql_name != f.name
            ]
            if renamed:
                raise ValueError(
                    f"Join model '{self.name}': parent-id field(s) {renamed} must use "
                    f"their field name as the column name."
                )
            if "id" in names:
                raise ValueError(f"Join model '{self.name}' must not have an 'id' field.")
            if self.children:
                raise ValueError(f"Join model '{self.name}' cannot declare children.")
        else:
            id_count: int = sum(1 for f in self.fields if f.name == "id")
            if id_count != 1:
                raise ValueError(f"Model '{self.name}' must have exactly one 'id' field.")
        return self

    @model_validator(mode="after")
    def _validate_tenancy(self) -> "ModelSchema":
        has_org: bool = any(f.name == "organization_id" for f in self.fields)
        if self.is_global and has_org:
            raise ValueError(
                f"Global model '{self.name}' must not have an 'organization_id' field."
            )
        if not self.is_global and not has_org:
            raise ValueError(
                f"Tenant-scoped model '{self.name}' requires an 'organization_id' field."
            )
        return self

    # -- Derived helpers ----------------------------------------------------

    @computed_field  # type: ignore[misc]
    @property
    def full_table(self) -> str:
        return f"{self.schema_name}.{self.table}"

    @property
    def is_join(self) -> bool:
        return self.join is not None

    def get_field(self, name: str) -> Optional[ModelField]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    @property
    def join_id_names(self) -> Tuple[str, ...]:
        return tuple(self.join.model_ids) if self.join is not None else ()

    @property
    def readable_fields(self) -> List[ModelField]:
        return [f for f in self.fields if not f.never_read]

    @property
    def list_fields(self) -> List[ModelField]:
        return [f for f in self.fields if not f.never_read and not f.omit_in_list]

    @property
    def identity_field_names(self) -> Tuple[str, ...]:
        """Fields bound under canonical names, never as data fields."""
        return self.join_id_names + ("id", "organization_id")

    @property
    def writable_fields(self) -> List[ModelField]:
        skip = set(self.identity_field_names)
        return [f for f in self.fields if f.writable and f.name not in skip]

    @property
    def owner_writable_fields(self) -> List[ModelField]:
        """Owner-writable fields in declaration order, excluding identity columns."""
        skip = set(self.identity_field_names)
        return [f for f in self.fields if f.owner_writable and f.name not in skip]

    @property
    def sortable_fields(self) -> Dict[str, ModelField]:
        return {f.name: f for f in self.fields if f.sortable != Sortable.NONE}

    def __repr__(self) -> str:
        kind: str = "join" if self.is_join else ("global" if self.is_global else "tenant")
        return f"<ModelSchema {self.name} {self.full_table} ({kind}, {len(self.fields)} fields)>"


# ---------------------------------------------------------------------------
# Generation configuration
# ---------------------------------------------------------------------------


def _all_operations() -> List[OperationKind]:
    return list(OperationKind)


class GenerationConfig(BaseModel):
    """Settings for one generation run. Passed explicitly, never global."""

    model_config = ConfigDict(
        populate_by_name=True,
        validate_assignment=True,
        use_enum_values=True,
        extra="forbid",
    )

    project_name: str = Field(default="querygen_project", min_length=1)
    project_version: str = Field(default="0.1.0")
    output_dir: str = Field(default="./generated", description="Root output directory.")
    default_schema: str = Field(default="public", description="Schema for models without one.")
    auth_schema: str = Field(default="auth", description="Schema holding permission tables.")
    operations: List[OperationKind] = Field(
        default_factory=_all_operations, description="Query families to generate."
    )
    generate_migrations: bool = Field(default=True)
    formatter: Optional[List[str]] = Field(
        default=None,
        description="External SQL formatter command; reads stdin, writes stdout.",
    )
    auto_detect_formatter: bool = Field(
        default=False, description="Look for sleek or pg_format on PATH when no formatter is set."
    )
    max_workers: Optional[int] = Field(
        default=None, ge=1, description="Thread pool size for parallel generation."
    )
    overwrite_existing: bool = Field(
        default=True, description="Replace files already present in output_dir."
    )

    @field_validator("default_schema", "auth_schema")
    @classmethod
    def _valid_schema(cls, v: str) -> str:
        return _check_identifier(v, "Schema name")

    @field_validator("formatter")
    @classmethod
    def _non_empty_formatter(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is not None and not v:
            raise ValueError("formatter command must not be empty; omit it instead.")
        return v


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "IDENTIFIER_RE",
    "SqlType",
    "FetchType",
    "Sortable",
    "OperationKind",
    "ModelField",
    "JoinInfo",
    "BelongsTo",
    "ThroughInfo",
    "ChildRelation",
    "ReferencePopulation",
    "ModelSchema",
    "GenerationConfig",
]

logger.debug("querygen.models loaded - %d public symbols.", len(__all__))
