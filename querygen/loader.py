# File: querygen/loader.py
"""
NexaFlow QueryGen - Definition Loader
======================================
Turns a YAML/JSON definition file into validated ``ModelSchema`` objects
and a ``GenerationConfig``.

File layout::

    config:            # optional, GenerationConfig keys
      default_schema: app
    models:
      - name: Post
        fields:
          - {name: title, type: text, writable: true, sortable: default_ascending}
        has:
          - {model: Comment, populate_on_get: data}
      - name: Comment
        belongs_to: [Post]

Resolution runs in passes, because relations point at models that may be
declared later in the file:

    1. Drafts: names, tables, standard fields and user fields.
    2. Parent links: ``belongs_to`` and ``joins`` add foreign-key fields,
       ``references`` add their id field when it is not declared.
    3. Materialise every draft's fields as ``ModelField`` objects.
    4. Relations: ``has`` becomes ``ChildRelation``, ``references``
       becomes ``ReferencePopulation``.
    5. Build the frozen ``ModelSchema`` objects.

Any problem raises ``ConfigurationError`` carrying the source path; a bad
definition aborts the run before any SQL is generated.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml
from pydantic import ValidationError

from querygen.exceptions import ConfigurationError, ErrorCode
from querygen.models import (
    BelongsTo,
    ChildRelation,
    FetchType,
    GenerationConfig,
    JoinInfo,
    ModelField,
    ModelSchema,
    ReferencePopulation,
    Sortable,
    SqlType,
    ThroughInfo,
)
from querygen.utils import to_plural, to_snake_case

logger: logging.Logger = logging.getLogger("querygen.loader")

STANDARD_FIELD_NAMES: Tuple[str, ...] = ("id", "organization_id", "updated_at", "created_at")
DEFAULT_SORT: str = "-updated_at"

_FIELD_KEY_ALIASES: Dict[str, str] = {"type": "sql_type", "column": "sql_name"}

_MODEL_KEYS = frozenset(
    {
        "name",
        "table",
        "schema",
        "global",
        "fields",
        "joins",
        "belongs_to",
        "has",
        "references",
        "default_sort",
        "pagination",
        "auth_check_in_query",
        "indexes",
        "owner_permission",
        "write_permission",
        "read_permission",
    }
)


# ---------------------------------------------------------------------------
# File loading
# ---------------------------------------------------------------------------


def _load_json_file(path: Path) -> Dict[str, Any]:
    try:
        data: Any = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid JSON: {exc}", str(path)) from exc
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Expected a JSON object at top level, got {type(data).__name__}.", str(path)
        )
    return data


def _load_yaml_file(path: Path) -> Dict[str, Any]:
    try:
        data: Any = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML: {exc}", str(path)) from exc
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Expected a YAML mapping at top level, got {type(data).__name__}.", str(path)
        )
    return data


def load_definition_file(path: Path) -> Dict[str, Any]:
    """
    Read a definition file, dispatching on its extension.

    Unknown extensions are tried as JSON first, then YAML.

    Raises:
        ConfigurationError: missing file or unparseable content.
    """
    if not path.exists():
        raise ConfigurationError(
            "Definition file not found.", str(path), error_code=ErrorCode.CONFIG_MISSING
        )
    if not path.is_file():
        raise ConfigurationError("Definition path is not a file.", str(path))

    suffix: str = path.suffix.lower()
    if suffix in (".yaml", ".yml"):
        return _load_yaml_file(path)
    if suffix == ".json":
        return _load_json_file(path)

    logger.info("Unknown extension '%s' - trying JSON then YAML.", suffix)
    try:
        return _load_json_file(path)
    except ConfigurationError:
        return _load_yaml_file(path)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def parse_config(
    raw: Mapping[str, Any],
    overrides: Optional[Mapping[str, Any]] = None,
    source_path: Optional[str] = None,
) -> GenerationConfig:
    """``GenerationConfig`` from the ``config`` key, with CLI *overrides* applied on top."""
    config_data: Any = raw.get("config") or {}
    if not isinstance(config_data, dict):
        raise ConfigurationError("'config' must be a mapping.", source_path)
    if "config" not in raw:
        logger.info("No config section found - using defaults.")

    merged: Dict[str, Any] = dict(config_data)
    for key, value in (overrides or {}).items():
        if value is not None:
            merged[key] = value

    try:
        return GenerationConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigurationError(f"Config validation failed: {exc}", source_path) from exc


# ---------------------------------------------------------------------------
# Drafts
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class _ModelDraft:
    """Mutable per-model state while relations are being resolved."""

    name: str
    snake: str
    schema_name: str
    table: str
    is_global: bool
    raw: Dict[str, Any]
    field_dicts: List[Dict[str, Any]] = field(default_factory=list)
    fields: List[ModelField] = field(default_factory=list)
    join: Optional[JoinInfo] = None
    belongs_to: List[BelongsTo] = field(default_factory=list)
    children: List[ChildRelation] = field(default_factory=list)
    references: List[ReferencePopulation] = field(default_factory=list)

    @property
    def full_table(self) -> str:
        return f"{self.schema_name}.{self.table}"

    def has_field(self, name: str) -> bool:
        return any(f["name"] == name for f in self.field_dicts)

    def readable_fields(self) -> List[ModelField]:
        return [f for f in self.fields if not f.never_read]


def _standard_fields(is_global: bool, is_join: bool) -> List[Dict[str, Any]]:
    fields: List[Dict[str, Any]] = []
    if not is_join:
        fields.append({"name": "id", "sql_type": SqlType.UUID.value})
    if not is_global:
        fields.append(
            {"name": "organization_id", "sql_type": SqlType.UUID.value, "indexed": True}
        )
    fields.append(
        {
            "name": "updated_at",
            "sql_type": SqlType.TIMESTAMP.value,
            "default": "now()",
            "sortable": Sortable.DEFAULT_DESCENDING.value,
        }
    )
    fields.append(
        {
            "name": "created_at",
            "sql_type": SqlType.TIMESTAMP.value,
            "default": "now()",
            "sortable": Sortable.DEFAULT_DESCENDING.value,
        }
    )
    return fields


def _user_field(raw: Any, model_name: str, source_path: Optional[str]) -> Dict[str, Any]:
    if isinstance(raw, str):
        raw = {"name": raw}
    if not isinstance(raw, dict) or not raw.get("name"):
        raise ConfigurationError(
            f"Model '{model_name}': every field needs a 'name'.", source_path
        )
    if raw["name"] in STANDARD_FIELD_NAMES:
        raise ConfigurationError(
            f"Model '{model_name}': '{raw['name']}' is a standard field and is added "
            f"automatically.",
            source_path,
        )
    return {_FIELD_KEY_ALIASES.get(k, k): v for k, v in raw.items()}


def _new_draft(raw: Any, config: GenerationConfig, source_path: Optional[str]) -> _ModelDraft:
    if not isinstance(raw, dict) or not raw.get("name"):
        raise ConfigurationError("Every model needs a 'name'.", source_path)

    name: str = str(raw["name"])
    unknown: List[str] = sorted(set(raw) - _MODEL_KEYS)
    if unknown:
        raise ConfigurationError(f"Model '{name}': unknown keys {unknown}.", source_path)

    snake: str = to_snake_case(name)
    is_global: bool = bool(raw.get("global", False))
    is_join: bool = "joins" in raw
    draft = _ModelDraft(
        name=name,
        snake=snake,
        schema_name=raw.get("schema") or config.default_schema,
        table=raw.get("table") or to_plural(snake),
        is_global=is_global,
        raw=raw,
    )
    draft.field_dicts.extend(_standard_fields(is_global, is_join))
    for f in raw.get("fields") or []:
        draft.field_dicts.append(_user_field(f, name, source_path))
    return draft


def _lookup(
    drafts: Mapping[str, _ModelDraft], name: str, owner: str, what: str, source_path: Optional[str]
) -> _ModelDraft:
    try:
        return drafts[name]
    except KeyError:
        raise ConfigurationError(
            f"Model '{owner}': {what} refers to unknown model '{name}'.", source_path
        ) from None


def _fk_field(parent: _ModelDraft) -> Dict[str, Any]:
    return {
        "name": f"{parent.snake}_id",
        "sql_type": SqlType.UUID.value,
        "writable": True,
        "indexed": True,
        "references": parent.full_table,
    }


# ---------------------------------------------------------------------------
# Pass 2: parent links
# ---------------------------------------------------------------------------


def _link_parents(
    draft: _ModelDraft, drafts: Mapping[str, _ModelDraft], source_path: Optional[str]
) -> None:
    joins: Any = draft.raw.get("joins")
    if joins is not None:
        if not isinstance(joins, list) or len(joins) != 2:
            raise ConfigurationError(
                f"Join model '{draft.name}': 'joins' must list exactly two models.", source_path
            )
        parents: List[_ModelDraft] = [
            _lookup(drafts, str(j), draft.name, "joins", source_path) for j in joins
        ]
        ids: List[str] = []
        for parent in parents:
            fk: Dict[str, Any] = _fk_field(parent)
            draft.field_dicts.insert(len(ids), fk)
            ids.append(fk["name"])
            draft.belongs_to.append(
                BelongsTo(
                    model=parent.name,
                    model_snake_name=parent.snake,
                    field_name=fk["name"],
                    sql_name=fk["name"],
                )
            )
        try:
            draft.join = JoinInfo(model_ids=(ids[0], ids[1]), models=(parents[0].name, parents[1].name))
        except ValidationError as exc:
            raise ConfigurationError(f"Join model '{draft.name}': {exc}", source_path) from exc

    for entry in draft.raw.get("belongs_to") or []:
        rel: Dict[str, Any] = {"model": entry} if isinstance(entry, str) else dict(entry)
        parent = _lookup(drafts, str(rel.get("model")), draft.name, "belongs_to", source_path)
        fk = _fk_field(parent)
        if rel.get("field"):
            fk["name"] = rel["field"]
        if draft.has_field(fk["name"]):
            raise ConfigurationError(
                f"Model '{draft.name}': belongs_to field '{fk['name']}' is already declared.",
                source_path,
            )
        draft.field_dicts.append(fk)
        draft.belongs_to.append(
            BelongsTo(
                model=parent.name,
                model_snake_name=parent.snake,
                field_name=fk["name"],
                sql_name=fk["name"],
                globally_unique=bool(rel.get("globally_unique", False)),
            )
        )

    for entry in draft.raw.get("references") or []:
        if not isinstance(entry, dict):
            raise ConfigurationError(
                f"Model '{draft.name}': each reference must be a mapping with a 'model'.",
                source_path,
            )
        target = _lookup(drafts, str(entry.get("model")), draft.name, "references", source_path)
        id_field: str = entry.get("field") or f"{target.snake}_id"
        if not draft.has_field(id_field):
            draft.field_dicts.append(
                {
                    "name": id_field,
                    "sql_type": SqlType.UUID.value,
                    "nullable": True,
                    "writable": True,
                    "references": target.full_table,
                }
            )

    # Plain fields may name a model in 'references'; resolve to its table.
    for f in draft.field_dicts:
        ref: Optional[str] = f.get("references")
        if ref and "." not in ref:
            f["references"] = _lookup(
                drafts, ref, draft.name, f"field '{f['name']}'", source_path
            ).full_table


# ---------------------------------------------------------------------------
# Pass 3: materialise fields
# ---------------------------------------------------------------------------


def _materialise_fields(draft: _ModelDraft, source_path: Optional[str]) -> None:
    fields: List[ModelField] = []
    for raw in draft.field_dicts:
        data: Dict[str, Any] = dict(raw)
        data.setdefault("sql_name", data["name"])
        data["sql_full_name"] = f"{draft.table}.{data['sql_name']}"
        try:
            fields.append(ModelField.model_validate(data))
        except ValidationError as exc:
            raise ConfigurationError(
                f"Model '{draft.name}', field '{data['name']}': {exc}", source_path
            ) from exc
    draft.fields = fields


# ---------------------------------------------------------------------------
# Pass 4: relations
# ---------------------------------------------------------------------------


def _child_output_name(child: _ModelDraft, fetch: FetchType, many: bool) -> str:
    if fetch == FetchType.ID:
        return f"{child.snake}_ids" if many else f"{child.snake}_id"
    return to_plural(child.snake) if many else child.snake


def _parent_field_on(child: _ModelDraft, parent: _ModelDraft) -> Optional[str]:
    for b in child.belongs_to:
        if b.model == parent.name:
            return b.sql_name
    return None


def _resolve_children(
    draft: _ModelDraft, drafts: Mapping[str, _ModelDraft], source_path: Optional[str]
) -> None:
    for entry in draft.raw.get("has") or []:
        rel: Dict[str, Any] = {"model": entry} if isinstance(entry, str) else dict(entry)
        child = _lookup(drafts, str(rel.get("model")), draft.name, "has", source_path)
        many: bool = bool(rel.get("many", True))
        try:
            on_get = FetchType(rel.get("populate_on_get", FetchType.NONE.value))
            on_list = FetchType(rel.get("populate_on_list", FetchType.NONE.value))
        except ValueError as exc:
            raise ConfigurationError(
                f"Model '{draft.name}', has '{child.name}': {exc}", source_path
            ) from exc

        through: Optional[ThroughInfo] = None
        if rel.get("through"):
            join = _lookup(drafts, str(rel["through"]), draft.name, "has.through", source_path)
            from_id: Optional[str] = _parent_field_on(join, draft)
            to_id: Optional[str] = _parent_field_on(join, child)
            if join.join is None or from_id is None or to_id is None:
                raise ConfigurationError(
                    f"Model '{draft.name}': '{join.name}' is not a join model between "
                    f"'{draft.name}' and '{child.name}'.",
                    source_path,
                )
            try:
                through = ThroughInfo(
                    model=join.name,
                    schema_name=join.schema_name,
                    table=join.table,
                    to_id_field=to_id,
                )
            except ValidationError as exc:
                raise ConfigurationError(
                    f"Model '{draft.name}', through '{join.name}': {exc}", source_path
                ) from exc
            parent_field: Optional[str] = from_id
        else:
            parent_field = _parent_field_on(child, draft)
            if parent_field is None:
                raise ConfigurationError(
                    f"Model '{draft.name}' has '{child.name}', but '{child.name}' does not "
                    f"belong_to '{draft.name}'.",
                    source_path,
                )

        get_name: str = rel.get("get_field") or _child_output_name(child, on_get, many)
        list_name: str = rel.get("list_field") or _child_output_name(child, on_list, many)
        try:
            relation = ChildRelation(
                model=child.name,
                schema_name=child.schema_name,
                table=child.table,
                parent_field=parent_field,
                many=many,
                populate_on_get=on_get,
                populate_on_list=on_list,
                get_field_name=get_name,
                list_field_name=list_name,
                fields=child.readable_fields(),
                through=through,
            )
        except ValidationError as exc:
            raise ConfigurationError(
                f"Model '{draft.name}', child '{child.name}': {exc}", source_path
            ) from exc
        draft.children.append(relation)


def _resolve_references(
    draft: _ModelDraft, drafts: Mapping[str, _ModelDraft], source_path: Optional[str]
) -> None:
    for entry in draft.raw.get("references") or []:
        target = drafts[str(entry["model"])]
        id_field: str = entry.get("field") or f"{target.snake}_id"
        column: str = next(f.sql_name for f in draft.fields if f.name == id_field)
        name: str = entry.get("name") or (
            id_field[: -len("_id")] if id_field.endswith("_id") else id_field
        )

        wanted: Optional[List[str]] = entry.get("fields")
        available: List[ModelField] = target.readable_fields()
        if wanted:
            unknown: List[str] = sorted(set(wanted) - {f.name for f in available})
            if unknown:
                raise ConfigurationError(
                    f"Model '{draft.name}', reference '{name}': unknown fields {unknown} "
                    f"on '{target.name}'.",
                    source_path,
                )
            available = [f for f in available if f.name in wanted]

        try:
            reference = ReferencePopulation(
                name=name,
                full_name=entry.get("full_name") or name,
                model=target.name,
                schema_name=target.schema_name,
                table=target.table,
                id_field=column,
                fields=available,
                on_get=bool(entry.get("on_get", True)),
                on_list=bool(entry.get("on_list", False)),
                is_global=target.is_global,
            )
        except ValidationError as exc:
            raise ConfigurationError(
                f"Model '{draft.name}', reference '{name}': {exc}", source_path
            ) from exc
        draft.references.append(reference)


# ---------------------------------------------------------------------------
# Pass 5: build
# ---------------------------------------------------------------------------


def _build_schema(
    draft: _ModelDraft, config: GenerationConfig, source_path: Optional[str]
) -> ModelSchema:
    raw: Dict[str, Any] = draft.raw
    data: Dict[str, Any] = {
        "name": draft.name,
        "module_name": draft.snake,
        "schema_name": draft.schema_name,
        "table": draft.table,
        "global": draft.is_global,
        "fields": draft.fields,
        "join": draft.join,
        "belongs_to": draft.belongs_to,
        "children": draft.children,
        "reference_populations": draft.references,
        "auth_schema": config.auth_schema,
        "auth_check_in_query": bool(raw.get("auth_check_in_query", False)),
        "pagination_disabled": raw.get("pagination", True) is False,
        "default_sort": raw.get("default_sort", DEFAULT_SORT),
        "indexes": raw.get("indexes") or [],
    }
    for perm in ("owner_permission", "write_permission", "read_permission"):
        if raw.get(perm):
            data[perm] = raw[perm]
    try:
        return ModelSchema.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Model '{draft.name}': {exc}", source_path) from exc


def build_model_schemas(
    raw: Mapping[str, Any],
    config: GenerationConfig,
    source_path: Optional[str] = None,
) -> List[ModelSchema]:
    """
    Resolve the ``models`` section of a parsed definition file.

    Models come back in declaration order.

    Raises:
        ConfigurationError: any malformed model, unknown reference or
            violated ``ModelSchema`` invariant.
    """
    raw_models: Any = raw.get("models")
    if not isinstance(raw_models, list) or not raw_models:
        raise ConfigurationError(
            "Expected a non-empty 'models' list.",
            source_path,
            error_code=ErrorCode.CONFIG_MISSING,
        )

    drafts: Dict[str, _ModelDraft] = {}
    for entry in raw_models:
        draft: _ModelDraft = _new_draft(entry, config, source_path)
        if draft.name in drafts:
            raise ConfigurationError(f"Duplicate model name '{draft.name}'.", source_path)
        drafts[draft.name] = draft

    for draft in drafts.values():
        _link_parents(draft, drafts, source_path)
    for draft in drafts.values():
        _materialise_fields(draft, source_path)
    for draft in drafts.values():
        _resolve_children(draft, drafts, source_path)
        _resolve_references(draft, drafts, source_path)

    models: List[ModelSchema] = [_build_schema(d, config, source_path) for d in drafts.values()]
    logger.info("Loaded %d model(s).", len(models))
    return models


def load_project(
    path: Path,
    overrides: Optional[Mapping[str, Any]] = None,
) -> Tuple[List[ModelSchema], GenerationConfig]:
    """File to ``(models, config)`` in one call."""
    raw: Dict[str, Any] = load_definition_file(path)
    config: GenerationConfig = parse_config(raw, overrides, str(path))
    return build_model_schemas(raw, config, str(path)), config


__all__: List[str] = [
    "STANDARD_FIELD_NAMES",
    "DEFAULT_SORT",
    "load_definition_file",
    "parse_config",
    "build_model_schemas",
    "load_project",
]

logger.debug("querygen.loader loaded.")
