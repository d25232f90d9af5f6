"""
tests/conftest.py
Shared fixtures for the querygen test suite.

The reference definition is ``schema_example.yaml`` at the project root
(a small blog: Team, Post, Comment, Tag and the PostTag join model).
No mocking libraries are used; file I/O happens inside pytest's
``tmp_path``.
"""

from __future__ import annotations

import copy
import pathlib
from typing import Any, Dict, List

import pytest
import yaml

from querygen.loader import build_model_schemas, parse_config
from querygen.models import GenerationConfig, ModelSchema

# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------

ROOT_DIR: pathlib.Path = pathlib.Path(__file__).resolve().parent.parent
SCHEMA_EXAMPLE_PATH: pathlib.Path = ROOT_DIR / "schema_example.yaml"


# ---------------------------------------------------------------------------
# Raw definition fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def raw_definition() -> Dict[str, Any]:
    """Load schema_example.yaml once per session."""
    assert SCHEMA_EXAMPLE_PATH.exists(), (
        f"Reference definition not found at {SCHEMA_EXAMPLE_PATH}."
    )
    with open(SCHEMA_EXAMPLE_PATH, "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    assert isinstance(data, dict), "Top-level YAML must be a mapping."
    return data


@pytest.fixture()
def definition_dict(raw_definition: Dict[str, Any]) -> Dict[str, Any]:
    """Deep copy so each test can mutate freely."""
    return copy.deepcopy(raw_definition)


@pytest.fixture()
def definition_yaml_path(definition_dict: Dict[str, Any], tmp_path: pathlib.Path) -> pathlib.Path:
    """Write the definition to a temporary YAML file, pointing output into tmp_path."""
    definition_dict["config"]["output_dir"] = str(tmp_path / "out")
    path = tmp_path / "models.yaml"
    with open(path, "w", encoding="utf-8") as fh:
        yaml.dump(definition_dict, fh, default_flow_style=False, sort_keys=False)
    return path


@pytest.fixture()
def minimal_definition_dict() -> Dict[str, Any]:
    """Smallest useful definition: one tenant-scoped model with one field."""
    return {
        "config": {"project_name": "minimal_app", "default_schema": "app"},
        "models": [
            {
                "name": "Note",
                "fields": [{"name": "text", "type": "text", "writable": True}],
            }
        ],
    }


# ---------------------------------------------------------------------------
# Built model fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def config(raw_definition: Dict[str, Any]) -> GenerationConfig:
    return parse_config(raw_definition)


@pytest.fixture(scope="session")
def models(raw_definition: Dict[str, Any], config: GenerationConfig) -> List[ModelSchema]:
    return build_model_schemas(raw_definition, config, str(SCHEMA_EXAMPLE_PATH))


@pytest.fixture(scope="session")
def models_by_name(models: List[ModelSchema]) -> Dict[str, ModelSchema]:
    return {m.name: m for m in models}


@pytest.fixture()
def team(models_by_name: Dict[str, ModelSchema]) -> ModelSchema:
    """Global model."""
    return models_by_name["Team"]


@pytest.fixture()
def post(models_by_name: Dict[str, ModelSchema]) -> ModelSchema:
    """Tenant-scoped parent with children and a reference."""
    return models_by_name["Post"]


@pytest.fixture()
def comment(models_by_name: Dict[str, ModelSchema]) -> ModelSchema:
    """Tenant-scoped child of Post."""
    return models_by_name["Comment"]


@pytest.fixture()
def tag(models_by_name: Dict[str, ModelSchema]) -> ModelSchema:
    return models_by_name["Tag"]


@pytest.fixture()
def post_tag(models_by_name: Dict[str, ModelSchema]) -> ModelSchema:
    """Join model between Post and Tag."""
    return models_by_name["PostTag"]
