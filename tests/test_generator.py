"""
tests/test_generator.py
End-to-end tests for the generation pipeline and the CLI.
"""

from __future__ import annotations

import json
import pathlib
import shlex
import sys

import pytest
import yaml

from querygen.cli import (
    EXIT_FORMAT_ERROR,
    EXIT_INPUT_ERROR,
    EXIT_SUCCESS,
    EXIT_VALIDATION_ERROR,
    cli_main,
)
from querygen.exceptions import OrderByError
from querygen.exporters import MANIFEST_FILENAME
from querygen.generator import (
    QueryGenerator,
    drop_query_entries,
    generate_queries,
    plan_units,
    render_migration_files,
    render_query_files,
)
from querygen.migrations import render_migrations
from querygen.models import OperationKind
from querygen.queries import create_model_queries

FAILING_FORMATTER = [sys.executable, "-c", "import sys; sys.exit(1)"]


# ---------------------------------------------------------------------------
# Parallel generation
# ---------------------------------------------------------------------------


class TestGenerateQueries:
    def test_matches_sequential_generation(self, models):
        by_module = generate_queries(models, max_workers=4)
        assert list(by_module) == [m.module_name for m in models]
        for model in models:
            expected = create_model_queries(model)
            assert by_module[model.module_name] == expected

    def test_single_worker(self, models):
        assert generate_queries(models, max_workers=1) == generate_queries(models)

    def test_plan_skips_lookup_for_join_models(self, models):
        units = plan_units(models, [OperationKind.LOOKUP_OBJECT_PERMISSIONS])
        assert [m.name for m, _ in units] == ["Team", "Post", "Comment", "Tag"]

    def test_first_failure_propagates(self, post, comment):
        broken = post.model_copy(update={"default_sort": "body"})
        with pytest.raises(OrderByError):
            generate_queries([comment, broken], max_workers=2)


class TestRendering:
    def test_query_files(self, comment):
        files = render_query_files("comment", create_model_queries(comment))
        assert files["comment/insert.sql"].endswith(
            "RETURNING comments.id, comments.organization_id, comments.updated_at, "
            "comments.created_at, comments.body, comments.post_id\n"
        )
        entries = json.loads(files["comment/queries.json"])
        insert = entries[0]
        assert insert == {
            "operation_name": "insert",
            "bindings": ["id", "organization_id", "body", "post_id"],
            "field_bindings": ["body", "post_id"],
            "file": "insert.sql",
        }

    def test_dropped_file_is_pruned_from_query_manifest(self, comment):
        files = render_query_files("comment", create_model_queries(comment))
        del files["comment/insert.sql"]
        drop_query_entries(files, ["comment/insert.sql", "migrations/0001_team.up.sql"])
        entries = json.loads(files["comment/queries.json"])
        assert entries
        assert "insert.sql" not in [e["file"] for e in entries]
        assert all(f"comment/{e['file']}" in files for e in entries)

    def test_migration_files_are_numbered(self, models):
        files = render_migration_files(render_migrations(models))
        assert sorted(files) == [
            "migrations/0001_team.down.sql",
            "migrations/0001_team.up.sql",
            "migrations/0002_tag.down.sql",
            "migrations/0002_tag.up.sql",
            "migrations/0003_post.down.sql",
            "migrations/0003_post.up.sql",
            "migrations/0004_comment.down.sql",
            "migrations/0004_comment.up.sql",
            "migrations/0005_post_tag.down.sql",
            "migrations/0005_post_tag.up.sql",
        ]


# ---------------------------------------------------------------------------
# QueryGenerator
# ---------------------------------------------------------------------------


class TestQueryGenerator:
    def test_generate_from_file(self, definition_yaml_path: pathlib.Path, tmp_path: pathlib.Path):
        report = QueryGenerator().generate_from_file(definition_yaml_path)
        out = tmp_path / "out"

        assert report.success, report.summary()
        assert report.project_name == "blog"
        assert report.total_models == 5
        assert report.total_queries > 0
        assert (out / "post" / "select_one_populated.sql").exists()
        assert (out / "post_tag" / "upsert_single_child_of_tag.sql").exists()
        assert not (out / "post_tag" / "lookup_object_permissions.sql").exists()
        assert (out / "migrations" / "0001_team.up.sql").exists()
        assert (out / MANIFEST_FILENAME).exists()

        sql = (out / "comment" / "update.sql").read_text(encoding="utf-8")
        assert sql == (
            "UPDATE app.comments SET post_id = $2, updated_at = NOW() "
            "WHERE id = $1 AND organization_id = $3\n"
        )
        assert [s.step_name for s in report.step_metrics] == [
            "Load Definition",
            "Parse Models",
            "Validate Models",
            "Generate Queries",
            "Export to Filesystem",
        ]
        assert report.manifest.total_files == report.total_files

    def test_explicit_output_dir_and_operations(self, models, config, tmp_path: pathlib.Path):
        cfg = config.model_copy(update={"operations": ["insert"], "generate_migrations": False})
        report = QueryGenerator().generate(models, cfg, tmp_path / "custom")
        assert report.success
        assert sorted(p.name for p in (tmp_path / "custom" / "team").iterdir()) == [
            "insert.sql",
            "queries.json",
        ]
        assert not (tmp_path / "custom" / "migrations").exists()

    def test_dry_run_writes_nothing(self, definition_yaml_path: pathlib.Path, tmp_path: pathlib.Path):
        report = QueryGenerator().generate_from_file(definition_yaml_path, dry_run=True)
        assert report.success
        assert report.dry_run
        assert "post/list.sql" in report.files
        assert report.manifest is None
        assert not (tmp_path / "out").exists()

    def test_missing_definition(self, tmp_path: pathlib.Path):
        report = QueryGenerator().generate_from_file(tmp_path / "missing.yaml")
        assert not report.success
        assert report.generation_errors
        assert report.step_metrics[0].step_name == "Load Definition"

    def test_bad_definition_stops_before_generation(self, tmp_path: pathlib.Path):
        path = tmp_path / "bad.yaml"
        path.write_text(
            yaml.dump({"models": [{"name": "Note", "belongs_to": ["Ghost"]}]}), encoding="utf-8"
        )
        report = QueryGenerator().generate_from_file(path, tmp_path / "out")
        assert not report.success
        assert "Ghost" in report.generation_errors[0]
        assert not (tmp_path / "out").exists()

    def test_validation_errors_stop_the_run(self, definition_dict, tmp_path: pathlib.Path):
        definition_dict["models"][3]["indexes"] = [["colour"]]
        path = tmp_path / "models.yaml"
        path.write_text(yaml.dump(definition_dict), encoding="utf-8")
        report = QueryGenerator().generate_from_file(path, tmp_path / "out")
        assert not report.success
        assert any("INDEX_UNKNOWN_COLUMN" in e for e in report.validation_errors)
        assert report.total_queries == 0
        assert not (tmp_path / "out").exists()

    def test_join_model_parent_is_reported_not_raised(
        self, definition_dict, tmp_path: pathlib.Path
    ):
        definition_dict["models"].append({"name": "Note", "belongs_to": ["PostTag"]})
        path = tmp_path / "models.yaml"
        path.write_text(yaml.dump(definition_dict), encoding="utf-8")
        report = QueryGenerator().generate_from_file(path, tmp_path / "out", dry_run=True)
        assert not report.success
        assert any("PARENT_IS_JOIN" in e for e in report.validation_errors)
        assert report.files == {}

    def test_fail_on_warnings(self, definition_dict, tmp_path: pathlib.Path):
        definition_dict["models"][0]["references"] = [{"model": "Tag", "field": "tag_id"}]
        path = tmp_path / "models.yaml"
        path.write_text(yaml.dump(definition_dict), encoding="utf-8")

        lenient = QueryGenerator().generate_from_file(path, tmp_path / "a", dry_run=True)
        assert lenient.success
        assert lenient.validation_warnings

        strict = QueryGenerator(fail_on_warnings=True).generate_from_file(
            path, tmp_path / "b", dry_run=True
        )
        assert not strict.success
        assert strict.validation_errors

    def test_formatter_failure_drops_only_sql_files(self, definition_yaml_path: pathlib.Path):
        report = QueryGenerator().generate_from_file(
            definition_yaml_path,
            config_overrides={"formatter": FAILING_FORMATTER},
            dry_run=True,
        )
        assert not report.success
        assert report.format_errors
        assert not any(path.endswith(".sql") for path in report.files)
        assert json.loads(report.files["post/queries.json"]) == []

    def test_summary(self, models, config, tmp_path: pathlib.Path):
        report = QueryGenerator().generate(models, config, tmp_path, dry_run=True)
        summary = report.summary()
        assert "SUCCESS (dry run)" in summary
        assert "Generate Queries" in summary


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


class TestCli:
    def _run(self, *argv: str) -> int:
        with pytest.raises(SystemExit) as exc_info:
            cli_main(list(argv))
        return exc_info.value.code

    def test_generate(self, definition_yaml_path: pathlib.Path, tmp_path: pathlib.Path):
        code = self._run("-d", str(definition_yaml_path), "-o", str(tmp_path / "cli"), "-q")
        assert code == EXIT_SUCCESS
        assert (tmp_path / "cli" / "tag" / "list.sql").exists()

    def test_validate_only(self, definition_yaml_path: pathlib.Path, capsys):
        code = self._run("-d", str(definition_yaml_path), "--validate-only", "-q")
        assert code == EXIT_SUCCESS
        assert "Valid:    Yes" in capsys.readouterr().out

    def test_validation_failure(self, definition_dict, tmp_path: pathlib.Path):
        definition_dict["models"][3]["default_sort"] = "-label"
        path = tmp_path / "models.yaml"
        path.write_text(yaml.dump(definition_dict), encoding="utf-8")
        assert self._run("-d", str(path), "--validate-only", "-q") == EXIT_VALIDATION_ERROR
        assert self._run("-d", str(path), "--dry-run", "-q") == EXIT_VALIDATION_ERROR

    def test_missing_definition(self, tmp_path: pathlib.Path):
        assert self._run("-d", str(tmp_path / "nope.yaml"), "-q") == EXIT_INPUT_ERROR

    def test_dry_run_lists_files(self, definition_yaml_path: pathlib.Path, capsys):
        code = self._run(
            "-d", str(definition_yaml_path), "--dry-run", "--operation", "list", "--no-migrations", "-q"
        )
        assert code == EXIT_SUCCESS
        out = capsys.readouterr().out
        assert "post/list.sql" in out
        assert "post/insert.sql" not in out
        assert "migrations/" not in out

    def test_formatter_failure_exit_code(self, definition_yaml_path: pathlib.Path):
        formatter = shlex.join(FAILING_FORMATTER)
        code = self._run("-d", str(definition_yaml_path), "--dry-run", "--formatter", formatter, "-q")
        assert code == EXIT_FORMAT_ERROR
