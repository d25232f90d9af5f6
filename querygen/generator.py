# File: querygen/generator.py
"""
NexaFlow QueryGen - Generation Pipeline (Driver)
=================================================
Connects every phase of a run::

    Definition file -> Models -> Validation -> Queries -> Format -> Export

Query generation fans ``(model, operation)`` units out over a thread pool.
Results are collected in submission order; the first failure stops
collection and is reported, while units already running finish normally
(the pool is shut down with ``wait=True`` and nothing is cancelled).

Output layout under ``output_dir``::

    <module>/<operation_name>.sql
    <module>/queries.json             binding order per query
    migrations/0001_<module>.up.sql
    migrations/0001_<module>.down.sql
    manifest.json

Error handling:
    - A bad definition or failed validation stops the run before any
      SQL is generated.
    - A generation failure stops the run before export; no partial
      output is written.
    - A formatter failure drops only the affected file and its
      ``queries.json`` entry.
"""

from __future__ import annotations

import json
import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from querygen.exceptions import ConfigurationError, FormatterError, QueryGenError
from querygen.exporters import ExportManifest, ExportResult, ProjectExporter
from querygen.formatter import SqlFormatter, resolve_formatter
from querygen.loader import build_model_schemas, load_definition_file, parse_config
from querygen.migrations import MigrationText, render_migrations
from querygen.models import GenerationConfig, ModelSchema, OperationKind
from querygen.queries import applicable_operations, generate_operation
from querygen.query_builder import SqlQueryContext
from querygen.utils import Timer, count_lines
from querygen.validators import ValidationResult, validate_full

logger: logging.Logger = logging.getLogger("querygen.generator")

QUERIES_MANIFEST: str = "queries.json"
MIGRATIONS_DIR: str = "migrations"


# ---------------------------------------------------------------------------
# Generation report
# ---------------------------------------------------------------------------


@dataclass(frozen=False, slots=True)
class GenerationStepMetric:
    """Timing and outcome for a single pipeline step."""

    step_name: str = ""
    success: bool = True
    elapsed_seconds: float = 0.0
    detail: str = ""


@dataclass(frozen=False, slots=True)
class GenerationReport:
    """Everything a run produced or ran into, returned by ``QueryGenerator``."""

    success: bool = False
    dry_run: bool = False
    project_name: str = ""
    output_directory: str = ""

    total_models: int = 0
    total_queries: int = 0
    total_files: int = 0
    total_bytes: int = 0
    total_lines: int = 0
    total_elapsed_seconds: float = 0.0

    step_metrics: List[GenerationStepMetric] = field(default_factory=list)
    validation_errors: List[str] = field(default_factory=list)
    validation_warnings: List[str] = field(default_factory=list)
    generation_errors: List[str] = field(default_factory=list)
    format_errors: List[str] = field(default_factory=list)
    export_errors: List[str] = field(default_factory=list)
    skipped_files: List[str] = field(default_factory=list)

    files: Dict[str, str] = field(default_factory=dict)
    manifest: Optional[ExportManifest] = None

    def add_step(self, name: str, success: bool, elapsed: float, detail: str = "") -> None:
        self.step_metrics.append(
            GenerationStepMetric(
                step_name=name, success=success, elapsed_seconds=elapsed, detail=detail
            )
        )

    def summary(self) -> str:
        """Human-readable summary string."""
        status: str = "✅ SUCCESS" if self.success else "❌ FAILED"
        if self.dry_run:
            status += " (dry run)"
        lines: List[str] = [
            "=" * 60,
            "  NexaFlow QueryGen - Generation Report",
            "=" * 60,
            f"  Status:           {status}",
            f"  Project:          {self.project_name}",
            f"  Output:           {self.output_directory}",
            f"  Models:           {self.total_models}",
            f"  Queries:          {self.total_queries}",
            f"  Files:            {self.total_files}",
            f"  Total lines:      {self.total_lines:,}",
            f"  Total time:       {self.total_elapsed_seconds:.3f}s",
            "─" * 60,
        ]
        if self.step_metrics:
            lines.append("  Pipeline Steps:")
            for step in self.step_metrics:
                icon: str = "✓" if step.success else "✗"
                lines.append(
                    f"    {icon} {step.step_name:<24s} {step.elapsed_seconds:>7.3f}s  {step.detail}"
                )

        for title, icon, items in (
            ("Validation Errors", "✗", self.validation_errors),
            ("Validation Warnings", "⚠", self.validation_warnings),
            ("Generation Errors", "✗", self.generation_errors),
            ("Format Errors", "✗", self.format_errors),
            ("Export Errors", "✗", self.export_errors),
            ("Skipped Files", "⊘", self.skipped_files),
        ):
            if items:
                lines.append("─" * 60)
                lines.append(f"  {title} ({len(items)}):")
                lines.extend(f"    {icon} {item}" for item in items)

        lines.append("=" * 60)
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Parallel query generation
# ---------------------------------------------------------------------------


def plan_units(
    models: Sequence[ModelSchema],
    kinds: Optional[Sequence[OperationKind]] = None,
) -> List[Tuple[ModelSchema, OperationKind]]:
    """Every ``(model, operation)`` pair to generate, in a stable order."""
    return [(model, kind) for model in models for kind in applicable_operations(model, kinds)]


def generate_queries(
    models: Sequence[ModelSchema],
    kinds: Optional[Sequence[OperationKind]] = None,
    max_workers: Optional[int] = None,
) -> Dict[str, List[SqlQueryContext]]:
    """
    Generate all queries, keyed by model ``module_name``.

    Raises:
        QueryGenError: the first failing unit in submission order.  Units
            already started still run to completion before it propagates.
    """
    results: Dict[str, List[SqlQueryContext]] = {m.module_name: [] for m in models}
    units: List[Tuple[ModelSchema, OperationKind]] = plan_units(models, kinds)
    logger.debug("Submitting %d generation unit(s).", len(units))

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="querygen") as pool:
        futures: List[Tuple[ModelSchema, OperationKind, Future]] = [
            (model, kind, pool.submit(generate_operation, model, kind)) for model, kind in units
        ]
        for model, kind, future in futures:
            try:
                results[model.module_name].extend(future.result())
            except QueryGenError:
                logger.error(
                    "Generating %s for %s failed; waiting for running units.",
                    OperationKind(kind).value,
                    model.name,
                )
                raise
    return results


def render_query_files(module_name: str, queries: Sequence[SqlQueryContext]) -> Dict[str, str]:
    """``.sql`` file per query plus the module's ``queries.json``."""
    files: Dict[str, str] = {}
    entries: List[Dict[str, Any]] = []
    for ctx in queries:
        sql_path: str = f"{module_name}/{ctx.operation_name}.sql"
        files[sql_path] = ctx.sql_text.rstrip() + "\n"
        entry: Dict[str, Any] = ctx.to_dict()
        entry["file"] = f"{ctx.operation_name}.sql"
        entries.append(entry)
    files[f"{module_name}/{QUERIES_MANIFEST}"] = json.dumps(entries, indent=2) + "\n"
    return files


def drop_query_entries(files: Dict[str, str], dropped: Sequence[str]) -> Dict[str, str]:
    """Remove ``queries.json`` entries whose ``.sql`` file was dropped."""
    by_module: Dict[str, Set[str]] = {}
    for path in dropped:
        module_name, _, filename = path.rpartition("/")
        by_module.setdefault(module_name, set()).add(filename)

    for module_name, filenames in by_module.items():
        manifest_path: str = f"{module_name}/{QUERIES_MANIFEST}"
        if manifest_path not in files:
            continue
        entries: List[Dict[str, Any]] = [
            e for e in json.loads(files[manifest_path]) if e["file"] not in filenames
        ]
        files[manifest_path] = json.dumps(entries, indent=2) + "\n"
    return files


def render_migration_files(migrations: Sequence[MigrationText]) -> Dict[str, str]:
    files: Dict[str, str] = {}
    for number, migration in enumerate(migrations, start=1):
        stem: str = f"{MIGRATIONS_DIR}/{number:04d}_{migration.module_name}"
        files[f"{stem}.up.sql"] = migration.up
        files[f"{stem}.down.sql"] = migration.down
    return files


# ---------------------------------------------------------------------------
# QueryGenerator - pipeline orchestrator
# ---------------------------------------------------------------------------


class QueryGenerator:
    """
    Runs the full pipeline and returns a ``GenerationReport``.

    Usage::

        report = QueryGenerator().generate_from_file(Path("models.yaml"))
        print(report.summary())

    Reusable; holds no per-run state.
    """

    def __init__(self, *, fail_on_warnings: bool = False) -> None:
        self._fail_on_warnings: bool = fail_on_warnings

    # -- Public API -----------------------------------------------------------

    def generate_from_file(
        self,
        definition_path: Path,
        output_dir: Optional[Path] = None,
        *,
        config_overrides: Optional[Mapping[str, Any]] = None,
        dry_run: bool = False,
    ) -> GenerationReport:
        """Load, parse and then run the in-memory pipeline."""
        report = GenerationReport(dry_run=dry_run)
        start: float = time.perf_counter()
        source: str = str(definition_path)

        with Timer("load_definition") as t_load:
            try:
                raw: Dict[str, Any] = load_definition_file(definition_path)
            except ConfigurationError as exc:
                report.generation_errors.append(str(exc))
                report.add_step("Load Definition", False, t_load.elapsed, exc.message)
                return self._finalise(report, start)
        report.add_step("Load Definition", True, t_load.elapsed, f"from {definition_path.name}")

        with Timer("parse_models") as t_parse:
            try:
                config: GenerationConfig = parse_config(raw, config_overrides, source)
                models: List[ModelSchema] = build_model_schemas(raw, config, source)
            except ConfigurationError as exc:
                report.generation_errors.append(str(exc))
                report.add_step("Parse Models", False, t_parse.elapsed, exc.message)
                return self._finalise(report, start)
        report.add_step("Parse Models", True, t_parse.elapsed, f"{len(models)} models")

        return self._run_pipeline(models, config, output_dir, report, start)

    def generate(
        self,
        models: Sequence[ModelSchema],
        config: GenerationConfig,
        output_dir: Optional[Path] = None,
        *,
        dry_run: bool = False,
    ) -> GenerationReport:
        """Run the pipeline from already-built models."""
        report = GenerationReport(dry_run=dry_run)
        return self._run_pipeline(list(models), config, output_dir, report, time.perf_counter())

    # -- Internal: pipeline ---------------------------------------------------

    def _run_pipeline(
        self,
        models: List[ModelSchema],
        config: GenerationConfig,
        output_dir: Optional[Path],
        report: GenerationReport,
        start: float,
    ) -> GenerationReport:
        target: Path = Path(output_dir if output_dir is not None else config.output_dir)
        report.project_name = config.project_name
        report.output_directory = str(target.resolve())
        report.total_models = len(models)

        if not self._step_validate(models, config, report):
            return self._finalise(report, start)

        files: Optional[Dict[str, str]] = self._step_generate(models, config, report)
        if files is None:
            return self._finalise(report, start)

        files = self._step_format(files, config, report)
        report.files = files
        report.total_files = len(files)
        report.total_lines = sum(count_lines(c) for c in files.values())
        report.total_bytes = sum(len(c.encode("utf-8")) for c in files.values())

        if report.dry_run:
            logger.info("Dry run: %d file(s) rendered, nothing written.", len(files))
        else:
            self._step_export(files, config, target, report)
        return self._finalise(report, start)

    def _step_validate(
        self, models: Sequence[ModelSchema], config: GenerationConfig, report: GenerationReport
    ) -> bool:
        with Timer("validation") as t:
            result: ValidationResult = validate_full(models, config)

        report.validation_errors.extend(str(e) for e in result.errors)
        report.validation_warnings.extend(str(w) for w in result.warnings)
        ok: bool = result.is_valid and not (self._fail_on_warnings and result.warnings)
        if result.errors:
            detail: str = f"{len(result.errors)} error(s)"
        elif result.warnings:
            detail = f"{len(result.warnings)} warning(s)"
        else:
            detail = "all checks passed"
        report.add_step("Validate Models", ok, t.elapsed, detail)

        for warn in result.warnings:
            logger.warning("  ⚠ %s", warn)
        if not ok and result.warnings and not result.errors:
            report.validation_errors.append("Warnings treated as errors (fail_on_warnings).")
        return ok

    def _step_generate(
        self, models: Sequence[ModelSchema], config: GenerationConfig, report: GenerationReport
    ) -> Optional[Dict[str, str]]:
        files: Dict[str, str] = {}
        with Timer("query_generation") as t:
            try:
                by_module: Dict[str, List[SqlQueryContext]] = generate_queries(
                    models, config.operations, config.max_workers
                )
                for module_name, queries in by_module.items():
                    report.total_queries += len(queries)
                    files.update(render_query_files(module_name, queries))
                if config.generate_migrations:
                    files.update(render_migration_files(render_migrations(models)))
            except QueryGenError as exc:
                report.generation_errors.append(str(exc))
                logger.error("Query generation failed: %s", exc)

        ok: bool = not report.generation_errors
        report.add_step(
            "Generate Queries", ok, t.elapsed, f"{report.total_queries} queries, {len(files)} files"
        )
        return files if ok else None

    def _step_format(
        self, files: Dict[str, str], config: GenerationConfig, report: GenerationReport
    ) -> Dict[str, str]:
        command: Optional[List[str]] = resolve_formatter(config)
        if command is None:
            return files

        formatter = SqlFormatter(command)
        formatted: Dict[str, str] = {}
        dropped: List[str] = []
        with Timer("format") as t:
            for path, content in files.items():
                if not path.endswith(".sql"):
                    formatted[path] = content
                    continue
                try:
                    formatted[path] = formatter.format(path, content)
                except FormatterError as exc:
                    report.format_errors.append(str(exc))
                    logger.error("%s", exc)
                    dropped.append(path)
        drop_query_entries(formatted, dropped)

        report.add_step(
            "Format SQL",
            not report.format_errors,
            t.elapsed,
            f"{' '.join(command)}, {len(report.format_errors)} failure(s)",
        )
        return formatted

    def _step_export(
        self, files: Dict[str, str], config: GenerationConfig, target: Path, report: GenerationReport
    ) -> None:
        exporter = ProjectExporter(config, target)
        result: ExportResult = exporter.export(files)
        report.export_errors.extend(result.errors)
        report.skipped_files.extend(result.skipped)
        report.manifest = result.manifest
        report.add_step(
            "Export to Filesystem",
            result.success,
            result.elapsed_seconds,
            f"{result.manifest.total_files} files, {result.manifest.total_bytes:,} bytes",
        )

    @staticmethod
    def _finalise(report: GenerationReport, start: float) -> GenerationReport:
        report.total_elapsed_seconds = time.perf_counter() - start
        report.success = not (
            report.validation_errors
            or report.generation_errors
            or report.format_errors
            or report.export_errors
        )
        return report


__all__: List[str] = [
    "GenerationStepMetric",
    "GenerationReport",
    "plan_units",
    "generate_queries",
    "render_query_files",
    "drop_query_entries",
    "render_migration_files",
    "QueryGenerator",
]

logger.debug("querygen.generator loaded.")
