# File: querygen/cli.py
"""
NexaFlow QueryGen - Command-Line Interface
===========================================
``argparse`` front end for the generation pipeline.

Usage examples::

    # Generate into the directory named by config.output_dir
    python -m querygen -d models.yaml

    # Explicit output directory, INFO logging
    python -m querygen -d models.yaml -o ./sql -v

    # Only some query families, formatted with pg_format
    python -m querygen -d models.yaml --operation insert --operation list \\
        --formatter pg_format

    # Check definitions without writing anything
    python -m querygen -d models.yaml --validate-only

Exit codes:
    0 - success
    1 - validation error
    2 - generation error
    3 - export error
    4 - input/argument error
    5 - formatter error
"""

from __future__ import annotations

import argparse
import logging
import shlex
import sys
from pathlib import Path
from typing import Dict, List, NoReturn, Optional, Sequence

from querygen.models import OperationKind

logger: logging.Logger = logging.getLogger("querygen")

EXIT_SUCCESS: int = 0
EXIT_VALIDATION_ERROR: int = 1
EXIT_GENERATION_ERROR: int = 2
EXIT_EXPORT_ERROR: int = 3
EXIT_INPUT_ERROR: int = 4
EXIT_FORMAT_ERROR: int = 5


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(verbosity: int) -> None:
    """
    Configure the ``querygen`` logger.

    Args:
        verbosity: -1 = silent, 0 = WARNING, 1 = INFO, 2+ = DEBUG.
    """
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity >= 1:
        level = logging.INFO
    elif verbosity == 0:
        level = logging.WARNING
    else:
        level = logging.CRITICAL + 1

    handler: logging.StreamHandler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s", datefmt="%H:%M:%S"
        )
    )

    root_logger: logging.Logger = logging.getLogger("querygen")
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.propagate = False


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    from querygen import __version__

    parser = argparse.ArgumentParser(
        prog="querygen",
        description=(
            "NexaFlow QueryGen - compiles declarative model definitions (YAML/JSON) "
            "into parameterized, tenant-aware PostgreSQL queries and migrations."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  %(prog)s -d models.yaml -o ./sql\n"
            "  %(prog)s -d models.yaml --validate-only\n"
            "  %(prog)s -d models.yaml --operation insert --operation list --dry-run\n"
        ),
    )
    parser.add_argument("--version", action="version", version=f"NexaFlow QueryGen v{__version__}")
    parser.add_argument(
        "-d", "--definition",
        type=str,
        required=True,
        metavar="PATH",
        help="Path to the model definition file (YAML or JSON).",
    )
    parser.add_argument(
        "-o", "--output",
        type=str,
        default=None,
        metavar="DIR",
        help="Output directory (defaults to config.output_dir).",
    )

    mode_group = parser.add_argument_group("operation modes")
    mode_group.add_argument(
        "--validate-only",
        action="store_true",
        help="Load and validate the definitions without generating queries.",
    )
    mode_group.add_argument(
        "--dry-run",
        action="store_true",
        help="Generate everything but write nothing; list the files instead.",
    )

    config_group = parser.add_argument_group("configuration overrides")
    config_group.add_argument("--project-name", default=None, metavar="NAME")
    config_group.add_argument("--project-version", default=None, metavar="VER")
    config_group.add_argument(
        "--schema",
        dest="default_schema",
        default=None,
        metavar="NAME",
        help="Database schema for models that do not name one.",
    )
    config_group.add_argument(
        "--auth-schema", default=None, metavar="NAME", help="Schema holding permission tables."
    )
    config_group.add_argument(
        "--operation",
        dest="operations",
        action="append",
        default=None,
        choices=[k.value for k in OperationKind],
        help="Generate only this query family (repeatable).",
    )
    config_group.add_argument(
        "--no-migrations",
        action="store_true",
        help="Skip migration output.",
    )
    config_group.add_argument(
        "--formatter",
        default=None,
        metavar="CMD",
        help="SQL formatter command reading stdin, e.g. 'pg_format -s 2'.",
    )
    config_group.add_argument(
        "--auto-format",
        action="store_true",
        help="Use sleek or pg_format from PATH when no formatter is configured.",
    )
    config_group.add_argument(
        "--workers", type=int, default=None, metavar="N", help="Generation thread pool size."
    )
    config_group.add_argument(
        "--no-overwrite",
        action="store_true",
        help="Keep files that already exist in the output directory.",
    )

    behaviour_group = parser.add_argument_group("behaviour flags")
    behaviour_group.add_argument(
        "--fail-on-warnings",
        action="store_true",
        help="Treat validation warnings as errors.",
    )

    verbosity_group = parser.add_argument_group("verbosity")
    verbosity_group.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v for INFO, -vv for DEBUG).",
    )
    verbosity_group.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress all log output.",
    )
    return parser


def _build_config_overrides(args: argparse.Namespace) -> Dict[str, object]:
    overrides: Dict[str, object] = {}
    for key in ("project_name", "project_version", "default_schema", "auth_schema", "operations"):
        value = getattr(args, key)
        if value is not None:
            overrides[key] = value
    if args.output is not None:
        overrides["output_dir"] = args.output
    if args.no_migrations:
        overrides["generate_migrations"] = False
    if args.formatter is not None:
        overrides["formatter"] = shlex.split(args.formatter)
    if args.auto_format:
        overrides["auto_detect_formatter"] = True
    if args.workers is not None:
        overrides["max_workers"] = args.workers
    if args.no_overwrite:
        overrides["overwrite_existing"] = False
    return overrides


# ---------------------------------------------------------------------------
# Modes
# ---------------------------------------------------------------------------


def _run_validate_only(definition_path: Path, overrides: Dict[str, object]) -> int:
    from querygen.exceptions import ConfigurationError
    from querygen.loader import load_project
    from querygen.utils import Timer
    from querygen.validators import validate_full

    try:
        with Timer("load") as t_load:
            models, config = load_project(definition_path, overrides)
    except ConfigurationError as exc:
        logger.error("%s", exc)
        print(f"✗ {exc}")
        return EXIT_INPUT_ERROR

    with Timer("validation") as t:
        result = validate_full(models, config)

    print(f"\n{'=' * 50}")
    print("  Model Validation Report")
    print(f"{'=' * 50}")
    print(f"  File:     {definition_path.name}")
    print(f"  Models:   {len(models)}")
    print(f"  Time:     {t_load.elapsed + t.elapsed:.3f}s")
    print(f"  Valid:    {'Yes' if result.is_valid else 'No'}")
    if len(result):
        print()
        print(result.format_report())
    elif result.is_valid:
        print("\n  ✅ All validations passed!")
    print(f"{'=' * 50}\n")

    return EXIT_SUCCESS if result.is_valid else EXIT_VALIDATION_ERROR


def _run_generation(
    definition_path: Path, overrides: Dict[str, object], args: argparse.Namespace
) -> int:
    from querygen.generator import GenerationReport, QueryGenerator

    generator = QueryGenerator(fail_on_warnings=args.fail_on_warnings)
    report: GenerationReport = generator.generate_from_file(
        definition_path,
        config_overrides=overrides,
        dry_run=args.dry_run,
    )
    print(report.summary())
    if args.dry_run and report.files:
        for path in sorted(report.files):
            print(f"  {path}")

    if report.success:
        return EXIT_SUCCESS
    if report.validation_errors:
        return EXIT_VALIDATION_ERROR
    if report.generation_errors:
        return EXIT_GENERATION_ERROR
    if report.format_errors:
        return EXIT_FORMAT_ERROR
    return EXIT_EXPORT_ERROR


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------


def cli_main(argv: Optional[Sequence[str]] = None) -> NoReturn:
    """Main CLI entry point; exits the process with one of the ``EXIT_*`` codes."""
    parser: argparse.ArgumentParser = _build_parser()
    args: argparse.Namespace = parser.parse_args(argv)

    _setup_logging(-1 if args.quiet else args.verbose)

    definition_path: Path = Path(args.definition).resolve()
    if not definition_path.is_file():
        logger.error("Definition file not found: %s", definition_path)
        sys.exit(EXIT_INPUT_ERROR)

    overrides: Dict[str, object] = _build_config_overrides(args)

    if args.validate_only:
        sys.exit(_run_validate_only(definition_path, overrides))

    logger.info("Definition: %s", definition_path)
    exit_code: int = _run_generation(definition_path, overrides, args)
    if exit_code == EXIT_SUCCESS:
        logger.info("Generation completed successfully.")
    else:
        logger.error("Generation failed with exit code %d.", exit_code)
    sys.exit(exit_code)


__all__: List[str] = [
    "cli_main",
    "EXIT_SUCCESS",
    "EXIT_VALIDATION_ERROR",
    "EXIT_GENERATION_ERROR",
    "EXIT_EXPORT_ERROR",
    "EXIT_INPUT_ERROR",
    "EXIT_FORMAT_ERROR",
]

logger.debug("querygen.cli loaded.")
