# File: querygen/exporters.py
"""
NexaFlow QueryGen - Output Exporter
====================================
Writes rendered files under the output directory and produces a
``manifest.json`` with per-file checksums.

Every file is written atomically (temp file in the same directory, then
``os.replace``), so a crash or a failed write never leaves a truncated
``.sql`` file behind.  Failures are recorded per file; the remaining files
are still written.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Tuple

from querygen.models import GenerationConfig
from querygen.utils import Timer, count_lines, sha256_hex

logger: logging.Logger = logging.getLogger("querygen.exporters")

MANIFEST_FILENAME: str = "manifest.json"


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FileRecord:
    """Immutable record of a single exported file."""

    relative_path: str
    size_bytes: int
    line_count: int
    sha256: str


@dataclass(frozen=False, slots=True)
class ExportManifest:
    """All exported files with checksums, serialisable to JSON."""

    project_name: str = ""
    project_version: str = ""
    generator_version: str = ""
    export_timestamp: str = ""
    output_directory: str = ""
    files: List[FileRecord] = field(default_factory=list)

    @property
    def total_files(self) -> int:
        return len(self.files)

    @property
    def total_bytes(self) -> int:
        return sum(f.size_bytes for f in self.files)

    @property
    def total_lines(self) -> int:
        return sum(f.line_count for f in self.files)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_name": self.project_name,
            "project_version": self.project_version,
            "generator_version": self.generator_version,
            "export_timestamp": self.export_timestamp,
            "output_directory": self.output_directory,
            "total_files": self.total_files,
            "total_bytes": self.total_bytes,
            "total_lines": self.total_lines,
            "files": [
                {
                    "relative_path": f.relative_path,
                    "size_bytes": f.size_bytes,
                    "line_count": f.line_count,
                    "sha256": f.sha256,
                }
                for f in self.files
            ],
        }

    def to_json(self, indent_size: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent_size, ensure_ascii=False)


@dataclass(frozen=True, slots=True)
class ExportResult:
    """Returned by ``ProjectExporter.export()``."""

    success: bool
    manifest: ExportManifest
    errors: Tuple[str, ...]
    warnings: Tuple[str, ...]
    skipped: Tuple[str, ...]
    elapsed_seconds: float


# ---------------------------------------------------------------------------
# Exporter
# ---------------------------------------------------------------------------


class ProjectExporter:
    """
    Writes a batch of rendered files to one output directory.

    Usage::

        exporter = ProjectExporter(config, Path("./generated"))
        result = exporter.export({"posts/insert.sql": "..."})

    Not thread-safe; the driver exports from a single thread after the
    parallel render phase has joined.
    """

    def __init__(
        self,
        config: GenerationConfig,
        output_dir: Path,
        *,
        generate_manifest: bool = True,
    ) -> None:
        self._config: GenerationConfig = config
        self._output_dir: Path = output_dir.resolve()
        self._generate_manifest: bool = generate_manifest

        self._errors: List[str] = []
        self._warnings: List[str] = []
        self._skipped: List[str] = []
        self._file_records: List[FileRecord] = []

    @property
    def output_dir(self) -> Path:
        return self._output_dir

    def export(self, files: Mapping[str, str]) -> ExportResult:
        """
        Write *files* (relative path to content) and the manifest.

        Files are written in sorted path order so repeated runs touch the
        filesystem identically.
        """
        with Timer("export") as timer:
            self._output_dir.mkdir(parents=True, exist_ok=True)
            for rel_path in sorted(files):
                self._write_one(rel_path, files[rel_path])
            if self._generate_manifest:
                self._write_manifest_file()

        manifest: ExportManifest = self._build_manifest()
        success: bool = not self._errors
        if success:
            logger.info(
                "Export completed: %d files, %d bytes, %.3fs.",
                manifest.total_files,
                manifest.total_bytes,
                timer.elapsed,
            )
        else:
            logger.error("Export completed with %d error(s).", len(self._errors))

        return ExportResult(
            success=success,
            manifest=manifest,
            errors=tuple(self._errors),
            warnings=tuple(self._warnings),
            skipped=tuple(self._skipped),
            elapsed_seconds=timer.elapsed,
        )

    # -- Internal: file writing ----------------------------------------------

    def _write_one(self, rel_path: str, content: str) -> None:
        full_path: Path = self._output_dir / rel_path
        if full_path.exists() and not self._config.overwrite_existing:
            self._skipped.append(rel_path)
            logger.warning("Skipping existing file %s (overwrite disabled).", rel_path)
            return
        try:
            self._file_records.append(self._write_single_file(full_path, content, rel_path))
        except OSError as exc:
            error_msg: str = f"Failed to write {rel_path}: {type(exc).__name__}: {exc}"
            self._errors.append(error_msg)
            logger.error(error_msg)

    def _write_single_file(self, full_path: Path, content: str, rel_path: str) -> FileRecord:
        full_path.parent.mkdir(parents=True, exist_ok=True)
        encoded: bytes = content.encode("utf-8")
        self._atomic_write(full_path, encoded)
        logger.debug("Wrote file: %s (%d bytes).", rel_path, len(encoded))
        return FileRecord(
            relative_path=rel_path,
            size_bytes=len(encoded),
            line_count=count_lines(content),
            sha256=sha256_hex(content),
        )

    @staticmethod
    def _atomic_write(target_path: Path, data: bytes) -> None:
        """
        Write *data* to a temp file beside *target_path*, then rename it.

        ``os.replace`` is atomic when both paths are on the same
        filesystem, hence the temp file lives in the target directory.
        """
        fd, tmp_path = tempfile.mkstemp(
            dir=str(target_path.parent),
            prefix=f".{target_path.name}.",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, str(target_path))
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    # -- Internal: manifest ---------------------------------------------------

    def _build_manifest(self) -> ExportManifest:
        import querygen

        return ExportManifest(
            project_name=self._config.project_name,
            project_version=self._config.project_version,
            generator_version=querygen.__version__,
            export_timestamp=time.strftime("%Y-%m-%dT%H:%M:%S%z"),
            output_directory=str(self._output_dir),
            files=list(self._file_records),
        )

    def _write_manifest_file(self) -> None:
        manifest_path: Path = self._output_dir / MANIFEST_FILENAME
        try:
            self._write_single_file(manifest_path, self._build_manifest().to_json(), MANIFEST_FILENAME)
        except OSError as exc:
            self._warnings.append(f"Could not write manifest: {exc}")
            logger.warning("Failed to write manifest: %s", exc)


__all__: List[str] = [
    "MANIFEST_FILENAME",
    "FileRecord",
    "ExportManifest",
    "ExportResult",
    "ProjectExporter",
]

logger.debug("querygen.exporters loaded.")
