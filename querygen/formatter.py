# File: querygen/formatter.py
"""
NexaFlow QueryGen - External SQL Formatter
===========================================
Pipes rendered SQL through an external formatter (any command that reads
SQL on stdin and writes it to stdout, e.g. ``sleek`` or ``pg_format``).

A formatter failure raises ``FormatterError`` carrying the file name and
the captured stderr/stdout.  The driver records it against that one file
and keeps the unformatted text out of the export.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from typing import List, Optional, Sequence

from querygen.exceptions import ErrorCode, FormatterError
from querygen.models import GenerationConfig

logger: logging.Logger = logging.getLogger("querygen.formatter")

# Checked in order when auto-detecting.
KNOWN_SQL_FORMATTERS: Sequence[Sequence[str]] = (("sleek",), ("pg_format",))


def find_default_sql_formatter() -> Optional[List[str]]:
    """First known formatter found on ``PATH``, or ``None``."""
    for command in KNOWN_SQL_FORMATTERS:
        if shutil.which(command[0]) is not None:
            logger.info("Using SQL formatter '%s' found on PATH.", command[0])
            return list(command)
    logger.debug("No SQL formatter found on PATH.")
    return None


def resolve_formatter(config: GenerationConfig) -> Optional[List[str]]:
    """Explicit ``config.formatter`` wins; otherwise auto-detect when enabled."""
    if config.formatter:
        return list(config.formatter)
    if config.auto_detect_formatter:
        return find_default_sql_formatter()
    return None


class SqlFormatter:
    """
    Runs one external formatter command per file.

    Usage::

        fmt = SqlFormatter(["pg_format"])
        pretty = fmt.format("posts/insert.sql", text)
    """

    __slots__ = ("command", "timeout")

    def __init__(self, command: Sequence[str], timeout: Optional[float] = 30.0) -> None:
        if not command:
            raise ValueError("Formatter command must not be empty.")
        self.command: List[str] = list(command)
        self.timeout: Optional[float] = timeout

    def format(self, filename: str, text: str) -> str:
        """
        Return *text* as rewritten by the formatter.

        Raises:
            FormatterError: the command is missing, timed out, or exited
                non-zero.
        """
        cmd: str = " ".join(self.command)
        logger.debug("Formatting %s with '%s'.", filename, cmd)
        try:
            proc = subprocess.run(
                self.command,
                input=text,
                capture_output=True,
                text=True,
                encoding="utf-8",
                timeout=self.timeout,
            )
        except FileNotFoundError as exc:
            raise FormatterError(
                filename,
                f"formatter '{self.command[0]}' not found",
                error_code=ErrorCode.FORMAT_NOT_FOUND,
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise FormatterError(filename, f"'{cmd}' timed out after {self.timeout}s") from exc

        if proc.returncode != 0:
            raise FormatterError(
                filename,
                f"'{cmd}' exited with code {proc.returncode}",
                returncode=proc.returncode,
                stderr=proc.stderr or "",
                stdout=proc.stdout or "",
            )
        return proc.stdout

    def __repr__(self) -> str:
        return f"<SqlFormatter {' '.join(self.command)!r}>"


__all__: List[str] = [
    "KNOWN_SQL_FORMATTERS",
    "find_default_sql_formatter",
    "resolve_formatter",
    "SqlFormatter",
]

logger.debug("querygen.formatter loaded.")
