# File: querygen/exceptions.py
"""
NexaFlow QueryGen - Exception Hierarchy
========================================
Every error raised by the compiler and the surrounding pipeline derives from
``QueryGenError`` and carries an ``ErrorCode`` so callers (and the CLI exit
code mapping) can categorise failures without a forest of ``isinstance``
checks.

Categories:
    CONFIG_*     - malformed or missing model definitions (abort the run).
    BUILD_*      - generator bugs detected by the query builder.
    ORDER_*      - rejected caller-supplied sort requests.
    OPERATION_*  - operations that cannot be generated for a model.
    FORMAT_*     - external SQL formatter failures (block a single file).
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, List, Optional

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("querygen.exceptions")


class ErrorCode(Enum):
    """Standard error codes for QueryGen failures."""

    # Configuration errors (1xxx)
    CONFIG_ERROR = "CONFIG_001"
    CONFIG_MISSING = "CONFIG_002"
    CONFIG_INVALID = "CONFIG_003"

    # Builder errors (2xxx)
    BUILD_ERROR = "BUILD_001"
    BUILD_EMPTY_QUERY = "BUILD_002"
    BUILD_CONSUMED = "BUILD_003"

    # Sort validation errors (3xxx)
    ORDER_INVALID_FIELD = "ORDER_001"
    ORDER_INVALID_DIRECTION = "ORDER_002"

    # Operation errors (4xxx)
    OPERATION_UNSUPPORTED = "OPERATION_001"

    # Formatter errors (5xxx)
    FORMAT_ERROR = "FORMAT_001"
    FORMAT_NOT_FOUND = "FORMAT_002"


class QueryGenError(Exception):
    """
    Base exception for all QueryGen errors.

    Attributes:
        message: Error message.
        error_code: Category from ``ErrorCode``.
        details: Additional structured context.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.BUILD_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message: str = message
        self.error_code: ErrorCode = error_code
        self.details: Dict[str, Any] = details or {}

    def __str__(self) -> str:
        return f"[{self.error_code.value}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a JSON-serialisable dictionary."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code.value,
            "error_name": self.error_code.name,
            "details": self.details,
        }


class ConfigurationError(QueryGenError):
    """Malformed or missing model definitions, reported with the source path."""

    def __init__(
        self,
        message: str,
        source_path: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.CONFIG_INVALID,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.source_path: Optional[str] = source_path
        if source_path:
            message = f"{source_path}: {message}"
        merged: Dict[str, Any] = dict(details or {})
        merged.setdefault("source_path", source_path)
        super().__init__(message, error_code, merged)


class QueryBuildError(QueryGenError):
    """A query builder was misused. Always indicates a generator bug."""


class EmptyQueryError(QueryBuildError):
    def __init__(self, operation_name: str) -> None:
        super().__init__(
            f"Query '{operation_name}' was finished without any content.",
            ErrorCode.BUILD_EMPTY_QUERY,
            {"operation_name": operation_name},
        )


class BuilderConsumedError(QueryBuildError):
    def __init__(self, operation_name: str) -> None:
        super().__init__(
            f"Query builder was already finished as '{operation_name}' "
            f"and cannot be reused.",
            ErrorCode.BUILD_CONSUMED,
            {"operation_name": operation_name},
        )


class OrderByError(QueryGenError):
    """
    A caller-supplied sort request was rejected.

    ``reason`` is ``"invalid_field"`` or ``"invalid_direction"``.
    """

    INVALID_FIELD: str = "invalid_field"
    INVALID_DIRECTION: str = "invalid_direction"

    def __init__(self, reason: str, model: str, field: str) -> None:
        self.reason: str = reason
        self.model: str = model
        self.field: str = field
        if reason == self.INVALID_DIRECTION:
            code: ErrorCode = ErrorCode.ORDER_INVALID_DIRECTION
            message: str = (
                f"Field '{field}' of model '{model}' cannot be sorted in "
                f"the requested direction."
            )
        else:
            code = ErrorCode.ORDER_INVALID_FIELD
            message = f"Model '{model}' cannot be sorted by '{field}'."
        super().__init__(
            message, code, {"reason": reason, "model": model, "field": field}
        )


class UnsupportedOperationError(QueryGenError):
    """An operation was requested that cannot be generated for this model."""

    def __init__(self, operation: str, model: str, reason: str) -> None:
        self.operation: str = operation
        self.model: str = model
        super().__init__(
            f"Cannot generate '{operation}' for model '{model}': {reason}",
            ErrorCode.OPERATION_UNSUPPORTED,
            {"operation": operation, "model": model},
        )


class FormatterError(QueryGenError):
    """
    The external SQL formatter failed on one file.

    Carries the captured stderr/stdout so the report can show the
    formatter's own diagnostic.
    """

    def __init__(
        self,
        filename: str,
        message: str,
        returncode: Optional[int] = None,
        stderr: str = "",
        stdout: str = "",
        error_code: ErrorCode = ErrorCode.FORMAT_ERROR,
    ) -> None:
        self.filename: str = filename
        self.returncode: Optional[int] = returncode
        self.stderr: str = stderr
        self.stdout: str = stdout
        parts: List[str] = [f"Formatting {filename} failed: {message}"]
        if stderr.strip():
            parts.append(f"stderr: {stderr.strip()}")
        if stdout.strip():
            parts.append(f"stdout: {stdout.strip()}")
        super().__init__(
            "\n".join(parts),
            error_code,
            {"filename": filename, "returncode": returncode},
        )


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "ErrorCode",
    "QueryGenError",
    "ConfigurationError",
    "QueryBuildError",
    "EmptyQueryError",
    "BuilderConsumedError",
    "OrderByError",
    "UnsupportedOperationError",
    "FormatterError",
]

logger.debug("querygen.exceptions loaded.")
