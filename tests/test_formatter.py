"""
tests/test_formatter.py
Tests for the external SQL formatter wrapper.

The current interpreter stands in for a formatter binary, so these tests
do not depend on sleek or pg_format being installed.
"""

from __future__ import annotations

import sys

import pytest

from querygen.exceptions import ErrorCode, FormatterError
from querygen.formatter import SqlFormatter, find_default_sql_formatter, resolve_formatter
from querygen.models import GenerationConfig

UPPERCASE = [sys.executable, "-c", "import sys; sys.stdout.write(sys.stdin.read().upper())"]
FAILING = [
    sys.executable,
    "-c",
    "import sys; sys.stdout.write('partial'); sys.stderr.write('syntax error'); sys.exit(3)",
]


class TestSqlFormatter:
    def test_formats_through_stdin(self):
        fmt = SqlFormatter(UPPERCASE)
        assert fmt.format("post/insert.sql", "select 1;\n") == "SELECT 1;\n"

    def test_empty_command_rejected(self):
        with pytest.raises(ValueError):
            SqlFormatter([])

    def test_missing_command(self):
        fmt = SqlFormatter(["querygen-no-such-formatter"])
        with pytest.raises(FormatterError) as exc_info:
            fmt.format("post/insert.sql", "select 1;")
        assert exc_info.value.error_code == ErrorCode.FORMAT_NOT_FOUND
        assert exc_info.value.filename == "post/insert.sql"

    def test_non_zero_exit_carries_output(self):
        fmt = SqlFormatter(FAILING)
        with pytest.raises(FormatterError) as exc_info:
            fmt.format("post/list.sql", "select 1;")
        err = exc_info.value
        assert err.error_code == ErrorCode.FORMAT_ERROR
        assert err.returncode == 3
        assert err.stderr == "syntax error"
        assert err.stdout == "partial"
        assert "stderr: syntax error" in str(err)
        assert err.to_dict()["details"] == {"filename": "post/list.sql", "returncode": 3}

    def test_timeout(self):
        fmt = SqlFormatter([sys.executable, "-c", "import time; time.sleep(10)"], timeout=0.5)
        with pytest.raises(FormatterError, match="timed out"):
            fmt.format("post/list.sql", "select 1;")


class TestResolveFormatter:
    def test_explicit_formatter_wins(self):
        config = GenerationConfig(formatter=["pg_format", "-s", "2"], auto_detect_formatter=True)
        assert resolve_formatter(config) == ["pg_format", "-s", "2"]

    def test_disabled_by_default(self):
        assert resolve_formatter(GenerationConfig()) is None

    def test_auto_detect(self, monkeypatch):
        monkeypatch.setattr(
            "querygen.formatter.shutil.which",
            lambda name: "/usr/bin/pg_format" if name == "pg_format" else None,
        )
        assert find_default_sql_formatter() == ["pg_format"]
        assert resolve_formatter(GenerationConfig(auto_detect_formatter=True)) == ["pg_format"]

    def test_auto_detect_prefers_sleek(self, monkeypatch):
        monkeypatch.setattr("querygen.formatter.shutil.which", lambda name: f"/usr/bin/{name}")
        assert find_default_sql_formatter() == ["sleek"]

    def test_auto_detect_nothing_found(self, monkeypatch):
        monkeypatch.setattr("querygen.formatter.shutil.which", lambda name: None)
        assert resolve_formatter(GenerationConfig(auto_detect_formatter=True)) is None
