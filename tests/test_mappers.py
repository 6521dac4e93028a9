"""
Test error mapping and CLI exit code functionality.

Validates that exceptions are correctly mapped to exit codes and that
the run_and_exit wrapper handles errors appropriately for CLI commands.
"""
from __future__ import annotations

import json

import httpx
import pytest
import typer

from docker_registry_v2.errors import (
    AuthError,
    BadDigestError,
    HttpError,
    InvalidContentError,
    ParseError,
    TooManyRedirectsError,
)
from docker_registry_v2.mappers import EXIT_CODES, exit_code_for, run_and_exit


class TestExitCodeMapping:
    """Test exception to exit code mapping."""

    def test_not_found(self):
        """Test that a 404 from the registry is exit code 1."""
        assert exit_code_for(HttpError("gone", response=httpx.Response(404))) == 1

    def test_other_http_errors(self):
        """Test that other statuses are registry failures."""
        assert exit_code_for(HttpError("boom", response=httpx.Response(500))) == 3
        assert exit_code_for(AuthError("denied", response=httpx.Response(401))) == 3
        assert exit_code_for(HttpError("no response")) == 3

    def test_bad_input(self):
        """Test that input errors are exit code 2."""
        assert exit_code_for(ParseError("bad ref")) == 2
        assert exit_code_for(ValueError("bad value")) == 2
        assert exit_code_for(json.JSONDecodeError("bad", "doc", 0)) == 2

    def test_integrity_and_content_errors(self):
        """Test that integrity failures fall back to exit code 3."""
        assert exit_code_for(BadDigestError("mismatch")) == 3
        assert exit_code_for(InvalidContentError("truncated")) == 3
        assert exit_code_for(TooManyRedirectsError("loop")) == 3

    def test_unknown_exception_maps_to_fallback(self):
        """Test that unknown exceptions map to fallback exit code."""
        assert exit_code_for(RuntimeError("surprise")) == 3

    def test_exit_codes_are_consistent(self):
        """Test that bad-input codes never collide with not-found."""
        assert set(EXIT_CODES.values()) == {2}


class TestRunAndExit:
    """Test run_and_exit wrapper function."""

    def test_successful_function_execution(self):
        """Test that the function's return value is passed through."""
        assert run_and_exit(lambda: "success") == "success"

    def test_exception_converted_to_exit(self, capsys):
        """Test that exceptions become typer.Exit with the mapped code."""
        def failing():
            raise ParseError("invalid reference format")

        with pytest.raises(typer.Exit) as exc_info:
            run_and_exit(failing)

        assert exc_info.value.exit_code == 2
        assert isinstance(exc_info.value.__cause__, ParseError)
        assert "ParseError: invalid reference format" in capsys.readouterr().err

    def test_typer_exit_passes_through(self):
        """Test that an explicit typer.Exit is not remapped."""
        def exiting():
            raise typer.Exit(code=7)

        with pytest.raises(typer.Exit) as exc_info:
            run_and_exit(exiting)
        assert exc_info.value.exit_code == 7
