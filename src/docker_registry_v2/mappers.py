"""
Error mapping and CLI utilities.

Provides centralized exception-to-exit-code mapping and a command wrapper so
every Typer command reports failures the same way.
"""
from __future__ import annotations

from typing import Callable, TypeVar

import typer

from .errors import HttpError

T = TypeVar('T')

EXIT_CODES = {
    "ParseError": 2,
    "ValueError": 2,
    "ValidationError": 2,
    "JSONDecodeError": 2,
}


def exit_code_for(exc: BaseException) -> int:
    """
    Map exception to exit code.

    - 1: Not found (HttpError with status 404)
    - 2: Bad input (ParseError, ValueError, ValidationError)
    - 3: Registry, network or integrity failure, and anything unknown

    Args:
        exc: Exception to map

    Returns:
        Exit code (3 as fallback for unknown exceptions)
    """
    if isinstance(exc, HttpError) and exc.status_code == 404:
        return 1
    return EXIT_CODES.get(type(exc).__name__, 3)


def run_and_exit(func: Callable[[], T]) -> T:
    """
    Unified error wrapper for CLI commands.

    Runs ``func``; on failure prints the error and exits with the mapped
    code via ``typer.Exit``.

    Raises:
        typer.Exit: With the mapped exit code if ``func`` raises
    """
    try:
        return func()
    except typer.Exit:
        raise
    except Exception as e:
        from .printers import print_error
        print_error(e)
        raise typer.Exit(code=exit_code_for(e)) from e


__all__ = ["EXIT_CODES", "exit_code_for", "run_and_exit"]
