"""
Error mapping and CLI utilities.

Provides centralized exception-to-exit-code mapping so every Typer command
reports failures the same way.
"""
from __future__ import annotations

import logging
from typing import Callable, TypeVar

import typer

logger = logging.getLogger(__name__)

T = TypeVar('T')

EXIT_CODES = {
    "TagNotFoundError": 1,
    "RegistryNotFound": 1,
    "InvalidReferenceError": 2,
    "ValidationError": 2,
    "ValueError": 2,
    "StatusError": 3,
    "RegistryAuthError": 4,
    "NoSupportedPlatformError": 5,
}

FALLBACK_EXIT_CODE = 3


def exit_code_for(exc: BaseException) -> int:
    """
    Map exception to standardized exit code.

    - 1: Tag or image not found
    - 2: Invalid reference or input
    - 3: API/network error or unknown error
    - 4: Registry authentication failure
    - 5: No manifest for the running platform
    """
    return EXIT_CODES.get(type(exc).__name__, FALLBACK_EXIT_CODE)


def run_and_exit(func: Callable[[], T]) -> T:
    """
    Unified error wrapper for CLI commands.

    Executes the given function and maps any exception to an exit code
    using typer.Exit, after printing the error to stderr.
    """
    try:
        return func()
    except Exception as e:
        logger.debug("Command failed", exc_info=True)
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=exit_code_for(e)) from e


__all__ = ["EXIT_CODES", "exit_code_for", "run_and_exit"]
