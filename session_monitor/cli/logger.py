"""
CLI logger adapter - implements LoggerProtocol for command-line usage.

All messages go to stderr (info only when verbose) so JSON
printed on stdout stays machine-readable.
"""

from __future__ import annotations

import logging

import typer


class CLILogger:
    """
    Logger implementation for CLI (implements LoggerProtocol from services).

    Writes messages to stderr with optional verbose mode.
    """

    def __init__(self, verbose: bool = False) -> None:
        """
        Initialize CLI logger.

        Args:
            verbose: If True, show info messages. If False, only warnings/errors.
        """
        self.verbose = verbose

    async def info(self, message: str) -> None:
        """Log info message (only if verbose)."""
        if self.verbose:
            typer.echo(f'[INFO] {message}', err=True)

    async def warning(self, message: str) -> None:
        typer.secho(f'[WARNING] {message}', fg=typer.colors.YELLOW, err=True)

    async def error(self, message: str) -> None:
        typer.secho(f'[ERROR] {message}', fg=typer.colors.RED, err=True)


def configure_logging(verbose: bool) -> None:
    """Route module loggers to stderr; DEBUG when verbose, WARNING otherwise."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
