#!/usr/bin/env python3
"""
Command-line interface for session-monitor.

Provides commands to scan repositories for agent sessions, live-tail one
session's status and search past sessions.
"""

from __future__ import annotations

import asyncio
import json
import queue
import traceback
from pathlib import Path
from typing import Literal, TypeGuard

import typer

from session_monitor.cli.logger import CLILogger, configure_logging
from session_monitor.config import settings
from session_monitor.exceptions import SessionMonitorError
from session_monitor.models import ProviderKind
from session_monitor.providers import build_provider
from session_monitor.services.monitor import SessionMonitorService
from session_monitor.services.search import SessionSearchService
from session_monitor.services.watcher import SessionFileWatcher
from session_monitor.storage.local import JsonMappingStore

app = typer.Typer(
    name='session-monitor',
    help='Track local Claude Code and Codex CLI sessions across git worktrees',
    add_completion=False,
)


def _is_provider(value: str) -> TypeGuard[ProviderKind]:
    """Type guard for supported providers."""
    return value in ('claude', 'codex')


def _validate_provider(value: str) -> ProviderKind:
    """Validate and narrow provider for typer callback."""
    if _is_provider(value):
        return value
    raise typer.BadParameter("Must be 'claude' or 'codex'")


ProviderOption = typer.Option('claude', '--provider', '-p', help='claude or codex', callback=_validate_provider)


@app.command()
def scan(
    repos: list[Path] = typer.Argument(..., help='Repository paths to scan'),
    provider: str = ProviderOption,
    verbose: bool = typer.Option(False, '--verbose', '-v', help='Verbose output'),
) -> None:
    """Scan repositories once and print the repository tree as JSON."""
    asyncio.run(_scan_async([str(repo.expanduser().resolve()) for repo in repos], provider, verbose))  # type: ignore[arg-type]


@app.command()
def watch(
    session_id: str = typer.Argument(..., help='Session ID to tail'),
    provider: str = ProviderOption,
    project: Path | None = typer.Option(None, '--project', help='Project directory of the session'),
    file: Path | None = typer.Option(None, '--file', help='Transcript path (skips lookup)'),
    verbose: bool = typer.Option(False, '--verbose', '-v', help='Verbose output'),
) -> None:
    """Live-tail one session and print status changes until Ctrl+C."""
    configure_logging(verbose)
    watcher = SessionFileWatcher(build_provider(provider, settings))  # type: ignore[arg-type]
    subscription = watcher.states.subscribe(lambda update: update.session_id == session_id)

    state = watcher.start_monitoring(
        session_id,
        project_path=str(project.expanduser().resolve()) if project else None,
        session_file_path=str(file.expanduser()) if file else None,
    )
    if state is None:
        typer.secho(f'Error: No transcript found for session {session_id}', fg=typer.colors.RED, err=True)
        watcher.close()
        raise typer.Exit(1)

    typer.echo(f'Watching {session_id} (Ctrl+C to stop)')
    last_label: str | None = None
    try:
        while True:
            try:
                update = subscription.get(timeout=0.5)
            except queue.Empty:
                continue
            label = update.state.status.label
            if label == last_label:
                continue
            last_label = label
            stamp = update.state.last_activity_at.strftime('%H:%M:%S') if update.state.last_activity_at else '--:--:--'
            typer.echo(
                f'[{stamp}] {label}  '
                f'(messages: {update.state.message_count}, output tokens: {update.state.total_output_tokens:,})'
            )
    except KeyboardInterrupt:
        typer.echo()
    finally:
        subscription.close()
        watcher.close()


@app.command()
def search(
    query: str = typer.Argument(..., help='Text to find in slug, path, branch or first prompt'),
    provider: str = ProviderOption,
    filter_path: Path | None = typer.Option(None, '--filter-path', help='Only sessions under this directory'),
    as_json: bool = typer.Option(False, '--json', help='Print results as JSON'),
    verbose: bool = typer.Option(False, '--verbose', '-v', help='Verbose output'),
) -> None:
    """Search past sessions."""
    asyncio.run(
        _search_async(
            query,
            provider,  # type: ignore[arg-type]
            str(filter_path.expanduser().resolve()) if filter_path else None,
            as_json,
            verbose,
        )
    )


async def _scan_async(repos: list[str], provider: ProviderKind, verbose: bool) -> None:
    configure_logging(verbose)
    logger = CLILogger(verbose=verbose)
    try:
        service = SessionMonitorService(
            build_provider(provider, settings),
            store=JsonMappingStore(settings.STATE_DIR),
            log=logger,
        )
        await service.add_repositories(repos)
        repositories = service.get_repositories()
        typer.echo(json.dumps([repository.model_dump(mode='json') for repository in repositories], indent=2))
    except SessionMonitorError as e:
        typer.secho(f'Error: {e}', fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    except Exception as e:
        await logger.error(f'Scan failed: {e}')
        if verbose:
            traceback.print_exc()
        raise typer.Exit(1)


async def _search_async(
    query: str, provider: Literal['claude', 'codex'], filter_path: str | None, as_json: bool, verbose: bool
) -> None:
    configure_logging(verbose)
    service = SessionSearchService(build_provider(provider, settings))
    results = await service.search(query, filter_path=filter_path)

    if as_json:
        typer.echo(json.dumps([result.model_dump(mode='json') for result in results], indent=2))
        return

    if not results:
        typer.echo(f'No sessions match {query!r} ({service.indexed_session_count()} indexed)')
        return

    for result in results:
        typer.secho(f'{result.slug}  {result.id}', bold=True)
        typer.echo(f'  {result.repository_name}: {result.project_path}')
        if result.git_branch:
            typer.echo(f'  Branch: {result.git_branch}')
        typer.echo(f'  Matched {result.matched_field}: {result.matched_text[:80]}')
        typer.echo(f'  Last activity: {result.last_activity_at.astimezone():%Y-%m-%d %H:%M}')


def main() -> None:
    """Entry point for CLI."""
    app()


if __name__ == '__main__':
    main()
