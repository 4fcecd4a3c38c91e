"""CLI entry point for pullmirror.

This module provides the Typer-based CLI with commands:
- pullmirror validate: Validate configuration (and optionally the token)
- pullmirror sync-prs: Sync the list of open pull requests
- pullmirror sync PR_ID: Sync every resource of one pull request
- pullmirror watch [PR_ID...]: Keep checks fresh until interrupted
- pullmirror status: Show stored pull requests and row counts
- pullmirror clear-etags: Forget stored validators to force full refetches

Exit codes:
- 0: Success
- 1: Configuration error
- 2: Authentication error
- 3: Partial failure
- 4: Fatal error
"""

from __future__ import annotations

import asyncio
import contextlib
import signal
from enum import IntEnum
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer

from pullmirror import __version__
from pullmirror.config import load_config
from pullmirror.config.loader import ConfigError
from pullmirror.github import (
    ConditionalRequestClient,
    EnvironmentCredentialProvider,
    RateLimitTracker,
    validate_token,
)
from pullmirror.github.auth import AuthenticationError
from pullmirror.logging import configure_logging, get_logger
from pullmirror.state import (
    CheckRow,
    CommentRow,
    CommitRow,
    ETagCache,
    ModifiedFileRow,
    ReviewRow,
    SyncStore,
)
from pullmirror.sync import (
    BackgroundSyncer,
    LoggingSink,
    PullRequestSyncer,
    sync_pull_request_details,
    sync_pull_requests,
)
from pullmirror.sync.resources import ENDPOINT_KINDS

if TYPE_CHECKING:
    import structlog

    from pullmirror.config.schema import Config
    from pullmirror.sync import DetailSyncResult, MonitoringData, PullRequestSyncResult


class ExitCode(IntEnum):
    """CLI exit codes."""

    SUCCESS = 0
    CONFIG_ERROR = 1
    AUTH_ERROR = 2
    PARTIAL_FAILURE = 3
    FATAL_ERROR = 4


app = typer.Typer(
    name="pullmirror",
    help="pullmirror - keep a local mirror of your GitHub pull requests fresh.",
    add_completion=False,
    no_args_is_help=True,
)

ConfigOption = Annotated[
    Path | None,
    typer.Option(
        "--config",
        "-c",
        help="Path to configuration file.",
    ),
]
StateDirOption = Annotated[
    Path | None,
    typer.Option(
        "--state-dir",
        help="State directory path (overrides state.directory).",
    ),
]
VerboseOption = Annotated[
    bool,
    typer.Option(
        "--verbose",
        "-v",
        help="Enable debug logging.",
    ),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"pullmirror {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """pullmirror - local-first GitHub pull request mirror."""


def _fail(message: str, code: ExitCode) -> typer.Exit:
    typer.echo(typer.style(f"✗ {message}", fg=typer.colors.RED), err=True)
    return typer.Exit(code)


def _load_config(config: Path | None) -> Config:
    try:
        return load_config(config, required=False)
    except ConfigError as e:
        raise _fail(f"Configuration error: {e}", ExitCode.CONFIG_ERROR) from e


def _open_store(cfg: Config, state_dir: Path | None) -> SyncStore:
    if state_dir is not None:
        return SyncStore(state_dir / cfg.state.database_name)
    return SyncStore(cfg.state.get_database_path())


def _require_token(credentials: EnvironmentCredentialProvider) -> None:
    if not credentials.get_token():
        raise _fail(
            "GITHUB_TOKEN is not set. Export a personal access token with 'repo' scope.",
            ExitCode.AUTH_ERROR,
        )


def _client(
    cfg: Config,
    credentials: EnvironmentCredentialProvider,
    tracker: RateLimitTracker,
) -> ConditionalRequestClient:
    return ConditionalRequestClient.from_config(cfg.github, credentials, tracker)


@app.command()
def validate(
    config: ConfigOption = None,
    check_token: Annotated[
        bool,
        typer.Option(
            "--check-token",
            help="Also validate GITHUB_TOKEN against the API.",
        ),
    ] = False,
    verbose: VerboseOption = False,
) -> None:
    """Validate configuration without syncing.

    Loads the configuration file, expands environment variables,
    and validates against the schema. Exits with code 0 if valid,
    or code 1 if there are errors.
    """
    configure_logging(verbose=verbose, json_output=False)

    try:
        cfg = load_config(config)
    except ConfigError as e:
        raise _fail(str(e), ExitCode.CONFIG_ERROR) from e

    typer.echo(typer.style("✓ Configuration is valid", fg=typer.colors.GREEN))

    if verbose:
        typer.echo("\nConfiguration summary:")
        typer.echo(f"  API: {cfg.github.base_url}")
        typer.echo(
            f"  Intervals: {cfg.sync.running_checks_interval_seconds}s running / "
            f"{cfg.sync.idle_interval_seconds}s idle"
        )
        typer.echo(f"  Database: {cfg.state.get_database_path()}")

    if check_token:
        credentials = EnvironmentCredentialProvider()
        _require_token(credentials)
        try:
            info = asyncio.run(
                validate_token(credentials.get_token() or "", base_url=cfg.github.base_url)
            )
        except AuthenticationError as e:
            raise _fail(f"Authentication error: {e}", ExitCode.AUTH_ERROR) from e
        typer.echo(typer.style(f"✓ Token valid for {info['user']}", fg=typer.colors.GREEN))

    raise typer.Exit(ExitCode.SUCCESS)


@app.command("sync-prs")
def sync_prs(
    config: ConfigOption = None,
    state_dir: StateDirOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Sync open pull requests you authored, are assigned to, or review."""
    configure_logging(verbose=verbose, json_output=False)
    cfg = _load_config(config)
    credentials = EnvironmentCredentialProvider()
    _require_token(credentials)

    store = _open_store(cfg, state_dir)
    try:
        result = asyncio.run(_sync_prs(cfg, store, credentials))
    finally:
        store.close()

    typer.echo(f"Synced {result.synced} pull request(s)")
    if result.errors:
        for error in result.errors:
            typer.echo(typer.style(f"  {error}", fg=typer.colors.YELLOW))
        raise typer.Exit(ExitCode.PARTIAL_FAILURE)
    raise typer.Exit(ExitCode.SUCCESS)


async def _sync_prs(
    cfg: Config,
    store: SyncStore,
    credentials: EnvironmentCredentialProvider,
) -> PullRequestSyncResult:
    async with _client(cfg, credentials, RateLimitTracker()) as client:
        return await sync_pull_requests(client, store, LoggingSink())


@app.command()
def sync(
    pull_request_id: Annotated[str, typer.Argument(help="Pull request node id.")],
    config: ConfigOption = None,
    state_dir: StateDirOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Sync checks, commits, files, reviews and comments of one pull request."""
    configure_logging(verbose=verbose, json_output=False)
    cfg = _load_config(config)
    credentials = EnvironmentCredentialProvider()
    _require_token(credentials)

    store = _open_store(cfg, state_dir)
    try:
        result = asyncio.run(_sync_details(cfg, store, credentials, pull_request_id))
    except Exception as e:
        get_logger("pullmirror.cli").exception("Detail sync failed")
        raise _fail(f"Sync error: {e}", ExitCode.FATAL_ERROR) from e
    finally:
        store.close()

    if not result.success:
        for error in result.errors:
            typer.echo(typer.style(f"  {error}", fg=typer.colors.YELLOW))
        raise typer.Exit(ExitCode.PARTIAL_FAILURE)

    typer.echo(typer.style(f"✓ Synced {pull_request_id}", fg=typer.colors.GREEN))
    raise typer.Exit(ExitCode.SUCCESS)


async def _sync_details(
    cfg: Config,
    store: SyncStore,
    credentials: EnvironmentCredentialProvider,
    pull_request_id: str,
) -> DetailSyncResult:
    async with _client(cfg, credentials, RateLimitTracker()) as client:
        syncer = PullRequestSyncer(client, store, ETagCache(store))
        return await sync_pull_request_details(
            syncer,
            store,
            LoggingSink(),
            pull_request_id,
            spacing_seconds=cfg.sync.detail_sync_spacing_seconds,
        )


@app.command()
def watch(
    pull_request_ids: Annotated[
        list[str] | None,
        typer.Argument(help="Pull request node ids (default: every stored open one)."),
    ] = None,
    config: ConfigOption = None,
    state_dir: StateDirOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Keep checks of pull requests fresh until interrupted (Ctrl+C).

    Polls every couple of seconds while checks run and backs off when idle.
    """
    configure_logging(verbose=verbose)
    log = get_logger("pullmirror.cli")
    cfg = _load_config(config)
    credentials = EnvironmentCredentialProvider()

    store = _open_store(cfg, state_dir)
    try:
        ids = pull_request_ids or [pr.id for pr in store.list_pull_requests(state="OPEN")]
        if not ids:
            typer.echo("No pull requests to watch. Run 'pullmirror sync-prs' first.")
            raise typer.Exit(ExitCode.SUCCESS)

        monitoring = asyncio.run(_watch(cfg, store, credentials, ids, log))
    finally:
        store.close()

    failures = [record for record in monitoring.syncs if not record.success]
    typer.echo()
    typer.echo(typer.style("Watch stopped", bold=True))
    typer.echo(f"  Syncs: {len(monitoring.syncs)}")
    if failures:
        typer.echo(typer.style(f"  Failed syncs: {len(failures)}", fg=typer.colors.YELLOW))
        raise typer.Exit(ExitCode.PARTIAL_FAILURE)
    raise typer.Exit(ExitCode.SUCCESS)


async def _watch(
    cfg: Config,
    store: SyncStore,
    credentials: EnvironmentCredentialProvider,
    pull_request_ids: list[str],
    log: structlog.stdlib.BoundLogger,
) -> MonitoringData:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    tracker = RateLimitTracker()
    async with _client(cfg, credentials, tracker) as client:
        background = BackgroundSyncer(
            store,
            PullRequestSyncer(client, store, ETagCache(store)),
            credentials,
            LoggingSink(),
            tracker,
            config=cfg.sync,
        )
        for pull_request_id in pull_request_ids:
            background.mark_active(pull_request_id)

        log.info("Watching pull requests", count=len(pull_request_ids))
        background.start()
        try:
            await stop.wait()
        finally:
            background.stop()
            await background.wait_idle()

    return background.get_monitoring_data()


@app.command()
def status(
    config: ConfigOption = None,
    state_dir: StateDirOption = None,
) -> None:
    """Show stored pull requests with their active row counts."""
    cfg = _load_config(config)
    db_path = (
        state_dir / cfg.state.database_name if state_dir else cfg.state.get_database_path()
    )

    if not db_path.exists():
        typer.echo(
            typer.style(f"No database found at {db_path}", fg=typer.colors.YELLOW)
        )
        typer.echo("Run 'pullmirror sync-prs' to initialize.")
        raise typer.Exit(ExitCode.SUCCESS)

    store = SyncStore(db_path)
    try:
        pull_requests = store.list_pull_requests()

        typer.echo(typer.style("pullmirror status", bold=True))
        typer.echo("─" * 40)
        typer.echo(f"Database: {db_path}")
        typer.echo(f"Stored validators: {ETagCache(store).count()}")
        typer.echo()

        if not pull_requests:
            typer.echo("No pull requests stored.")
        for pr in pull_requests:
            typer.echo(
                typer.style(
                    f"{pr.repository_owner}/{pr.repository_name}#{pr.number}",
                    bold=True,
                )
                + f" {pr.title} [{pr.state}]"
            )
            counts = ", ".join(
                f"{label} {store.count_active(row_type, pr.id)}"
                for label, row_type in (
                    ("checks", CheckRow),
                    ("commits", CommitRow),
                    ("files", ModifiedFileRow),
                    ("reviews", ReviewRow),
                    ("comments", CommentRow),
                )
            )
            typer.echo(f"  {counts}")
            typer.echo(f"  details synced: {pr.details_synced_at or '(never)'}")
    finally:
        store.close()

    raise typer.Exit(ExitCode.SUCCESS)


@app.command("clear-etags")
def clear_etags(
    kind: Annotated[
        str | None,
        typer.Option(
            "--kind",
            help=f"Only clear one endpoint kind ({', '.join(ENDPOINT_KINDS)}).",
        ),
    ] = None,
    config: ConfigOption = None,
    state_dir: StateDirOption = None,
) -> None:
    """Forget stored validators so the next sync refetches everything."""
    if kind is not None and kind not in ENDPOINT_KINDS:
        raise _fail(
            f"Unknown endpoint kind '{kind}'. Choose from: {', '.join(ENDPOINT_KINDS)}",
            ExitCode.CONFIG_ERROR,
        )

    cfg = _load_config(config)
    store = _open_store(cfg, state_dir)
    try:
        etags = ETagCache(store)
        removed = etags.delete_all() if kind is None else etags.delete_by_endpoint_kind(kind)
    finally:
        store.close()

    typer.echo(f"Cleared {removed} validator(s)")
    raise typer.Exit(ExitCode.SUCCESS)
