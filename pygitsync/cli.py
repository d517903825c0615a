"""CLI interface for PyGitSync."""

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

import click

from .config import get_config_path, load_configuration
from .exceptions import GitSyncConfigError, GitSyncError
from .output import OutputFormatter
from .sync import SyncEngine, SyncMode
from .utils import format_epoch_millis, format_size

logger = logging.getLogger(__name__)


def _get_engine(ctx: Any) -> SyncEngine:
    """Build a sync engine from the CLI context, exiting on config errors."""
    out: OutputFormatter = ctx.obj["out"]
    try:
        config = load_configuration(ctx.obj["config_path"])
    except GitSyncConfigError as e:
        out.error(str(e))
        ctx.exit(1)
    return SyncEngine(config, ctx.obj["vault"], max_workers=ctx.obj["workers"])


def _require_configured(ctx: Any, engine: SyncEngine) -> None:
    out: OutputFormatter = ctx.obj["out"]
    if not engine.is_configured():
        out.error(
            "Please configure GitHub settings first (username, token, repository). "
            f"Use {get_config_path()} or GITSYNC_* environment variables."
        )
        ctx.exit(1)


async def _invoke(engine: SyncEngine, operation: str) -> Any:
    try:
        return await getattr(engine, operation)()
    finally:
        await engine.aclose()


def _run_operation(ctx: Any, mode: SyncMode) -> None:
    out: OutputFormatter = ctx.obj["out"]
    engine = _get_engine(ctx)
    _require_configured(ctx, engine)

    if not out.quiet and not out.json_output:
        out.info(
            f"{mode.value.capitalize()}: {engine.vault_path} <-> {engine.state_key}"
        )

    try:
        result = asyncio.run(_invoke(engine, mode.value))
    except KeyboardInterrupt:
        out.warning("\nSync cancelled by user")
        ctx.exit(130)
    except GitSyncError as e:
        out.error(f"{mode.value.capitalize()} failed: {e}")
        if e.partial_result is not None and e.partial_result.changed:
            out.print_result(mode.value, e.partial_result)
        ctx.exit(1)

    out.print_result(mode.value, result)


@click.group()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Settings file (default: ~/.config/pygitsync/config.json)",
)
@click.option(
    "--vault",
    type=click.Path(file_okay=False, path_type=Path),
    envvar="GITSYNC_VAULT",
    default=".",
    show_default=True,
    help="Local vault directory",
)
@click.option(
    "--workers",
    type=click.IntRange(1, 32),
    default=4,
    show_default=True,
    help="Concurrent local file reads/writes",
)
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.version_option()
@click.pass_context
def main(
    ctx: Any,
    config_path: Optional[Path],
    vault: Path,
    workers: int,
    quiet: bool,
    json: bool,
    verbose: bool,
) -> None:
    """PyGitSync - Sync a local vault with a GitHub repository."""
    # Store settings in context for subcommands to access
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["vault"] = vault
    ctx.obj["workers"] = workers
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)

    # Configure logging based on verbose flag
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        # Enable debug logging for pygitsync modules
        logging.getLogger("pygitsync").setLevel(logging.DEBUG)
    else:
        # Set default logging level to WARNING to suppress debug/info messages
        logging.basicConfig(level=logging.WARNING)


@main.command()
@click.pass_context
def verify(ctx: Any) -> None:
    """Verify GitHub credentials and repository access."""
    out: OutputFormatter = ctx.obj["out"]
    engine = _get_engine(ctx)
    _require_configured(ctx, engine)

    ok = asyncio.run(_invoke(engine, "verify_connection"))
    if out.json_output:
        out.output_json({"connected": ok, "repository": engine.config.full_name})
        if not ok:
            ctx.exit(1)
        return
    if ok:
        out.success("✓ Connection successful!")
    else:
        out.error("✗ Connection failed. Check your credentials.")
        ctx.exit(1)


@main.command()
@click.pass_context
def status(ctx: Any) -> None:
    """Show configuration state and the last sync time."""
    out: OutputFormatter = ctx.obj["out"]
    engine = _get_engine(ctx)
    config = engine.config
    state = engine.load_state()
    tracked_size = sum(entry.size for entry in state.files.values())

    if out.json_output:
        out.output_json(
            {
                "configured": engine.is_configured(),
                "repository": config.full_name,
                "branch": config.branch,
                "vault": str(engine.vault_path),
                "tracked_files": len(state.files),
                "tracked_bytes": tracked_size,
                "last_sync": state.last_sync,
            }
        )
        return

    out.print_summary(
        "PyGitSync Status",
        [
            ("Configured", "yes" if engine.is_configured() else "no"),
            ("Repository", config.full_name),
            ("Branch", config.branch),
            ("Vault", str(engine.vault_path)),
            ("Excluded folders", ", ".join(config.excluded_folders) or "-"),
            ("Excluded files", ", ".join(config.excluded_files) or "-"),
            (
                "Tracked files",
                f"{len(state.files)} ({format_size(tracked_size)})",
            ),
            ("Last sync", format_epoch_millis(state.last_sync)),
        ],
    )


@main.command()
@click.pass_context
def push(ctx: Any) -> None:
    """Upload all local changes to GitHub in one commit."""
    _run_operation(ctx, SyncMode.PUSH)


@main.command()
@click.pass_context
def pull(ctx: Any) -> None:
    """Download all changes from GitHub."""
    _run_operation(ctx, SyncMode.PULL)


@main.command()
@click.pass_context
def sync(ctx: Any) -> None:
    """Push local changes, then pull remote changes."""
    _run_operation(ctx, SyncMode.SYNC)


@main.command()
@click.option(
    "--mode",
    "-m",
    type=click.Choice([m.value for m in SyncMode]),
    default=SyncMode.SYNC.value,
    show_default=True,
    help="Operation to preview",
)
@click.pass_context
def plan(ctx: Any, mode: str) -> None:
    """Show what an operation would do without changing anything."""
    out: OutputFormatter = ctx.obj["out"]
    engine = _get_engine(ctx)
    _require_configured(ctx, engine)

    async def run_plan() -> Any:
        try:
            return await engine.plan(SyncMode.from_string(mode))
        finally:
            await engine.aclose()

    try:
        actions = asyncio.run(run_plan())
    except GitSyncError as e:
        out.error(f"Planning failed: {e}")
        ctx.exit(1)

    if not out.json_output:
        out.info(f"Sync plan ({mode}):")
    out.print_actions(actions)


if __name__ == "__main__":
    main()
