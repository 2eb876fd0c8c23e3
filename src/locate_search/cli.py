"""Command line interface for Locate Search."""

import asyncio
import logging
import sys
import threading
from pathlib import Path
from typing import List, Optional, Tuple

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import ConfigManager, LocateConfig
from .exceptions import ConfigurationError, LocateSearchError
from .execution.paths import is_remote
from .models import SurfaceState
from .services.process_orchestrator import ProcessOrchestrator
from .services.search_pipeline import ConfirmCallback, SearchContext, SearchPipeline
from .services.surface import ResultSurface
from .utils.surface_renderer import SurfaceConsoleRenderer

logger = logging.getLogger(__name__)

console = Console()


def run_async(coro):
    """
    Run an async coroutine, handling both new event loops and existing ones.

    Args:
        coro: The coroutine to run

    Returns:
        The result of the coroutine
    """
    try:
        asyncio.get_running_loop()
        # Already inside a loop (e.g. under a test runner): use a fresh one
        # on a separate thread

        result = None
        exception = None

        def run_in_new_loop():
            nonlocal result, exception
            try:
                new_loop = asyncio.new_event_loop()
                asyncio.set_event_loop(new_loop)
                try:
                    result = new_loop.run_until_complete(coro)
                finally:
                    new_loop.close()
            except Exception as e:
                exception = e

        thread = threading.Thread(target=run_in_new_loop)
        thread.start()
        thread.join()

        if exception:
            raise exception
        return result

    except RuntimeError:
        # No event loop running, we can use asyncio.run()
        return asyncio.run(coro)


def _validate_pattern(value: str) -> str:
    if not value.strip():
        raise click.UsageError("Pattern must not be empty")
    return value


def _validate_pattern_argument(ctx, param, value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    try:
        return _validate_pattern(value)
    except click.UsageError as e:
        raise click.BadParameter(e.message, ctx=ctx, param=param)


def _prompt_for_pattern(history: List[str]) -> str:
    """Ask for a pattern, re-prompting on empty input."""
    return click.prompt(
        "Locate (pattern)",
        default=history[0] if history else None,
        value_proc=_validate_pattern,
    )


def _confirm_build(message: str) -> bool:
    return click.confirm(message, default=False)


def _assume_yes(message: str) -> bool:
    console.print(f"ℹ️  {message} yes", style="dim", markup=False)
    return True


def _display_config(config: LocateConfig, config_path: Path) -> None:
    table = Table(title="Locate Search Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    source = str(config_path) if config_path.exists() else "defaults"
    table.add_row("Source", source)
    table.add_row("switches", config.switches)
    table.add_row("prunepaths", " ".join(config.prunepaths) or "(none)")
    table.add_row("locate_executable", config.locate_executable)
    table.add_row("updatedb_executable", config.updatedb_executable)
    table.add_row("shell", config.shell)
    table.add_row("chunk_size", str(config.chunk_size))
    table.add_row("ssh.executable", config.ssh.executable)
    table.add_row("ssh.control_persist", f"{config.ssh.control_persist}s")
    table.add_row("ssh.control_dir", str(config.ssh.control_dir))
    console.print(table)


def _apply_overrides(
    config: LocateConfig, switches: Optional[str], prune: Tuple[str, ...]
) -> LocateConfig:
    overrides = {}
    if switches is not None:
        overrides["switches"] = switches
    if prune:
        overrides["prunepaths"] = list(prune)
    if not overrides:
        return config
    return LocateConfig(**{**config.model_dump(), **overrides})


async def _run_session(
    context: SearchContext,
    root: str,
    pattern: str,
    confirm: ConfirmCallback,
    interactive: bool,
) -> Optional[ResultSurface]:
    """Run one search, then optionally keep refreshing or searching again."""
    orchestrator = ProcessOrchestrator(chunk_size=context.config.chunk_size)
    pipeline = SearchPipeline(context, orchestrator, confirm=confirm)
    renderer = SurfaceConsoleRenderer(console)
    context.surfaces.subscribe(renderer)
    try:
        surface = await pipeline.run(root, pattern)
        await pipeline.wait_idle()

        while interactive and surface is not None:
            action = click.prompt(
                "[r]efresh, [n]ew search or [q]uit",
                type=click.Choice(["r", "n", "q"]),
                default="q",
                show_choices=False,
            )
            if action == "q":
                break
            if action == "r":
                surface = await surface.refresh()
            else:
                pattern = _prompt_for_pattern(context.history)
                surface = await pipeline.run(root, pattern)
            await pipeline.wait_idle()
    finally:
        context.surfaces.unsubscribe(renderer)

    return surface


@click.command()
@click.argument("pattern", required=False, callback=_validate_pattern_argument)
@click.option(
    "--root",
    "-r",
    help="Directory whose locate.db is searched (default: current directory). "
    "Remote directories use the /ssh:host:/path form.",
)
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="Config file path",
)
@click.option("--switches", help="Switches passed to ls (default: -dilsb)")
@click.option(
    "--prune",
    multiple=True,
    help="Directory below the root to skip when building the index (repeatable)",
)
@click.option(
    "--yes", "-y", "assume_yes", is_flag=True, help="Build a missing index without asking"
)
@click.option(
    "--interactive",
    "-i",
    is_flag=True,
    help="After each search, offer to refresh or search again",
)
@click.option("--show-config", is_flag=True, help="Display effective configuration")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.version_option(version=__version__, prog_name="locate-search")
def cli(
    pattern: Optional[str],
    root: Optional[str],
    config_path: Optional[str],
    switches: Optional[str],
    prune: Tuple[str, ...],
    assume_yes: bool,
    interactive: bool,
    show_config: bool,
    verbose: bool,
):
    """Find files by name in a locate database and list them.

    \b
    The database is ROOT/locate.db. If it does not exist you are asked
    whether to build it with updatedb first.

    \b
    EXAMPLES:
      locate-search '*.py'
      locate-search --root /ssh:build-host:/srv/data/ report
      locate-search -i -y --prune node_modules README
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s:%(name)s:%(message)s",
    )

    root = root or str(Path.cwd())
    if config_path:
        config_manager = ConfigManager(Path(config_path))
    elif is_remote(root):
        config_manager = ConfigManager.create_with_backtrack()
    else:
        config_manager = ConfigManager.create_with_backtrack(Path(root))

    try:
        config = _apply_overrides(config_manager.get_config(), switches, prune)
    except ConfigurationError as e:
        console.print(f"❌ {e}", style="red", markup=False)
        sys.exit(1)

    if show_config:
        _display_config(config, config_manager.config_path)
        return

    context = SearchContext(config=config)
    if pattern is None:
        pattern = _prompt_for_pattern(context.history)

    confirm = _assume_yes if assume_yes else _confirm_build
    try:
        surface = run_async(_run_session(context, root, pattern, confirm, interactive))
    except LocateSearchError as e:
        console.print(f"❌ {e}", style="red", markup=False)
        sys.exit(1)

    if surface is None:
        console.print("ℹ️  No locate database, nothing searched", style="yellow")
        sys.exit(1)
    if surface.state != SurfaceState.DONE:
        sys.exit(1)


def main():
    cli()


if __name__ == "__main__":
    main()
