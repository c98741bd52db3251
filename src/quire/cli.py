"""CLI interface for quire.

Typer-based command-line interface with Rich output formatting.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from quire import __version__
from quire.exceptions import QuireError
from quire.project import ProjectManager
from quire.site import Site
from quire.watcher import Watcher, WatchOutcome

if TYPE_CHECKING:
    from quire.types import BuildSummary

__all__ = ["app"]

app = typer.Typer(
    name="quire",
    help="quire — builds a static site from templates, markdown and data files.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _project() -> ProjectManager:
    pm = ProjectManager(ProjectManager.find_project_root())
    if not pm.is_initialized:
        console.print("[yellow]No quire project found.[/yellow] Run [bold]quire init[/bold] first.")
        raise typer.Exit(code=1)
    return pm


def _print_summary(summary: BuildSummary) -> None:
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("metric", style="dim")
    table.add_column("value", style="bold")
    table.add_row("Scope", summary.scope)
    table.add_row("Rendered", str(summary.rendered))
    table.add_row("Copied", str(summary.copied))
    table.add_row("Removed", str(summary.removed))
    table.add_row("Skipped", str(summary.skipped))
    table.add_row("Time", f"{summary.duration:.2f}s")
    console.print(table)

    if summary.failures:
        failures = Table(title=f"{len(summary.failures)} page(s) failed", title_style="red")
        failures.add_column("page")
        failures.add_column("stage")
        failures.add_column("error")
        for failure in summary.failures:
            failures.add_row(failure.src, failure.stage, failure.message)
        console.print(failures)


@app.command()
def version() -> None:
    """Show quire version."""
    console.print(f"quire {__version__}")


@app.command()
def init(
    name: Annotated[
        str,
        typer.Option("--name", "-n", help="Site title"),
    ] = "",
) -> None:
    """Initialize a new quire project in the current directory."""
    pm = ProjectManager()
    try:
        config_path = pm.init(name=name)
    except QuireError as e:
        console.print(f"[red]Failed to initialize project:[/red] {e}")
        raise typer.Exit(code=1) from e

    console.print(f"[green]Initialized quire project[/green] at {pm.root}")
    console.print("\nCreated:")
    console.print(f"  {config_path}")
    console.print(f"  {pm.manifest_path}")

    console.print("\nNext steps:")
    console.print("  quire build           Build the site")
    console.print("  quire watch           Rebuild on every change")


@app.command()
def status() -> None:
    """Show project status: pages built, last build, configuration."""
    pm = ProjectManager(ProjectManager.find_project_root())
    try:
        st = pm.status()
    except QuireError as e:
        console.print(f"[red]Cannot read project:[/red] {e}")
        raise typer.Exit(code=1) from e

    if not st.initialized:
        console.print("[yellow]No quire project found.[/yellow] Run [bold]quire init[/bold] first.")
        raise typer.Exit(code=1)

    console.print(f"[bold]quire project:[/bold] {st.root.name}")

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("metric", style="dim")
    table.add_column("value", style="bold")
    if st.config:
        table.add_row("Source", st.config.site.src)
        table.add_row("Output", st.config.site.dest)
        table.add_row("Plugins", ", ".join(st.config.plugins.use) or "-")
    table.add_row("Pages", str(st.page_count))
    table.add_row("Last build", st.last_build or "never")
    console.print(table)

    if st.page_count == 0:
        console.print("\n[dim]Nothing built yet. Run [bold]quire build[/bold] to start.[/dim]")


@app.command()
def build(
    incremental: Annotated[
        bool,
        typer.Option("--incremental", "-i", help="Only rebuild what changed since the last build"),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log build stages"),
    ] = False,
) -> None:
    """Build the site once."""
    _setup_logging(verbose)
    pm = _project()

    try:
        site = Site.from_project(pm.root)
        summary = asyncio.run(site.build(incremental=incremental or None))
    except QuireError as e:
        console.print(f"[red]Build failed:[/red] {e}")
        raise typer.Exit(code=1) from e

    _print_summary(summary)
    if not summary.ok:
        raise typer.Exit(code=1)
    console.print(f"\n[green]Built[/green] {site.dest_dir}")


async def _watch_session(pm: ProjectManager) -> WatchOutcome:
    site = Site.from_project(pm.root)
    _print_summary(await site.build())
    console.print(f"[green]Watching[/green] {pm.root} [dim](Ctrl+C to stop)[/dim]")
    return await Watcher(site, on_rebuild=_print_summary).run()


@app.command()
def watch(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log build stages"),
    ] = False,
) -> None:
    """Build the site, then rebuild incrementally on every change."""
    _setup_logging(verbose)
    pm = _project()

    while True:
        try:
            outcome = asyncio.run(_watch_session(pm))
        except KeyboardInterrupt:
            console.print("\n[dim]Stopped.[/dim]")
            return
        except QuireError as e:
            console.print(f"[red]Build failed:[/red] {e}")
            raise typer.Exit(code=1) from e

        if outcome is not WatchOutcome.RESTART:
            return
        console.print("[yellow]Configuration changed, restarting[/yellow]")
        logger.info("Restarting watch session")
