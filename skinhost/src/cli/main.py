import asyncio
import json
import logging
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from skinhost.src.services.config import get_config
from skinhost.src.services.events import Event, Severity, get_event_bus
from skinhost.src.services.skin import (
    LoadResult,
    Node,
    OutcomeKind,
    SkinError,
    SkinLoader,
)

logger = logging.getLogger(__name__)

APP_HELP = """
skinhost: load packaged skins and run their scripts.

A skin archive holds a layout document (skin.xml) and compiled scripts.
Loading resolves the layout, runs every script against its enclosing
group, and reports what happened.

EXAMPLES:
  skinhost inspect skins/bento.wal
  skinhost inspect https://example.com/skins/bento.wal --json
  skinhost tree skins/bento.wal --depth 3
"""

app = typer.Typer(name="skinhost", help=APP_HELP, no_args_is_help=True)

OUTCOME_STYLES = {
    OutcomeKind.EXECUTED: "[green]✓ executed[/green]",
    OutcomeKind.SKIPPED: "[dim]- skipped[/dim]",
    OutcomeKind.FAILED: "[red]✗ failed[/red]",
}


EVENT_STYLES = {
    Severity.WARNING: "yellow",
    Severity.ERROR: "red",
    Severity.CRITICAL: "bold red",
}


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _event_printer(console: Console):
    """Handler that writes each load event as one line on ``console``."""

    def print_event(event: Event) -> None:
        style = EVENT_STYLES.get(event.severity, "dim")
        details = " ".join(f"{key}={value}" for key, value in event.payload.items())
        console.print(f"[{style}]{event.type}[/{style}] {escape(details)}", highlight=False)

    return print_event


def _load(source: str) -> LoadResult:
    loader = SkinLoader(config=get_config())
    if source.startswith(("http://", "https://")):
        return asyncio.run(loader.load_url(source))
    return asyncio.run(loader.load_path(source))


def _load_or_exit(source: str, console: Console, verbose: bool = False) -> LoadResult:
    bus = get_event_bus()
    printer = _event_printer(Console(stderr=True)) if verbose else None
    if printer is not None:
        bus.subscribe_all(printer)
    try:
        return _load(source)
    except SkinError as e:
        console.print(f"[red]Error loading {source}: {e}[/red]")
        raise typer.Exit(code=1)
    finally:
        if printer is not None:
            bus.unsubscribe_all(printer)


@app.command()
def inspect(
    source: str = typer.Argument(..., help="Skin archive path or http(s) URL"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging and print load events"),
):
    """Load a skin and list what happened to each of its scripts."""
    _configure_logging(verbose)
    console = Console()
    result = _load_or_exit(source, console, verbose)
    scripts = result.report.scripts

    if json_output:
        print(json.dumps({
            "generation": result.ticket.generation,
            "published": result.published,
            "scripts": [
                {
                    "file": s.file,
                    "outcome": s.kind.value,
                    "path": list(s.path),
                    "scope": s.scope_tag,
                    "scope_id": s.scope_id,
                    "error": s.error,
                }
                for s in scripts
            ],
        }, indent=2))
        if result.report.failed:
            raise typer.Exit(code=2)
        return

    if not scripts:
        console.print("[yellow]No scripts found in skin.[/yellow]")
        return

    table = Table(title=f"Scripts in {source}", show_header=True)
    table.add_column("File", style="cyan")
    table.add_column("Outcome")
    table.add_column("Scope")
    table.add_column("Details")

    for script in scripts:
        scope = f"{script.scope_tag} {script.scope_id or ''}".strip() if script.scope_tag else ""
        table.add_row(
            script.file,
            OUTCOME_STYLES.get(script.kind, script.kind.value),
            scope,
            script.error or "",
        )

    console.print(table)
    counts = result.report.counts
    console.print(
        f"[dim]{counts[OutcomeKind.EXECUTED]} executed, {counts[OutcomeKind.SKIPPED]} skipped, "
        f"{counts[OutcomeKind.FAILED]} failed, {counts[OutcomeKind.PRUNED]} templates pruned[/dim]"
    )

    if result.report.failed:
        raise typer.Exit(code=2)


def _add_branch(branch: Tree, node: Node, depth: int, max_depth: Optional[int]) -> None:
    for child in node.children:
        label = f"[bold]{child.name}[/bold]"
        if child.element_id:
            label += f" [cyan]{child.element_id}[/cyan]"
        if child.file:
            label += f" [dim]{child.file}[/dim]"
        sub = branch.add(label)
        if max_depth is None or depth < max_depth:
            _add_branch(sub, child, depth + 1, max_depth)


@app.command()
def tree(
    source: str = typer.Argument(..., help="Skin archive path or http(s) URL"),
    depth: Optional[int] = typer.Option(None, "--depth", "-d", help="Maximum depth to print"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging and print load events"),
):
    """Load a skin and print its bound layout tree."""
    _configure_logging(verbose)
    console = Console()
    result = _load_or_exit(source, console, verbose)

    if result.tree is None:
        console.print("[yellow]Layout tree is empty.[/yellow]")
        return

    root = Tree(f"[bold]{result.tree.name}[/bold]")
    _add_branch(root, result.tree, 1, depth)
    console.print(root)


if __name__ == "__main__":
    app()
