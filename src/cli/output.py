"""CLI output formatters for Rich panels and JSON.

Provides human-readable Rich output (default) and machine-parseable
JSON output (--json flag). All formatting goes through these functions
so the CLI commands stay clean.
"""

import dataclasses
import json
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from src.services.chat_router import RouterResult
from src.services.outbox_relay import RelayStats

console = Console()

# Router state color map
STATE_COLORS = {
    "smalltalk": "white",
    "needs_inputs": "yellow",
    "awaiting_confirmation": "yellow",
    "preflight_block": "red",
    "task_queued": "green",
    "done": "cyan",
}


def _render(renderable: Any) -> str:
    with console.capture() as capture:
        console.print(renderable)
    return capture.get()


def format_router_result(result: RouterResult, as_json: bool = False) -> str:
    """Format a router outcome as a Rich panel or JSON.

    Args:
        result: Outcome of ChatRouter.route/resume/reject.
        as_json: If True, return the wire response as JSON.

    Returns:
        Formatted string output.
    """
    body = result.to_response()
    if as_json:
        return json.dumps(body, indent=2)

    color = STATE_COLORS.get(result.state, "white")
    lines = [f"[bold]State:[/bold]   [{color}]{result.state}[/{color}] ({result.outcome})"]
    if result.message:
        lines.append(f"[bold]Message:[/bold] {result.message}")
    if result.run_id:
        lines.append(f"[bold]Run:[/bold]     {result.run_id}")
    if result.confirmation_id:
        lines.append(f"[bold]Confirmation:[/bold] {result.confirmation_id}")
        lines.append(f"[bold]Expires:[/bold] {result.expires_at}")
    if result.errors:
        lines.append("")
        lines.append("[bold yellow]Missing or invalid inputs:[/bold yellow]")
        for name, error in sorted(result.errors.items()):
            lines.append(f"  - {name}: {error}")
    if result.details:
        lines.append("")
        lines.append("[bold red]Preflight:[/bold red]")
        for detail in result.details:
            lines.append(f"  - {detail}")

    return _render(Panel("\n".join(lines), title="Router", border_style=color))


def format_classification(text: str, intent: str | None, inputs: dict[str, Any]) -> str:
    """Format an intent classification as a small table."""
    table = Table(title="Classification", show_header=False)
    table.add_column("Key", style="bold")
    table.add_column("Value")
    table.add_row("Text", text)
    table.add_row("Intent", intent or "[dim]smalltalk[/dim]")
    for name, value in sorted(inputs.items()):
        table.add_row(f"  {name}", str(value))
    return _render(table)


def format_relay_stats(stats: RelayStats, as_json: bool = False) -> str:
    """Format outbox relay counts."""
    if as_json:
        return json.dumps(dataclasses.asdict(stats), indent=2)
    return (
        f"[green]{stats.delivered} delivered[/green], "
        f"[yellow]{stats.retried} retried[/yellow], "
        f"[red]{stats.failed} failed[/red]"
    )
