"""``vanillakit versions`` — list versions from the version index."""

from __future__ import annotations

from typing import Optional

import typer
from rich.table import Table

from vanillakit.cli.commands import console, open_orchestrator
from vanillakit.models.manifest import VersionClassifier


def versions_cmd(
    ctx: typer.Context,
    version_type: Optional[VersionClassifier] = typer.Option(
        None,
        "--type",
        "-t",
        help="Only show versions of this type.",
    ),
    limit: int = typer.Option(
        20,
        "--limit",
        "-n",
        min=0,
        help="Maximum number of rows (0 for all).",
    ),
) -> None:
    """List versions, newest first, as published in the version index."""
    with open_orchestrator(ctx) as orchestrator:
        index = orchestrator.resolver.index()
        refs = orchestrator.resolver.versions(version_type)

    if not refs:
        console.print("[dim]No versions found.[/dim]")
        return

    table = Table(title="Versions")
    table.add_column("Id", style="cyan")
    table.add_column("Type")
    table.add_column("Released", style="dim")
    shown = refs if limit == 0 else refs[:limit]
    for ref in shown:
        marker = ""
        if ref.id == index.latest.release:
            marker = " [green](latest release)[/green]"
        elif ref.id == index.latest.snapshot:
            marker = " [yellow](latest snapshot)[/yellow]"
        table.add_row(ref.id + marker, ref.type, ref.release_time)
    console.print(table)
    if len(shown) < len(refs):
        console.print(f"[dim]{len(refs) - len(shown)} more; use --limit 0 to show all.[/dim]")
