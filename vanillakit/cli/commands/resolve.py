"""``vanillakit resolve VERSION`` — show a version's artifact descriptors."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.table import Table

from vanillakit.cli.commands import console, open_orchestrator


def resolve_cmd(
    ctx: typer.Context,
    version_id: str = typer.Argument(
        ...,
        help="Version id, or 'release' / 'snapshot' for the latest one.",
    ),
    manifest_file: Optional[Path] = typer.Option(
        None,
        "--manifest",
        "-m",
        exists=True,
        dir_okay=False,
        help="Local version descriptor to register before resolving.",
    ),
    libraries: bool = typer.Option(
        False,
        "--libraries",
        "-l",
        help="Also list the libraries that apply to this machine.",
    ),
) -> None:
    """Resolve a version and print its downloadable artifacts."""
    with open_orchestrator(ctx) as orchestrator:
        if manifest_file is not None:
            orchestrator.resolver.inject(manifest_file)
        manifest = orchestrator.resolver.resolve(version_id)
        descriptors = list(manifest.artifacts().values())
        if libraries:
            descriptors.extend(manifest.libraries_for())

    table = Table(title=f"{manifest.id} ({manifest.type})")
    table.add_column("Role", style="cyan")
    table.add_column("Id")
    table.add_column("Size", justify="right")
    table.add_column("Hash", style="dim")
    table.add_column("URL", overflow="fold")
    for descriptor in descriptors:
        table.add_row(
            descriptor.role,
            descriptor.id,
            "" if descriptor.size is None else f"{descriptor.size:,}",
            str(descriptor.hash) if descriptor.hash else "-",
            descriptor.url,
        )
    console.print(table)
    if manifest.java_version is not None:
        console.print(f"[dim]Java {manifest.java_version.major_version} required.[/dim]")
