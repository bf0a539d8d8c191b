"""``vanillakit cache`` — inspect or maintain the artifact cache."""

from __future__ import annotations

import typer
from rich.table import Table

from vanillakit.cli.commands import console, get_config
from vanillakit.core.artifact_store import ArtifactCache

cache_app = typer.Typer(no_args_is_help=True, add_completion=False)


def _open_cache(ctx: typer.Context) -> ArtifactCache:
    config = get_config(ctx)
    return ArtifactCache(config.cache_root, lock_timeout=config.lock_timeout_seconds)


@cache_app.command(name="ls", help="List cached artifacts.")
def ls_cmd(ctx: typer.Context) -> None:
    cache = _open_cache(ctx)
    entries = list(cache.entries())
    if not entries:
        console.print(f"[dim]Cache at {cache.root} is empty.[/dim]")
        return

    table = Table(title=f"Cache {cache.root}")
    table.add_column("Key", style="cyan")
    table.add_column("Role")
    table.add_column("Size", justify="right")
    table.add_column("Created", style="dim")
    table.add_column("Diagnostics", justify="right")
    total = 0
    for meta in entries:
        total += meta.size
        table.add_row(
            meta.key.short(),
            meta.key.role,
            f"{meta.size:,}",
            meta.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            str(len(meta.diagnostics)),
        )
    console.print(table)
    console.print(f"[dim]{len(entries)} artifacts, {total:,} bytes[/dim]")


@cache_app.command(name="verify", help="Re-hash every artifact and evict corrupt ones.")
def verify_cmd(ctx: typer.Context) -> None:
    report = _open_cache(ctx).verify_all()
    console.print(f"Checked {report.checked}, valid {report.valid}.")
    if report.evicted:
        for digest in report.evicted:
            console.print(f"[yellow]Evicted[/yellow] {digest}")
        raise typer.Exit(code=1)


@cache_app.command(name="clear", help="Delete every cached artifact and document.")
def clear_cmd(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    cache = _open_cache(ctx)
    if not yes:
        typer.confirm(f"Delete everything under {cache.root}?", abort=True)
    removed = cache.clear()
    console.print(f"Removed {removed} artifacts.")
