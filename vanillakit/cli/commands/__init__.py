"""CLI subcommands and the helpers they share."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

import typer
from rich.console import Console

from vanillakit.config import KitConfig
from vanillakit.core.errors import VanillaKitError
from vanillakit.core.orchestrator import PipelineOrchestrator

console = Console()


def get_config(ctx: typer.Context) -> KitConfig:
    """The KitConfig built by the app callback (defaults when invoked bare)."""
    if isinstance(ctx.obj, KitConfig):
        return ctx.obj
    return KitConfig()


@contextmanager
def open_orchestrator(ctx: typer.Context) -> Iterator[PipelineOrchestrator]:
    """Yield an orchestrator; library errors become a red message and exit 1."""
    orchestrator = PipelineOrchestrator(get_config(ctx))
    try:
        yield orchestrator
    except VanillaKitError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc
    finally:
        orchestrator.close()
