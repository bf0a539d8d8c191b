"""Main Typer application — global options and command registration.

Entry point: ``vanillakit`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.logging import RichHandler

from vanillakit import __version__
from vanillakit.cli.commands.cache import cache_app
from vanillakit.cli.commands.prepare import prepare_cmd
from vanillakit.cli.commands.resolve import resolve_cmd
from vanillakit.cli.commands.versions import versions_cmd
from vanillakit.config import KitConfig

app = typer.Typer(
    name="vanillakit",
    help="vanillakit: resolve, cache and transform game jars.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

app.command(name="versions", help="List versions from the version index.")(versions_cmd)
app.command(name="resolve", help="Show the artifacts of one version.")(resolve_cmd)
app.command(name="prepare", help="Run the transform pipeline for a version.")(prepare_cmd)
app.add_typer(cache_app, name="cache", help="Inspect or maintain the artifact cache.")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"vanillakit {__version__}")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    """Route library logging through Rich, once per process."""
    root = logging.getLogger()
    if not any(isinstance(h, RichHandler) for h in root.handlers):
        root.addHandler(RichHandler(show_path=False, rich_tracebacks=True))
    root.setLevel(level.upper())


@app.callback()
def main_callback(
    ctx: typer.Context,
    cache_root: Optional[Path] = typer.Option(
        None,
        "--cache-root",
        "-C",
        help="Artifact cache directory (default: VANILLAKIT_CACHE_ROOT or .vanillakit/cache).",
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Logging level (DEBUG, INFO, WARNING, ERROR).",
    ),
    offline: bool = typer.Option(
        False,
        "--offline",
        help="Never query the network for manifests; use cached or local ones only.",
    ),
    backend: Optional[str] = typer.Option(
        None,
        "--backend",
        help="HTTP backend: httpx or requests.",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    """Build the run configuration shared by every command."""
    overrides: dict[str, object] = {}
    if cache_root is not None:
        overrides["cache_root"] = cache_root
    if log_level is not None:
        overrides["log_level"] = log_level
    if offline:
        overrides["offline"] = True
    if backend is not None:
        overrides["http_backend"] = backend
    config = KitConfig(**overrides)
    configure_logging(config.log_level)
    ctx.obj = config


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
