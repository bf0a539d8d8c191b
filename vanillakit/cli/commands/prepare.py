"""``vanillakit prepare VERSION`` — run the transform pipeline for a version.

Resolves the version, runs (or reuses from cache) every stage needed for
the target role, prints a per-stage table and any diagnostics, and
optionally exports the final artifact.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.table import Table

from vanillakit.cli.commands import console, open_orchestrator
from vanillakit.models.artifacts import SOURCES_JAR, ContentHash
from vanillakit.models.reports import PipelineResult, Severity
from vanillakit.models.stages import DecompileConfig, MappingSelection, PipelineRequest, Platform

_SEVERITY_STYLE = {
    Severity.INFO: "dim",
    Severity.WARNING: "yellow",
    Severity.ERROR: "red",
}


def parse_mapping_option(value: str) -> MappingSelection:
    """Parse ``PROVIDER[=URL[#ALGO:DIGEST]]`` into a MappingSelection."""
    provider, sep, rest = value.partition("=")
    provider = provider.strip()
    if not provider:
        raise typer.BadParameter(f"Missing provider in {value!r}")
    if not sep:
        return MappingSelection(provider=provider)
    url, _, digest = rest.partition("#")
    content_hash = None
    if digest:
        try:
            content_hash = ContentHash.parse(digest)
        except ValueError as exc:
            raise typer.BadParameter(str(exc)) from exc
    return MappingSelection(provider=provider, url=url.strip() or None, hash=content_hash)


def _print_result(result: PipelineResult) -> None:
    table = Table(title=f"Request {result.request_id} ({result.version_id})")
    table.add_column("Stage", style="cyan")
    table.add_column("Kind")
    table.add_column("Output")
    table.add_column("Size", justify="right")
    table.add_column("Cache", justify="center")
    table.add_column("Time", justify="right", style="dim")
    for record in [*result.inputs, *result.stages]:
        table.add_row(
            record.stage_id,
            record.kind,
            record.output_role,
            f"{record.size:,}",
            "[green]hit[/green]" if record.cache_hit else "[yellow]built[/yellow]",
            f"{record.duration_seconds:.2f}s",
        )
    console.print(table)

    if result.diagnostics:
        diag = Table(title="Diagnostics")
        diag.add_column("Severity")
        diag.add_column("Stage", style="cyan")
        diag.add_column("Kind")
        diag.add_column("Subject", overflow="fold")
        diag.add_column("Message", overflow="fold")
        for d in result.diagnostics:
            style = _SEVERITY_STYLE.get(d.severity, "")
            diag.add_row(
                f"[{style}]{d.severity.value}[/{style}]",
                d.stage_id,
                d.kind.value,
                d.subject,
                d.message,
            )
        console.print(diag)

    console.print(
        f"[bold]{result.target_role}[/bold] sha256:{result.final_sha256} "
        f"({result.fetch_count} downloads, {result.execution_count} stages executed)"
    )


def prepare_cmd(
    ctx: typer.Context,
    version_id: str = typer.Argument(
        ...,
        help="Version id, or 'release' / 'snapshot' for the latest one.",
    ),
    platform: Platform = typer.Option(
        Platform.JOINED,
        "--platform",
        "-p",
        help="Which jar(s) to work from.",
    ),
    target: str = typer.Option(
        SOURCES_JAR,
        "--target",
        "-t",
        help="Role of the final artifact.",
    ),
    mappings: list[str] = typer.Option(
        [],
        "--mappings",
        "-M",
        help="Mapping layer as PROVIDER[=URL[#ALGO:DIGEST]]; repeat to stack layers.",
    ),
    wideners: list[Path] = typer.Option(
        [],
        "--widener",
        "-w",
        exists=True,
        dir_okay=False,
        help="Access-widener file; repeatable.",
    ),
    decompiler: str = typer.Option(
        "skeleton",
        "--decompiler",
        "-d",
        help="Decompiler engine.",
    ),
    require_full_coverage: bool = typer.Option(
        False,
        "--require-full-coverage",
        help="Fail when any class or member has no mapping.",
    ),
    manifest_file: Optional[Path] = typer.Option(
        None,
        "--manifest",
        "-m",
        exists=True,
        dir_okay=False,
        help="Local version descriptor to register before resolving.",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Copy the final artifact here.",
    ),
) -> None:
    """Run the pipeline and report what was built and what came from cache."""
    request = PipelineRequest(
        version_id=version_id,
        platform=platform,
        target_role=target,
        mappings=[parse_mapping_option(value) for value in mappings],
        access_wideners=[path.read_text(encoding="utf-8") for path in wideners],
        decompiler=DecompileConfig(engine=decompiler),
        require_full_coverage=require_full_coverage,
    )

    with open_orchestrator(ctx) as orchestrator:
        if manifest_file is not None:
            orchestrator.resolver.inject(manifest_file)
        result = orchestrator.run(request)
        _print_result(result)
        if output is not None:
            exported = orchestrator.export(result, output)
            console.print(f"[green]Exported[/green] {exported.path}")
