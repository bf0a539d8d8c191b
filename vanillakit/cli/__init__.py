"""vanillakit CLI — Typer-based command-line interface.

Provides the ``vanillakit`` command with subcommands for listing versions,
resolving a version's artifacts, running the transform pipeline and
maintaining the artifact cache.

All output uses Rich for formatted terminal display.
"""
