"""Decompile stage: one source file per class, best effort.

Each class is decompiled on its own daemon worker thread, at most
``workers`` at a time.  A class that cannot be parsed or makes the engine
raise gets a placeholder source plus a diagnostic.  A class that runs past
the per-class timeout is abandoned: its worker slot is handed to the next
class and the hung thread is left to die with the process.  The rest of
the jar is unaffected either way.

Timeouts depend on the machine rather than the input, so their
diagnostics are marked transient and the output is cached provisionally.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from vanillakit.jvm.archive import read_entries, write_archive
from vanillakit.jvm.classfile import ClassFile
from vanillakit.jvm.decompiler import (
    PARAMETERS_PATH,
    SymbolDocs,
    get_decompiler,
    placeholder_source,
)
from vanillakit.models.reports import Diagnostic, DiagnosticKind
from vanillakit.models.stages import DecompileConfig, StageKind
from vanillakit.stages.base import BaseStage, StageContext, StageOutput

logger = logging.getLogger(__name__)


def source_path(class_path: str) -> str:
    """``a/b/C.class`` -> ``a/b/C.java``."""
    return class_path[: -len(".class")] + ".java"


@dataclass
class ClassOutcome:
    """Result of one class: source text, or the error, or a timeout."""

    text: str | None = None
    error: Exception | None = None
    timed_out: bool = False


def run_per_class(
    paths: list[str],
    work: Callable[[str], str],
    *,
    workers: int,
    timeout: float | None,
) -> dict[str, ClassOutcome]:
    """Run *work* for every path with a per-class deadline.

    Parameters
    ----------
    paths:
        Class paths, started in this order.
    work:
        Returns the source text of one class.
    workers:
        Maximum number of classes running at once.
    timeout:
        Seconds a class may run, measured from when it starts.  ``None``
        waits indefinitely.
    """
    pending = deque(paths)
    running: dict[str, float] = {}
    finished: queue.Queue[tuple[str, str | None, Exception | None]] = queue.Queue()
    outcomes: dict[str, ClassOutcome] = {}

    def target(path: str) -> None:
        try:
            finished.put((path, work(path), None))
        except Exception as exc:
            finished.put((path, None, exc))

    while pending or running:
        while pending and len(running) < workers:
            path = pending.popleft()
            running[path] = time.monotonic()
            threading.Thread(
                target=target, args=(path,), name=f"decompile-{path}", daemon=True
            ).start()

        wait = None
        if timeout is not None:
            wait = max(0.0, min(running.values()) + timeout - time.monotonic())
        try:
            path, text, error = finished.get(timeout=wait)
        except queue.Empty:
            now = time.monotonic()
            for path, started in list(running.items()):
                if now - started >= timeout:
                    logger.warning("Abandoning %s after %.1fs", path, now - started)
                    del running[path]
                    outcomes[path] = ClassOutcome(timed_out=True)
            continue
        if path not in running:
            # Late answer from an abandoned worker.
            continue
        del running[path]
        outcomes[path] = ClassOutcome(text=text, error=error)
    return outcomes


class DecompileStage(BaseStage):
    """Input: one jar.  Output: a jar of ``.java`` sources."""

    kind = StageKind.DECOMPILE
    config_type = DecompileConfig

    def execute(self, inputs: list[bytes], config: Any, context: StageContext) -> StageOutput:
        engine = get_decompiler(config.engine)
        entries = read_entries(inputs[0], subject="input jar")
        docs = SymbolDocs.from_bytes(entries.get(PARAMETERS_PATH))
        options: dict[str, Any] = {**config.options, "include_private": config.include_private}

        class_paths = sorted(
            path for path in entries if path.endswith(".class") and not path.startswith("META-INF/")
        )

        def decompile_one(path: str) -> str:
            return engine.decompile(ClassFile.parse(entries[path]), docs, options)

        outcomes = run_per_class(
            class_paths,
            decompile_one,
            workers=config.workers,
            timeout=config.class_timeout_seconds,
        )

        sources: dict[str, bytes] = {}
        diagnostics: list[Diagnostic] = []
        for path in class_paths:
            outcome = outcomes[path]
            if outcome.timed_out:
                text = placeholder_source(path, "timed out")
                diagnostics.append(
                    Diagnostic(
                        kind=DiagnosticKind.DECOMPILE_TIMEOUT,
                        subject=path,
                        message=f"Exceeded {config.class_timeout_seconds}s",
                        transient=True,
                    )
                )
            elif outcome.error is not None:
                exc = outcome.error
                logger.warning("Could not decompile %s: %s", path, exc)
                text = placeholder_source(path, f"{type(exc).__name__}: {exc}")
                diagnostics.append(
                    Diagnostic(
                        kind=DiagnosticKind.DECOMPILE_FAILURE,
                        subject=path,
                        message=f"{type(exc).__name__}: {exc}",
                    )
                )
            else:
                text = outcome.text
            sources[source_path(path)] = text.encode("utf-8")

        logger.info(
            "Decompiled %d classes with %s (%d failed)",
            len(class_paths),
            engine.name,
            len(diagnostics),
        )
        return StageOutput(write_archive(sources), diagnostics)
