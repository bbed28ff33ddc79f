"""Deterministic in-memory executor for exercising the orchestrator without processes."""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator

from owlquest.languages import LanguageConfig
from owlquest.models import BuildResult, ExecutionResult, ResourceLimits

Responder = Callable[[bytes, ResourceLimits], ExecutionResult]


class FakeExecutor:
    """Returns canned results keyed by the test input.

    ``results`` maps stdin bytes to either an ``ExecutionResult`` or a callable
    producing one. ``delays`` holds per-input sleeps used to shuffle completion
    order; a pending cancellation cuts a delay short and yields a cancelled
    result, like a killed process would.
    """

    def __init__(
        self,
        results: dict[bytes, ExecutionResult | Responder] | None = None,
        build_result: BuildResult | None = None,
        delays: dict[bytes, float] | None = None,
        build_error: Exception | None = None,
        run_error: dict[bytes, Exception] | None = None,
    ) -> None:
        self.results = results or {}
        self.build_result = build_result
        self.delays = delays or {}
        self.build_error = build_error
        self.run_error = run_error or {}
        self.builds = 0
        self.runs: list[bytes] = []
        self.open_workspaces = 0
        self.closed_workspaces = 0
        self._lock = threading.Lock()

    @contextmanager
    def workspace(self) -> Iterator[Path]:
        self.open_workspaces += 1
        try:
            yield Path("/nonexistent/owlquest-fake")
        finally:
            self.closed_workspaces += 1

    def build(
        self,
        language: LanguageConfig,
        source: Path,
        workdir: Path,
        cancel: threading.Event | None = None,
    ) -> BuildResult:
        self.builds += 1
        if self.build_error is not None:
            raise self.build_error
        if self.build_result is not None:
            return self.build_result
        return BuildResult(artifact=workdir / source.name)

    def run(
        self,
        language: LanguageConfig,
        artifact: Path,
        stdin_input: bytes,
        limits: ResourceLimits,
        cancel: threading.Event | None = None,
    ) -> ExecutionResult:
        with self._lock:
            self.runs.append(stdin_input)
        if stdin_input in self.run_error:
            raise self.run_error[stdin_input]

        delay = self.delays.get(stdin_input, 0.0)
        if delay:
            if cancel is not None:
                if cancel.wait(delay):
                    return ExecutionResult(exit_code=-9, duration=delay, cancelled=True)
            else:
                time.sleep(delay)

        canned = self.results.get(stdin_input)
        if canned is None:
            return ExecutionResult(exit_code=0, stdout=stdin_input)
        if callable(canned):
            return canned(stdin_input, limits)
        return canned
