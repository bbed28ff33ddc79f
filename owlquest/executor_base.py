"""Abstract executor interface for building and running submissions."""

from __future__ import annotations

import threading
from contextlib import AbstractContextManager
from pathlib import Path
from typing import Protocol, runtime_checkable

from owlquest.languages import LanguageConfig
from owlquest.models import BuildResult, ExecutionResult, ResourceLimits


@runtime_checkable
class CodeExecutor(Protocol):
    def workspace(self) -> AbstractContextManager[Path]: ...

    def build(
        self,
        language: LanguageConfig,
        source: Path,
        workdir: Path,
        cancel: threading.Event | None = None,
    ) -> BuildResult: ...

    def run(
        self,
        language: LanguageConfig,
        artifact: Path,
        stdin_input: bytes,
        limits: ResourceLimits,
        cancel: threading.Event | None = None,
    ) -> ExecutionResult: ...
