"""Data models for owlquest."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path


class Verdict(enum.Enum):
    ACCEPTED = "AC"
    WRONG_ANSWER = "WA"
    TIME_LIMIT_EXCEEDED = "TLE"
    MEMORY_LIMIT_EXCEEDED = "MLE"
    RUNTIME_ERROR = "RE"
    COMPILE_ERROR = "CE"


class QuestStatus(enum.Enum):
    ACCEPTED = "AC"
    WRONG_ANSWER = "WA"
    TIME_LIMIT_EXCEEDED = "TLE"
    MEMORY_LIMIT_EXCEEDED = "MLE"
    RUNTIME_ERROR = "RE"
    COMPILE_ERROR = "CE"
    CANCELLED = "CXL"

    @classmethod
    def from_verdict(cls, verdict: Verdict) -> QuestStatus:
        return cls(verdict.value)


class CompareMode(enum.Enum):
    TOKEN = "token"
    STRICT = "strict"
    NUMERIC = "numeric"


class Provenance(enum.Enum):
    FETCHED = "fetched"
    LOCAL = "local"


@dataclass(frozen=True)
class ResourceLimits:
    time_limit: float | None = 2.0  # seconds, wall clock; None disables the deadline
    memory_limit_mb: int | None = 256  # None disables the ceiling

    def merged(self, override: ResourceLimits | None) -> ResourceLimits:
        """Layer *override* on top of these limits.

        Only fields the override actually sets win; a ``None`` field in the
        override keeps the inherited value.
        """
        if override is None:
            return self
        return replace(
            self,
            time_limit=override.time_limit if override.time_limit is not None else self.time_limit,
            memory_limit_mb=(
                override.memory_limit_mb
                if override.memory_limit_mb is not None
                else self.memory_limit_mb
            ),
        )


@dataclass(frozen=True)
class TestCase:
    __test__ = False  # keep pytest from collecting this class

    name: str
    ordinal: int
    input: bytes
    expected: bytes
    provenance: Provenance = Provenance.LOCAL
    limits: ResourceLimits | None = None
    hint: str | None = None


@dataclass(frozen=True)
class Submission:
    source: Path
    language: str

    @classmethod
    def from_path(cls, path: str | Path, language: str | None = None) -> Submission:
        """Build a submission, detecting the language from the extension if needed."""
        from owlquest.languages import detect, lookup

        source = Path(path)
        config = lookup(language) if language else detect(source)
        return cls(source=source, language=config.name)


@dataclass
class BuildResult:
    artifact: Path | None
    diagnostics: str = ""
    duration: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.artifact is not None


@dataclass
class ExecutionResult:
    exit_code: int
    stdout: bytes = b""
    stderr: bytes = b""
    duration: float = 0.0  # seconds
    peak_memory_kb: int = 0
    timed_out: bool = False
    memory_exceeded: bool = False
    crashed: bool = False
    cancelled: bool = False
    output_truncated: bool = False


@dataclass
class ExecutionSummary:
    exit_code: int
    duration: float
    peak_memory_kb: int
    timed_out: bool
    memory_exceeded: bool
    crashed: bool
    stdout: str = ""
    stderr: str = ""

    @classmethod
    def from_result(cls, result: ExecutionResult) -> ExecutionSummary:
        return cls(
            exit_code=result.exit_code,
            duration=result.duration,
            peak_memory_kb=result.peak_memory_kb,
            timed_out=result.timed_out,
            memory_exceeded=result.memory_exceeded,
            crashed=result.crashed,
            stdout=result.stdout.decode("utf-8", errors="replace"),
            stderr=result.stderr.decode("utf-8", errors="replace"),
        )


@dataclass
class QuestEntry:
    test_case: TestCase
    verdict: Verdict
    summary: ExecutionSummary

    def to_dict(self) -> dict:
        return {
            "name": self.test_case.name,
            "ordinal": self.test_case.ordinal,
            "verdict": self.verdict.value,
            "exit_code": self.summary.exit_code,
            "time_used": round(self.summary.duration, 4),
            "memory_used_kb": self.summary.peak_memory_kb,
        }


@dataclass
class QuestPolicy:
    fail_fast: bool = False
    concurrency: int = 4
    limits: ResourceLimits | None = None  # None: use the language defaults
    compare_mode: CompareMode = CompareMode.TOKEN
    epsilon: float = 1e-6


@dataclass
class QuestAttempt:
    submission: Submission
    status: QuestStatus
    started_at: datetime
    finished_at: datetime
    entries: list[QuestEntry] = field(default_factory=list)
    build_diagnostics: str = ""

    @property
    def passed(self) -> int:
        return sum(1 for e in self.entries if e.verdict == Verdict.ACCEPTED)

    @property
    def failed(self) -> int:
        return len(self.entries) - self.passed

    @property
    def elapsed(self) -> float:
        return sum(e.summary.duration for e in self.entries)

    def to_dict(self) -> dict:
        return {
            "submission": str(self.submission.source),
            "language": self.submission.language,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "passed": self.passed,
            "failed": self.failed,
            "build_diagnostics": self.build_diagnostics,
            "test_case_results": [e.to_dict() for e in self.entries],
        }
