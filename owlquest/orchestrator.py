"""Quest orchestration: build once, run every test case, aggregate verdicts."""

from __future__ import annotations

import logging
import threading
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping, Sequence

from owlquest.comparator import DEFAULT_EPSILON, compare
from owlquest.errors import ConfigError
from owlquest.executor import LocalExecutor
from owlquest.executor_base import CodeExecutor
from owlquest.languages import REGISTRY, LanguageConfig
from owlquest.models import (
    BuildResult,
    CompareMode,
    ExecutionResult,
    ExecutionSummary,
    QuestAttempt,
    QuestEntry,
    QuestPolicy,
    QuestStatus,
    ResourceLimits,
    Submission,
    TestCase,
    Verdict,
)

logger = logging.getLogger(__name__)


def derive_verdict(
    result: ExecutionResult,
    expected: bytes,
    mode: CompareMode = CompareMode.TOKEN,
    epsilon: float = DEFAULT_EPSILON,
) -> Verdict:
    """Classify one execution. Output is only compared for clean exits."""
    if result.timed_out:
        return Verdict.TIME_LIMIT_EXCEEDED
    if result.memory_exceeded:
        return Verdict.MEMORY_LIMIT_EXCEEDED
    if result.crashed or result.exit_code != 0:
        return Verdict.RUNTIME_ERROR
    if compare(result.stdout, expected, mode, epsilon):
        return Verdict.ACCEPTED
    return Verdict.WRONG_ANSWER


def aggregate_status(entries: Sequence[QuestEntry], cancelled: bool = False) -> QuestStatus:
    """Overall status: the verdict of the lowest-ordinal failure, if any."""
    if cancelled:
        return QuestStatus.CANCELLED
    for entry in sorted(entries, key=lambda e: e.test_case.ordinal):
        if entry.verdict != Verdict.ACCEPTED:
            return QuestStatus.from_verdict(entry.verdict)
    return QuestStatus.ACCEPTED


class QuestOrchestrator:
    def __init__(
        self,
        executor: CodeExecutor | None = None,
        registry: Mapping[str, LanguageConfig] | None = None,
    ) -> None:
        self._executor: CodeExecutor = executor or LocalExecutor()
        self._registry = registry if registry is not None else REGISTRY
        self._cancel: threading.Event | None = None

    def cancel(self) -> None:
        """Ask the running quest to stop; in-flight processes are killed."""
        if self._cancel is not None:
            self._cancel.set()

    def run(
        self,
        submission: Submission,
        test_cases: Sequence[TestCase],
        policy: QuestPolicy | None = None,
        cancel: threading.Event | None = None,
    ) -> QuestAttempt:
        policy = policy or QuestPolicy()
        if policy.concurrency < 1:
            raise ConfigError(f"concurrency must be at least 1, got {policy.concurrency}")
        if policy.epsilon < 0:
            raise ConfigError(f"epsilon must be non-negative, got {policy.epsilon}")
        if not test_cases:
            raise ConfigError("no test cases to run")

        language = self._lookup(submission.language)
        cancel = cancel if cancel is not None else threading.Event()
        self._cancel = cancel
        cases = sorted(test_cases, key=lambda tc: tc.ordinal)
        limits = language.limits.merged(policy.limits)
        started_at = _now()

        logger.info(
            "quest '%s' (%s): %d test case(s), %d worker(s)",
            submission.source, language.name, len(cases), policy.concurrency,
        )

        with self._executor.workspace() as workdir:
            build = self._executor.build(language, submission.source, workdir, cancel)
            if cancel.is_set():
                return self._attempt(submission, QuestStatus.CANCELLED, started_at, [], build.diagnostics)
            if not build.succeeded:
                logger.info("build failed for '%s'", submission.source)
                return self._attempt(
                    submission, QuestStatus.COMPILE_ERROR, started_at, [], build.diagnostics
                )
            slots = self._dispatch(language, build.artifact, cases, policy, limits, cancel)

        entries = [entry for entry in slots if entry is not None]
        status = aggregate_status(entries, cancelled=cancel.is_set())
        logger.info("quest '%s' finished: %s", submission.source, status.value)
        return self._attempt(submission, status, started_at, entries, build.diagnostics)

    def execute(
        self,
        submission: Submission,
        stdin_input: bytes = b"",
        limits: ResourceLimits | None = None,
        cancel: threading.Event | None = None,
    ) -> tuple[BuildResult, ExecutionResult | None]:
        """Build and run once on *stdin_input* without judging the output."""
        language = self._lookup(submission.language)
        cancel = cancel if cancel is not None else threading.Event()
        self._cancel = cancel
        with self._executor.workspace() as workdir:
            build = self._executor.build(language, submission.source, workdir, cancel)
            if not build.succeeded or cancel.is_set():
                return build, None
            result = self._executor.run(
                language, build.artifact, stdin_input, language.limits.merged(limits), cancel
            )
        return build, result

    def _dispatch(
        self,
        language: LanguageConfig,
        artifact: Path,
        cases: list[TestCase],
        policy: QuestPolicy,
        limits: ResourceLimits,
        cancel: threading.Event,
    ) -> list[QuestEntry | None]:
        """Run all cases on a bounded pool; results land at their ordinal index."""
        slots: list[QuestEntry | None] = [None] * len(cases)
        pending = deque(enumerate(cases))
        in_flight: set[Future] = set()
        stop_scheduling = False
        error: Exception | None = None

        with ThreadPoolExecutor(max_workers=policy.concurrency, thread_name_prefix="owlquest") as pool:
            while True:
                while (
                    pending
                    and not stop_scheduling
                    and not cancel.is_set()
                    and len(in_flight) < policy.concurrency
                ):
                    index, case = pending.popleft()
                    in_flight.add(
                        pool.submit(
                            self._run_case, index, case, slots, language, artifact, policy, limits, cancel
                        )
                    )
                if not in_flight:
                    break

                done, in_flight = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    try:
                        verdict = future.result()
                    except Exception as e:
                        # stop feeding the pool, kill in-flight units, then re-raise
                        stop_scheduling = True
                        cancel.set()
                        if error is None:
                            error = e
                        continue
                    if policy.fail_fast and verdict not in (None, Verdict.ACCEPTED):
                        stop_scheduling = True

        if error is not None:
            raise error
        if pending:
            logger.info("%d test case(s) not scheduled", len(pending))
        return slots

    def _run_case(
        self,
        index: int,
        case: TestCase,
        slots: list[QuestEntry | None],
        language: LanguageConfig,
        artifact: Path,
        policy: QuestPolicy,
        limits: ResourceLimits,
        cancel: threading.Event,
    ) -> Verdict | None:
        result = self._executor.run(language, artifact, case.input, limits.merged(case.limits), cancel)
        if result.cancelled:
            logger.debug("test %d (%s) cancelled", case.ordinal, case.name)
            return None

        verdict = derive_verdict(result, case.expected, policy.compare_mode, policy.epsilon)
        slots[index] = QuestEntry(
            test_case=case,
            verdict=verdict,
            summary=ExecutionSummary.from_result(result),
        )
        logger.debug(
            "test %d (%s): %s in %.0fms, %dKB",
            case.ordinal, case.name, verdict.value, result.duration * 1000, result.peak_memory_kb,
        )
        return verdict

    def _lookup(self, name: str) -> LanguageConfig:
        try:
            return self._registry[name]
        except KeyError:
            raise ConfigError(f"Language not supported: {name}") from None

    @staticmethod
    def _attempt(
        submission: Submission,
        status: QuestStatus,
        started_at: datetime,
        entries: list[QuestEntry],
        diagnostics: str,
    ) -> QuestAttempt:
        return QuestAttempt(
            submission=submission,
            status=status,
            started_at=started_at,
            finished_at=_now(),
            entries=entries,
            build_diagnostics=diagnostics,
        )


def _now() -> datetime:
    return datetime.now(timezone.utc)
