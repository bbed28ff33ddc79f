"""Tests for quest orchestration (fake executor, no real processes)."""

from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from owlquest.errors import ConfigError, SpawnError
from owlquest.executor_base import CodeExecutor
from owlquest.executor_fake import FakeExecutor
from owlquest.models import (
    BuildResult,
    CompareMode,
    ExecutionResult,
    QuestPolicy,
    QuestStatus,
    ResourceLimits,
    Submission,
    TestCase,
    Verdict,
)
from owlquest.orchestrator import QuestOrchestrator, aggregate_status, derive_verdict

SUBMISSION = Submission(source=Path("sol.py"), language="python")


def _cases(n: int) -> list[TestCase]:
    return [
        TestCase(name=f"t{i}", ordinal=i, input=f"{i}\n".encode(), expected=f"{i}\n".encode())
        for i in range(1, n + 1)
    ]


def _wrong(stdout: bytes = b"nope\n") -> ExecutionResult:
    return ExecutionResult(exit_code=0, stdout=stdout)


def test_fake_executor_satisfies_protocol():
    assert isinstance(FakeExecutor(), CodeExecutor)


class TestDeriveVerdict:
    def test_accepted(self):
        assert derive_verdict(ExecutionResult(exit_code=0, stdout=b"6"), b"6\n") == Verdict.ACCEPTED

    def test_strict_mode(self):
        result = ExecutionResult(exit_code=0, stdout=b"6")
        assert derive_verdict(result, b"6\n", CompareMode.STRICT) == Verdict.WRONG_ANSWER

    def test_numeric_mode_off_by_one_integer(self):
        result = ExecutionResult(exit_code=0, stdout=b"1000001\n")
        assert derive_verdict(result, b"1000000\n", CompareMode.NUMERIC) == Verdict.WRONG_ANSWER

    def test_timeout_beats_matching_output(self):
        result = ExecutionResult(exit_code=0, stdout=b"6\n", timed_out=True)
        assert derive_verdict(result, b"6\n") == Verdict.TIME_LIMIT_EXCEEDED

    def test_timeout_beats_memory(self):
        result = ExecutionResult(exit_code=-9, timed_out=True, memory_exceeded=True)
        assert derive_verdict(result, b"") == Verdict.TIME_LIMIT_EXCEEDED

    def test_memory(self):
        result = ExecutionResult(exit_code=-9, memory_exceeded=True)
        assert derive_verdict(result, b"") == Verdict.MEMORY_LIMIT_EXCEEDED

    def test_nonzero_exit_is_runtime_error(self):
        result = ExecutionResult(exit_code=1, stdout=b"6\n", crashed=True)
        assert derive_verdict(result, b"6\n") == Verdict.RUNTIME_ERROR


def test_aggregate_status():
    executor = FakeExecutor(results={b"2\n": _wrong(), b"3\n": ExecutionResult(exit_code=-9, timed_out=True)})
    attempt = QuestOrchestrator(executor).run(SUBMISSION, _cases(3), QuestPolicy(concurrency=1))
    assert aggregate_status(attempt.entries) == QuestStatus.WRONG_ANSWER
    assert aggregate_status(attempt.entries[2:]) == QuestStatus.TIME_LIMIT_EXCEEDED
    assert aggregate_status(attempt.entries[:1]) == QuestStatus.ACCEPTED
    assert aggregate_status(attempt.entries, cancelled=True) == QuestStatus.CANCELLED


class TestRun:
    def test_all_accepted(self):
        executor = FakeExecutor()
        attempt = QuestOrchestrator(executor).run(SUBMISSION, _cases(4))
        assert attempt.status == QuestStatus.ACCEPTED
        assert [e.verdict for e in attempt.entries] == [Verdict.ACCEPTED] * 4
        assert executor.builds == 1
        assert attempt.started_at <= attempt.finished_at

    def test_status_is_lowest_ordinal_failure(self):
        executor = FakeExecutor(
            results={
                b"2\n": ExecutionResult(exit_code=-9, timed_out=True),
                b"4\n": _wrong(),
            },
        )
        attempt = QuestOrchestrator(executor).run(SUBMISSION, _cases(5))
        assert attempt.status == QuestStatus.TIME_LIMIT_EXCEEDED
        assert attempt.passed == 3
        assert attempt.failed == 2

    def test_order_independent_of_completion(self):
        # earlier ordinals finish last
        delays = {f"{i}\n".encode(): 0.05 * (6 - i) for i in range(1, 6)}
        serial = QuestOrchestrator(FakeExecutor(delays=delays)).run(
            SUBMISSION, _cases(5), QuestPolicy(concurrency=1)
        )
        parallel = QuestOrchestrator(FakeExecutor(delays=delays)).run(
            SUBMISSION, _cases(5), QuestPolicy(concurrency=5)
        )
        assert [e.test_case.ordinal for e in serial.entries] == [1, 2, 3, 4, 5]
        assert [e.test_case.ordinal for e in parallel.entries] == [1, 2, 3, 4, 5]

    def test_unsorted_input_reported_by_ordinal(self):
        cases = list(reversed(_cases(3)))
        attempt = QuestOrchestrator(FakeExecutor()).run(SUBMISSION, cases)
        assert [e.test_case.name for e in attempt.entries] == ["t1", "t2", "t3"]

    def test_concurrency_is_bounded(self):
        active = 0
        peak = 0
        lock = threading.Lock()

        def respond(stdin_input, limits):
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.02)
            with lock:
                active -= 1
            return ExecutionResult(exit_code=0, stdout=stdin_input)

        cases = _cases(8)
        executor = FakeExecutor(results={tc.input: respond for tc in cases})
        attempt = QuestOrchestrator(executor).run(SUBMISSION, cases, QuestPolicy(concurrency=2))
        assert attempt.status == QuestStatus.ACCEPTED
        assert peak <= 2

    def test_limits_layering(self):
        seen = {}

        def respond(stdin_input, limits):
            seen[stdin_input] = limits
            return ExecutionResult(exit_code=0, stdout=stdin_input)

        cases = [
            TestCase(name="a", ordinal=1, input=b"a", expected=b"a"),
            TestCase(name="b", ordinal=2, input=b"b", expected=b"b", limits=ResourceLimits(time_limit=9.0, memory_limit_mb=None)),
        ]
        executor = FakeExecutor(results={b"a": respond, b"b": respond})
        policy = QuestPolicy(limits=ResourceLimits(time_limit=1.0, memory_limit_mb=64))
        QuestOrchestrator(executor).run(SUBMISSION, cases, policy)
        assert seen[b"a"] == ResourceLimits(time_limit=1.0, memory_limit_mb=64)
        assert seen[b"b"] == ResourceLimits(time_limit=9.0, memory_limit_mb=64)

    def test_language_limits_by_default(self):
        seen = []

        def respond(stdin_input, limits):
            seen.append(limits)
            return ExecutionResult(exit_code=0, stdout=stdin_input)

        executor = FakeExecutor(results={b"1\n": respond})
        java = Submission(source=Path("Main.java"), language="java")
        QuestOrchestrator(executor).run(java, _cases(1))
        assert seen == [ResourceLimits(time_limit=4.0, memory_limit_mb=1024)]

    def test_workspace_closed(self):
        executor = FakeExecutor(results={b"1\n": _wrong()})
        QuestOrchestrator(executor).run(SUBMISSION, _cases(2))
        assert executor.open_workspaces == executor.closed_workspaces == 1


class TestCompileError:
    def test_no_entries(self):
        executor = FakeExecutor(build_result=BuildResult(artifact=None, diagnostics="sol.c:1: error: expected ';'"))
        attempt = QuestOrchestrator(executor).run(SUBMISSION, _cases(3))
        assert attempt.status == QuestStatus.COMPILE_ERROR
        assert attempt.entries == []
        assert attempt.build_diagnostics == "sol.c:1: error: expected ';'"
        assert executor.runs == []
        assert executor.closed_workspaces == 1


class TestFailFast:
    def test_stops_scheduling(self):
        executor = FakeExecutor(results={b"2\n": _wrong()})
        attempt = QuestOrchestrator(executor).run(
            SUBMISSION, _cases(5), QuestPolicy(fail_fast=True, concurrency=1)
        )
        assert attempt.status == QuestStatus.WRONG_ANSWER
        assert [e.test_case.ordinal for e in attempt.entries] == [1, 2]
        assert executor.runs == [b"1\n", b"2\n"]

    def test_without_fail_fast_runs_everything(self):
        executor = FakeExecutor(results={b"2\n": _wrong()})
        attempt = QuestOrchestrator(executor).run(SUBMISSION, _cases(5), QuestPolicy(concurrency=1))
        assert len(attempt.entries) == 5


class TestCancellation:
    def test_cancel_after_two_complete(self):
        cancel = threading.Event()
        cases = _cases(5)

        def cancel_after(stdin_input, limits):
            cancel.set()
            return _wrong()

        executor = FakeExecutor(
            results={b"2\n": cancel_after},
            delays={b"3\n": 5.0, b"4\n": 5.0, b"5\n": 5.0},
        )
        attempt = QuestOrchestrator(executor).run(SUBMISSION, cases, QuestPolicy(concurrency=1), cancel)
        assert attempt.status == QuestStatus.CANCELLED
        assert [(e.test_case.ordinal, e.verdict) for e in attempt.entries] == [
            (1, Verdict.ACCEPTED),
            (2, Verdict.WRONG_ANSWER),
        ]

    def test_in_flight_units_record_nothing(self):
        cancel = threading.Event()
        executor = FakeExecutor(delays={b"2\n": 5.0, b"3\n": 5.0})
        orchestrator = QuestOrchestrator(executor)
        timer = threading.Timer(0.2, orchestrator.cancel)
        timer.start()
        try:
            attempt = orchestrator.run(SUBMISSION, _cases(3), QuestPolicy(concurrency=3), cancel)
        finally:
            timer.cancel()
        assert attempt.status == QuestStatus.CANCELLED
        assert [e.test_case.ordinal for e in attempt.entries] == [1]
        assert cancel.is_set()

    def test_cancelled_during_build(self):
        cancel = threading.Event()
        cancel.set()
        executor = FakeExecutor()
        attempt = QuestOrchestrator(executor).run(SUBMISSION, _cases(2), cancel=cancel)
        assert attempt.status == QuestStatus.CANCELLED
        assert attempt.entries == []
        assert executor.runs == []


class TestHarnessErrors:
    def test_unknown_language(self):
        executor = FakeExecutor()
        with pytest.raises(ConfigError, match="Language not supported: cobol"):
            QuestOrchestrator(executor).run(Submission(Path("a.cob"), "cobol"), _cases(1))
        assert executor.builds == 0

    def test_empty_test_cases(self):
        with pytest.raises(ConfigError):
            QuestOrchestrator(FakeExecutor()).run(SUBMISSION, [])

    def test_bad_concurrency(self):
        with pytest.raises(ConfigError):
            QuestOrchestrator(FakeExecutor()).run(SUBMISSION, _cases(1), QuestPolicy(concurrency=0))

    def test_spawn_error_propagates(self):
        executor = FakeExecutor(run_error={b"2\n": SpawnError("[python3] failed to spawn")})
        with pytest.raises(SpawnError):
            QuestOrchestrator(executor).run(SUBMISSION, _cases(5), QuestPolicy(concurrency=1))
        assert executor.runs == [b"1\n", b"2\n"]
        assert executor.closed_workspaces == 1

    def test_spawn_error_kills_in_flight_units(self):
        executor = FakeExecutor(
            run_error={b"1\n": SpawnError("[python3] failed to spawn")},
            delays={b"2\n": 5.0},
        )
        start = time.monotonic()
        with pytest.raises(SpawnError):
            QuestOrchestrator(executor).run(SUBMISSION, _cases(2), QuestPolicy(concurrency=2))
        assert time.monotonic() - start < 2.0
        assert executor.closed_workspaces == 1

    def test_negative_epsilon(self):
        with pytest.raises(ConfigError, match="epsilon"):
            QuestOrchestrator(FakeExecutor()).run(SUBMISSION, _cases(1), QuestPolicy(epsilon=-1.0))

    def test_build_spawn_error_propagates(self):
        executor = FakeExecutor(build_error=SpawnError("[gcc] failed to spawn"))
        with pytest.raises(SpawnError):
            QuestOrchestrator(executor).run(Submission(Path("a.c"), "c"), _cases(1))
        assert executor.closed_workspaces == 1


class TestExecute:
    def test_runs_once_with_language_limits(self):
        seen = []

        def respond(stdin_input, limits):
            seen.append(limits)
            return ExecutionResult(exit_code=0, stdout=stdin_input.upper())

        executor = FakeExecutor(results={b"hi\n": respond})
        build, result = QuestOrchestrator(executor).execute(
            SUBMISSION, b"hi\n", ResourceLimits(time_limit=None, memory_limit_mb=64)
        )
        assert build.succeeded
        assert result.stdout == b"HI\n"
        assert seen == [ResourceLimits(time_limit=2.0, memory_limit_mb=64)]
        assert executor.closed_workspaces == 1

    def test_compile_error_skips_run(self):
        executor = FakeExecutor(build_result=BuildResult(artifact=None, diagnostics="error: expected ';'"))
        build, result = QuestOrchestrator(executor).execute(Submission(Path("a.c"), "c"))
        assert not build.succeeded
        assert result is None
        assert executor.runs == []
