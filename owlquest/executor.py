"""Subprocess-based executor with wall-clock and memory limits.

Each build or run is started in its own session so the whole process group
(the submission and anything it forks) can be killed at once. A supervision
loop polls the child every ``poll_interval`` seconds: it reaps with
``os.wait4``, checks the monotonic deadline, samples resident memory from
``/proc`` and watches the cancellation event.

Memory detection latency is one poll interval for the sampled process tree.
Spikes shorter than that are still caught for the direct child through its
``ru_maxrss`` once it exits, but not for its descendants. POSIX only.
"""

from __future__ import annotations

import functools
import logging
import os
import shutil
import signal
import subprocess
import sys
import tempfile
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Iterator

from owlquest.errors import ConfigError, SpawnError
from owlquest.languages import LanguageConfig
from owlquest.models import BuildResult, ExecutionResult, ResourceLimits

logger = logging.getLogger(__name__)

_CHUNK = 64 * 1024
_DRAIN_TIMEOUT = 1.0  # seconds to wait for pipes after the process group is gone
_PROC = Path("/proc")

try:
    _PAGE_KB = os.sysconf("SC_PAGE_SIZE") // 1024
except (AttributeError, ValueError, OSError):
    _PAGE_KB = 4


class LocalExecutor:
    """Builds and runs submissions as local processes."""

    def __init__(
        self,
        poll_interval: float = 0.01,
        build_timeout: float = 60.0,
        output_limit: int = 64 * 1024 * 1024,
    ) -> None:
        self.poll_interval = poll_interval
        self.build_timeout = build_timeout
        self.output_limit = output_limit

    @contextmanager
    def workspace(self) -> Iterator[Path]:
        with tempfile.TemporaryDirectory(prefix="owlquest-") as tmp:
            yield Path(tmp).resolve()

    def build(
        self,
        language: LanguageConfig,
        source: Path,
        workdir: Path,
        cancel: threading.Event | None = None,
    ) -> BuildResult:
        if not source.is_file():
            raise ConfigError(f"'{source}': no such file")

        staged = workdir / source.name
        shutil.copyfile(source, staged)
        if not language.compiled:
            return BuildResult(artifact=staged)

        argv = language.build_command(staged, workdir)
        logger.debug("building: %s", " ".join(argv))
        result = self._supervise(argv, workdir, b"", self.build_timeout, None, cancel)
        output = _decode(result.stderr) + _decode(result.stdout)

        if result.cancelled:
            return BuildResult(artifact=None, diagnostics="build cancelled", duration=result.duration)
        if result.timed_out:
            return BuildResult(
                artifact=None,
                diagnostics=f"build timed out after {self.build_timeout:g}s\n{output}",
                duration=result.duration,
            )
        if result.exit_code != 0:
            return BuildResult(artifact=None, diagnostics=output, duration=result.duration)

        artifact = language.artifact_path(staged, workdir)
        if not artifact.exists():
            return BuildResult(
                artifact=None,
                diagnostics=f"build produced no artifact '{artifact.name}'\n{output}",
                duration=result.duration,
            )
        return BuildResult(artifact=artifact, diagnostics=output, duration=result.duration)

    def run(
        self,
        language: LanguageConfig,
        artifact: Path,
        stdin_input: bytes,
        limits: ResourceLimits,
        cancel: threading.Event | None = None,
    ) -> ExecutionResult:
        argv = language.run_command(artifact, artifact.parent)
        memory_limit_kb = (
            limits.memory_limit_mb * 1024 if limits.memory_limit_mb is not None else None
        )
        return self._supervise(
            argv, artifact.parent, stdin_input, limits.time_limit, memory_limit_kb, cancel
        )

    def _supervise(
        self,
        argv: list[str],
        cwd: Path,
        stdin_input: bytes,
        time_limit: float | None,
        memory_limit_kb: int | None,
        cancel: threading.Event | None,
    ) -> ExecutionResult:
        try:
            proc = subprocess.Popen(
                argv,
                cwd=cwd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            raise SpawnError(f"[{argv[0]}] failed to spawn: {e}") from e

        start = time.monotonic()
        deadline = start + time_limit if time_limit is not None else None
        feeder = threading.Thread(target=_feed, args=(proc.stdin, stdin_input), daemon=True)
        feeder.start()
        out = _Capture(proc.stdout, self.output_limit)
        err = _Capture(proc.stderr, self.output_limit)

        timed_out = memory_exceeded = cancelled = False
        peak_kb = 0
        while True:
            pid, status, rusage = os.wait4(proc.pid, os.WNOHANG)
            if pid:
                break
            rss_kb = _tree_rss_kb(proc.pid)
            peak_kb = max(peak_kb, rss_kb)
            if deadline is not None and time.monotonic() >= deadline:
                timed_out = True
            elif memory_limit_kb is not None and rss_kb > memory_limit_kb:
                memory_exceeded = True
            elif cancel is not None and cancel.is_set():
                cancelled = True
            else:
                if cancel is not None:
                    cancel.wait(self.poll_interval)
                else:
                    time.sleep(self.poll_interval)
                continue
            _kill_group(proc.pid)
            _, status, rusage = os.wait4(proc.pid, 0)
            break

        duration = time.monotonic() - start
        proc.returncode = os.waitstatus_to_exitcode(status)
        # reap anything the submission left running in its group
        _kill_group(proc.pid)

        peak_kb = max(peak_kb, _maxrss_kb(rusage))
        if time_limit is not None and duration > time_limit:
            timed_out = True
        if memory_limit_kb is not None and peak_kb > memory_limit_kb:
            memory_exceeded = True

        feeder.join(_DRAIN_TIMEOUT)
        stdout = out.result(_DRAIN_TIMEOUT)
        stderr = err.result(_DRAIN_TIMEOUT)

        if timed_out or memory_exceeded or cancelled:
            logger.debug(
                "%s stopped after %.3fs (timed_out=%s memory_exceeded=%s cancelled=%s)",
                argv[0], duration, timed_out, memory_exceeded, cancelled,
            )
        return ExecutionResult(
            exit_code=proc.returncode,
            stdout=stdout,
            stderr=stderr,
            duration=duration,
            peak_memory_kb=peak_kb,
            timed_out=timed_out,
            memory_exceeded=memory_exceeded,
            crashed=proc.returncode != 0 and not (timed_out or memory_exceeded or cancelled),
            cancelled=cancelled,
            output_truncated=out.truncated or err.truncated,
        )


class _Capture:
    """Drain a pipe on a background thread, keeping at most *limit* bytes."""

    def __init__(self, pipe: IO[bytes], limit: int) -> None:
        self._pipe = pipe
        self._limit = limit
        self._chunks: list[bytes] = []
        self._size = 0
        self.truncated = False
        self._thread = threading.Thread(target=self._drain, daemon=True)
        self._thread.start()

    def _drain(self) -> None:
        with self._pipe:
            for chunk in iter(functools.partial(os.read, self._pipe.fileno(), _CHUNK), b""):
                room = self._limit - self._size
                if len(chunk) > room:
                    self.truncated = True
                    chunk = chunk[:room]
                if chunk:
                    self._chunks.append(chunk)
                    self._size += len(chunk)

    def result(self, timeout: float) -> bytes:
        self._thread.join(timeout)
        return b"".join(self._chunks)


def _feed(pipe: IO[bytes], data: bytes) -> None:
    try:
        with pipe:
            pipe.write(data)
    except BrokenPipeError:
        # the submission exited or closed stdin without reading everything
        pass


def _kill_group(pgid: int) -> None:
    try:
        os.killpg(pgid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        pass


def _tree_pids(root: int) -> list[int]:
    pids = [root]
    i = 0
    while i < len(pids):
        task_dir = _PROC / str(pids[i]) / "task"
        i += 1
        try:
            tasks = os.listdir(task_dir)
        except OSError:
            continue
        for task in tasks:
            try:
                children = (task_dir / task / "children").read_text()
            except OSError:
                continue
            pids.extend(int(pid) for pid in children.split())
    return pids


def _tree_rss_kb(root: int) -> int:
    """Resident memory of *root* and its descendants, 0 where /proc is missing."""
    total = 0
    for pid in _tree_pids(root):
        try:
            statm = (_PROC / str(pid) / "statm").read_text().split()
        except OSError:
            continue
        total += int(statm[1]) * _PAGE_KB
    return total


def _maxrss_kb(rusage) -> int:
    # ru_maxrss is in bytes on macOS and kilobytes elsewhere
    if sys.platform == "darwin":
        return rusage.ru_maxrss // 1024
    return rusage.ru_maxrss


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")
