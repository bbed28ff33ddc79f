"""CLI interface for owlquest."""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import TextIO

from openai import OpenAIError

from owlquest.comparator import parse_mode
from owlquest.config import Config
from owlquest.errors import OwlQuestError, StoreError
from owlquest.executor_factory import create_executor
from owlquest.languages import REGISTRY
from owlquest.models import (
    BuildResult,
    CompareMode,
    ExecutionResult,
    QuestAttempt,
    QuestEntry,
    QuestPolicy,
    QuestStatus,
    Submission,
    TestCase,
    Verdict,
)
from owlquest.orchestrator import QuestOrchestrator
from owlquest.review import ReviewAgent
from owlquest.stash import clear_stash, init_program, list_stash, restore_program, stash_program
from owlquest.store import fetch_test_cases, load_local_test_cases, quest_dir, select_cases

logger = logging.getLogger(__name__)

EXIT_CODES = {
    QuestStatus.ACCEPTED: 0,
    QuestStatus.WRONG_ANSWER: 1,
    QuestStatus.TIME_LIMIT_EXCEEDED: 2,
    QuestStatus.MEMORY_LIMIT_EXCEEDED: 3,
    QuestStatus.RUNTIME_ERROR: 4,
    QuestStatus.COMPILE_ERROR: 5,
    QuestStatus.CANCELLED: 130,
}

_VERDICT_LABELS = {
    Verdict.ACCEPTED: "passed test",
    Verdict.WRONG_ANSWER: "wrong answer",
    Verdict.TIME_LIMIT_EXCEEDED: "time limit exceeded",
    Verdict.MEMORY_LIMIT_EXCEEDED: "memory limit exceeded",
    Verdict.RUNTIME_ERROR: "runtime error",
    Verdict.COMPILE_ERROR: "compile error",
}

PROBLEM_FILE = "problem.md"


def exit_code_for(status: QuestStatus) -> int:
    return EXIT_CODES[status]


def _paint(text: str, code: str, stream: TextIO) -> str:
    if stream.isatty():
        return f"\x1b[{code}m{text}\x1b[0m"
    return text


def print_entry(entry: QuestEntry, total: int, show_hint: bool = False) -> None:
    case = entry.test_case
    elapsed_ms = entry.summary.duration * 1000
    if entry.verdict == Verdict.ACCEPTED:
        label = _paint(_VERDICT_LABELS[entry.verdict], "32", sys.stdout)
        print(f"({case.ordinal}/{total}) [{elapsed_ms:.0f}ms] {case.name} {label}")
        return

    label = _paint(_VERDICT_LABELS[entry.verdict], "31", sys.stderr)
    print(f"({case.ordinal}/{total}) [{elapsed_ms:.0f}ms] {case.name} {label}", file=sys.stderr)
    if entry.verdict == Verdict.WRONG_ANSWER:
        expected = case.expected.decode("utf-8", errors="replace")
        print(_paint(">>> expected <<<", "1;33", sys.stderr), file=sys.stderr)
        print(f"\n{expected}", file=sys.stderr)
        print(_paint(">>> actual <<<", "1;35", sys.stderr), file=sys.stderr)
        print(f"\n{entry.summary.stdout}", file=sys.stderr)
    elif entry.verdict == Verdict.RUNTIME_ERROR:
        print(f"exit code: {entry.summary.exit_code}", file=sys.stderr)
        if entry.summary.stderr:
            print(entry.summary.stderr, file=sys.stderr)
    elif entry.verdict == Verdict.MEMORY_LIMIT_EXCEEDED:
        print(f"peak memory: {entry.summary.peak_memory_kb}KB", file=sys.stderr)
    if show_hint and case.hint:
        print(case.hint, file=sys.stderr)


def print_report(attempt: QuestAttempt, total: int, show_hints: bool = False) -> None:
    if attempt.status == QuestStatus.COMPILE_ERROR:
        print(_paint("[compile error]", "31", sys.stderr), file=sys.stderr)
        print(attempt.build_diagnostics, file=sys.stderr)

    for entry in attempt.entries:
        print_entry(entry, total, show_hints)

    print(
        f"passed: {attempt.passed}, failed: {attempt.failed}, "
        f"elapsed: {attempt.elapsed * 1000:.0f}ms"
    )
    if attempt.status == QuestStatus.ACCEPTED:
        print(_paint("all tests passed", "32", sys.stdout))
    elif attempt.status == QuestStatus.CANCELLED:
        print(f"cancelled after {len(attempt.entries)}/{total} test(s)", file=sys.stderr)
    else:
        print(f"status: {attempt.status.value}", file=sys.stderr)


def _run_quest(
    submission: Submission,
    cases: list[TestCase],
    config: Config,
    policy: QuestPolicy,
    args: argparse.Namespace,
    problem_text: str = "",
    total: int | None = None,
) -> int:
    orchestrator = QuestOrchestrator(create_executor(config))
    cancel = threading.Event()

    def _on_sigint(signum, frame) -> None:
        cancel.set()

    previous = signal.signal(signal.SIGINT, _on_sigint)
    try:
        attempt = orchestrator.run(submission, cases, policy, cancel)
    finally:
        signal.signal(signal.SIGINT, previous)

    if getattr(args, "json", False):
        print(json.dumps(attempt.to_dict(), indent=2))
    else:
        print_report(attempt, total or len(cases), show_hints=getattr(args, "hint", False))

    if getattr(args, "review", False):
        _print_review(config, attempt, problem_text)

    return exit_code_for(attempt.status)


def _print_review(config: Config, attempt: QuestAttempt, problem_text: str) -> None:
    """Advisory only: a failed review never changes the outcome."""
    if not config.review_enabled:
        logger.warning("skipping review: OPENAI_API_KEY is not set")
        return
    print("requesting review ...", file=sys.stderr)
    try:
        review = ReviewAgent(config).review_file(problem_text, attempt)
    except (OwlQuestError, OpenAIError, OSError) as e:
        logger.warning("review failed: %s", e)
        return
    print(f"\n{review}")


def _problem_text(directory: Path) -> str:
    problem_file = directory / PROBLEM_FILE
    if problem_file.is_file():
        return problem_file.read_text(encoding="utf-8", errors="replace")
    return ""


def cmd_quest(args: argparse.Namespace, config: Config) -> int:
    submission = Submission.from_path(args.prog, args.lang)
    if args.dir:
        directory = Path(args.dir)
        cases = load_local_test_cases(directory)
    else:
        directory = quest_dir(args.name, config)
        cases = fetch_test_cases(args.name, config)
    total = len(cases)
    cases = select_cases(cases, case=args.case, name=args.test)
    return _run_quest(submission, cases, config, config.policy(), args, _problem_text(directory), total)


def cmd_test(args: argparse.Namespace, config: Config) -> int:
    submission = Submission.from_path(args.prog, args.lang)
    in_path, ans_path = Path(args.input), Path(args.answer)
    try:
        case = TestCase(
            name=in_path.stem,
            ordinal=1,
            input=in_path.read_bytes(),
            expected=ans_path.read_bytes(),
        )
    except OSError as e:
        raise StoreError(f"could not read test case ({e})") from e
    policy = config.policy()
    policy.concurrency = 1
    return _run_quest(submission, [case], config, policy, args)


def _run_status(build: BuildResult, result: ExecutionResult | None) -> QuestStatus:
    if not build.succeeded:
        return QuestStatus.COMPILE_ERROR
    if result is None or result.cancelled:
        return QuestStatus.CANCELLED
    if result.timed_out:
        return QuestStatus.TIME_LIMIT_EXCEEDED
    if result.memory_exceeded:
        return QuestStatus.MEMORY_LIMIT_EXCEEDED
    if result.crashed or result.exit_code != 0:
        return QuestStatus.RUNTIME_ERROR
    return QuestStatus.ACCEPTED


def cmd_run(args: argparse.Namespace, config: Config) -> int:
    submission = Submission.from_path(args.prog, args.lang)
    stdin_input = b""
    if args.input:
        try:
            stdin_input = Path(args.input).read_bytes()
        except OSError as e:
            raise StoreError(f"could not read input ({e})") from e

    orchestrator = QuestOrchestrator(create_executor(config))
    cancel = threading.Event()

    def _on_sigint(signum, frame) -> None:
        cancel.set()

    previous = signal.signal(signal.SIGINT, _on_sigint)
    try:
        build, result = orchestrator.execute(submission, stdin_input, config.policy().limits, cancel)
    finally:
        signal.signal(signal.SIGINT, previous)

    status = _run_status(build, result)
    if status == QuestStatus.COMPILE_ERROR:
        print(_paint("[compile error]", "31", sys.stderr), file=sys.stderr)
        print(build.diagnostics, file=sys.stderr)
    if result is not None:
        print(result.stdout.decode("utf-8", errors="replace"), end="")
        if result.stderr:
            print(result.stderr.decode("utf-8", errors="replace"), end="", file=sys.stderr)
    if status not in (QuestStatus.ACCEPTED, QuestStatus.COMPILE_ERROR):
        print(f"status: {status.value}", file=sys.stderr)
    return exit_code_for(status)


def cmd_show(args: argparse.Namespace, config: Config) -> int:
    if args.dir:
        cases = load_local_test_cases(args.dir)
    else:
        cases = fetch_test_cases(args.name, config)
    for case in select_cases(cases, case=args.case, name=args.test):
        data = case.expected if args.answer else case.input
        print(_paint(f"=== {case.name} ===", "1;36", sys.stdout))
        text = data.decode("utf-8", errors="replace")
        print(text, end="" if text.endswith("\n") else "\n")
    return 0


def cmd_fetch(args: argparse.Namespace, config: Config) -> int:
    cases = fetch_test_cases(args.name, config, refresh=args.force)
    print(f"fetched {len(cases)} test case(s) into '{quest_dir(args.name, config)}'")
    return 0


def cmd_langs(args: argparse.Namespace, config: Config) -> int:
    for lang in sorted(REGISTRY.values(), key=lambda lang: lang.name):
        extensions = ", ".join(f".{ext}" for ext in lang.extensions)
        state = "installed" if lang.is_available() else f"missing ({lang.toolchain})"
        print(f"{lang.name:<12} {extensions:<28} {state}")
    return 0


def cmd_stash(args: argparse.Namespace, config: Config) -> int:
    target = stash_program(args.prog, config, as_template=args.templ)
    print(f"stashed '{args.prog}' as '{target.name}'")
    return 0


def cmd_init(args: argparse.Namespace, config: Config) -> int:
    submission = init_program(args.prog, config)
    print(f"created '{submission.source}' ({submission.language}) from template")
    return 0


def cmd_restore(args: argparse.Namespace, config: Config) -> int:
    restore_program(args.prog, config)
    print(f"restored '{args.prog}' from stash")
    return 0


def cmd_list(args: argparse.Namespace, config: Config) -> int:
    for name in list_stash(config):
        print(name)
    return 0


def cmd_clear(args: argparse.Namespace, config: Config) -> int:
    removed = clear_stash(config)
    print(f"removed {removed} stashed file(s)")
    return 0


COMMANDS = {
    "quest": cmd_quest,
    "test": cmd_test,
    "fetch": cmd_fetch,
    "langs": cmd_langs,
    "stash": cmd_stash,
    "init": cmd_init,
    "restore": cmd_restore,
    "list": cmd_list,
    "clear": cmd_clear,
    "run": cmd_run,
    "show": cmd_show,
}


def _add_limit_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-l", "--lang", type=str, default=None, help="Language (default: from extension)")
    parser.add_argument(
        "-m", "--mode", choices=[m.value for m in CompareMode], default=None, help="Output comparison mode"
    )
    parser.add_argument("--epsilon", type=float, default=None, help="Tolerance for numeric mode")
    parser.add_argument("--time-limit", type=float, default=None, help="Seconds per test case")
    parser.add_argument("--memory-limit", type=int, default=None, help="Megabytes per test case")
    parser.add_argument("--json", action="store_true", default=False, help="Print the report as JSON")
    parser.add_argument("--review", action="store_true", default=False, help="Ask an LLM to review the attempt")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="owlquest",
        description="owlquest: build, run and judge competitive programming solutions",
    )
    parser.add_argument("-v", "--verbose", action="store_true", default=False, help="Debug logging")
    subparsers = parser.add_subparsers(dest="command")

    quest_parser = subparsers.add_parser("quest", help="Test a program against all test cases of a quest")
    quest_parser.add_argument("name", help="The name of the quest")
    quest_parser.add_argument("prog", help="The program to test")
    selection = quest_parser.add_mutually_exclusive_group()
    selection.add_argument("-C", "--case", type=int, default=None, help="Run only this case number")
    selection.add_argument("-t", "--test", type=str, default=None, help="Run only this test by name")
    quest_parser.add_argument("-d", "--dir", type=str, default=None, help="Load test cases from a local directory")
    quest_parser.add_argument("--fail-fast", action="store_true", default=False, help="Stop at the first failure")
    quest_parser.add_argument("-j", "--jobs", type=int, default=None, help="Test cases run in parallel")
    quest_parser.add_argument("-n", "--hint", action="store_true", default=False, help="Print hints for failed tests")
    _add_limit_args(quest_parser)

    test_parser = subparsers.add_parser("test", help="Run a program against a single input/answer pair")
    test_parser.add_argument("prog", help="The program to test")
    test_parser.add_argument("input", help="The input file for the test case")
    test_parser.add_argument("answer", help="The answer file for the test case")
    _add_limit_args(test_parser)

    fetch_parser = subparsers.add_parser("fetch", help="Download the test cases of a quest")
    fetch_parser.add_argument("name", help="The name of the quest")
    fetch_parser.add_argument("-f", "--force", action="store_true", default=False, help="Re-download if cached")

    subparsers.add_parser("langs", help="List supported languages and installed toolchains")

    stash_parser = subparsers.add_parser("stash", help="Stash the program away for later")
    stash_parser.add_argument("prog", help="The program to stash")
    stash_parser.add_argument("-t", "--templ", action="store_true", default=False, help="Stash as a template")

    init_parser = subparsers.add_parser("init", help="Create a program from a stashed template")
    init_parser.add_argument("prog", help="The program to initialize from the template")

    restore_parser = subparsers.add_parser("restore", help="Restore the program to the stashed version")
    restore_parser.add_argument("prog", help="The program to restore")

    subparsers.add_parser("list", help="List stashed files")
    subparsers.add_parser("clear", help="Remove all stashed files and templates")

    run_parser = subparsers.add_parser("run", help="Build and run a program once, without judging")
    run_parser.add_argument("prog", help="The program to run")
    run_parser.add_argument("-i", "--input", type=str, default=None, help="File fed to stdin (default: empty)")
    run_parser.add_argument("-l", "--lang", type=str, default=None, help="Language (default: from extension)")
    run_parser.add_argument("--time-limit", type=float, default=None, help="Seconds for the run")
    run_parser.add_argument("--memory-limit", type=int, default=None, help="Megabytes for the run")

    show_parser = subparsers.add_parser("show", help="Print the test cases of a quest")
    show_parser.add_argument("name", help="The name of the quest")
    shown = show_parser.add_mutually_exclusive_group()
    shown.add_argument("-C", "--case", type=int, default=None, help="Show only this case number")
    shown.add_argument("-t", "--test", type=str, default=None, help="Show only this test by name")
    show_parser.add_argument("-a", "--answer", action="store_true", default=False, help="Show answers, not inputs")
    show_parser.add_argument("-d", "--dir", type=str, default=None, help="Load test cases from a local directory")
    return parser


def _overrides(args: argparse.Namespace) -> dict:
    overrides = {
        "time_limit": getattr(args, "time_limit", None),
        "memory_limit_mb": getattr(args, "memory_limit", None),
        "concurrency": getattr(args, "jobs", None),
        "epsilon": getattr(args, "epsilon", None),
    }
    if getattr(args, "mode", None) is not None:
        overrides["compare_mode"] = parse_mode(args.mode)
    if getattr(args, "fail_fast", False):
        overrides["fail_fast"] = True
    return overrides


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        config = Config.from_env(**_overrides(args))
        code = COMMANDS[args.command](args, config)
    except OwlQuestError as e:
        print(f"[owlquest error]: {e}", file=sys.stderr)
        sys.exit(e.exit_code)
    sys.exit(code)
