"""Prompt templates for the code review agent."""

from __future__ import annotations

from owlquest.models import QuestAttempt, QuestStatus, Verdict

# Keep prompts bounded on large outputs.
_MAX_SNIPPET = 2000

REVIEW_SYSTEM = """\
You are an experienced competitive programming coach reviewing a contestant's solution.

Rules:
- You are given the problem statement (if available), the submitted source code and
  the judge report from running it against the test cases.
- Explain the most likely cause of every failing verdict (wrong answer, time limit,
  memory limit, runtime error, compile error). Point at specific lines.
- Comment on algorithmic complexity relative to the problem constraints.
- Suggest concrete fixes, but do NOT rewrite the whole solution.
- If everything was accepted, give brief feedback on style and possible simplifications.
- Be concise. Use Markdown headings and bullet points."""


def _snippet(text: str) -> str:
    if len(text) <= _MAX_SNIPPET:
        return text
    return text[:_MAX_SNIPPET] + "\n... (truncated)"


def review_user_prompt(
    problem_text: str,
    source: str,
    attempt: QuestAttempt,
    language: str,
) -> str:
    parts = []
    if problem_text:
        parts.append(f"# Problem\n\n{problem_text}")
    parts.append(f"\n## Submission ({language})\n```{language}\n{source}\n```")
    parts.append("\n## Judge Report")
    parts.append(f"Overall status: {attempt.status.value}")
    parts.append(f"Passed: {attempt.passed}, failed: {attempt.failed}")

    if attempt.status == QuestStatus.COMPILE_ERROR:
        parts.append(f"\n### Compiler Output\n```\n{_snippet(attempt.build_diagnostics)}\n```")

    for entry in attempt.entries:
        case = entry.test_case
        parts.append(
            f"\nTest {case.ordinal} ({case.name}): {entry.verdict.value} "
            f"[{entry.summary.duration * 1000:.0f}ms, {entry.summary.peak_memory_kb}KB]"
        )
        if entry.verdict == Verdict.ACCEPTED:
            continue
        parts.append(f"  Input:\n```\n{_snippet(case.input.decode('utf-8', errors='replace'))}\n```")
        parts.append(f"  Expected:\n```\n{_snippet(case.expected.decode('utf-8', errors='replace'))}\n```")
        parts.append(f"  Actual:\n```\n{_snippet(entry.summary.stdout)}\n```")
        if entry.summary.stderr:
            parts.append(f"  Stderr:\n```\n{_snippet(entry.summary.stderr)}\n```")
    return "\n".join(parts)
