"""Output comparison under token, strict and numeric-tolerant semantics."""

from __future__ import annotations

import math
import re

from owlquest.errors import ConfigError
from owlquest.models import CompareMode

DEFAULT_EPSILON = 1e-6

_NUMBER = re.compile(rb"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_INTEGER = re.compile(rb"[+-]?\d+")


def compare(
    actual: bytes | str,
    expected: bytes | str,
    mode: CompareMode = CompareMode.TOKEN,
    epsilon: float = DEFAULT_EPSILON,
) -> bool:
    """Return True if *actual* output matches *expected* under *mode*."""
    actual = _as_bytes(actual)
    expected = _as_bytes(expected)

    if mode == CompareMode.TOKEN:
        return actual.split() == expected.split()
    if mode == CompareMode.STRICT:
        return _normalize_newlines(actual) == _normalize_newlines(expected)
    if mode == CompareMode.NUMERIC:
        if epsilon < 0:
            raise ConfigError(f"epsilon must be non-negative, got {epsilon}")
        return _numeric_match(actual.split(), expected.split(), epsilon)
    raise ConfigError(f"Unknown compare mode: {mode!r}")


def parse_mode(value: str | CompareMode) -> CompareMode:
    if isinstance(value, CompareMode):
        return value
    try:
        return CompareMode(value.lower())
    except ValueError:
        choices = ", ".join(m.value for m in CompareMode)
        raise ConfigError(f"Unknown compare mode '{value}' (expected one of: {choices})") from None


def _as_bytes(data: bytes | str) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    return data


def _normalize_newlines(data: bytes) -> bytes:
    return data.replace(b"\r\n", b"\n")


def _numeric_match(actual: list[bytes], expected: list[bytes], epsilon: float) -> bool:
    if len(actual) != len(expected):
        return False
    for a, e in zip(actual, expected):
        if a == e:
            continue
        if not (_NUMBER.fullmatch(a) and _NUMBER.fullmatch(e)):
            return False
        # integers are exact; tolerance only applies when a real number is involved
        if _INTEGER.fullmatch(a) and _INTEGER.fullmatch(e):
            if int(a) != int(e):
                return False
            continue
        if not math.isclose(float(a.decode()), float(e.decode()), rel_tol=epsilon, abs_tol=epsilon):
            return False
    return True
