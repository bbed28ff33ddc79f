"""Harness failures.

Per-test verdicts are outcomes and live in ``owlquest.models``; the exceptions
here mean the harness itself could not do its job.
"""

from __future__ import annotations


class OwlQuestError(Exception):
    exit_code = 9


class ConfigError(OwlQuestError):
    """Unknown language, bad policy or bad environment value."""

    exit_code = 6


class StoreError(OwlQuestError):
    """Test cases could not be fetched or loaded."""

    exit_code = 7


class SpawnError(OwlQuestError):
    """A build or run process could not be started."""

    exit_code = 8
