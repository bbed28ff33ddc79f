"""Factory for creating code executors based on configuration."""

from __future__ import annotations

from typing import TYPE_CHECKING

from owlquest.executor import LocalExecutor
from owlquest.executor_base import CodeExecutor

if TYPE_CHECKING:
    from owlquest.config import Config


def create_executor(config: Config) -> CodeExecutor:
    """Create a local executor tuned by *config*."""
    return LocalExecutor(
        poll_interval=config.poll_interval,
        build_timeout=config.build_timeout,
    )
