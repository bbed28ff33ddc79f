"""Configuration for owlquest, loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from openai import OpenAI

from owlquest.comparator import parse_mode
from owlquest.errors import ConfigError
from owlquest.models import CompareMode, QuestPolicy, ResourceLimits


def _default_home() -> Path:
    return Path.home() / ".owlgo"


@dataclass
class Config:
    home: Path = field(default_factory=_default_home)
    quest_url: str = "https://owlgo.dev/quests/{problem_id}.zip"
    time_limit: float | None = None  # seconds; None: per-language default
    memory_limit_mb: int | None = None
    build_timeout: float = 60.0  # seconds
    concurrency: int = 4
    compare_mode: CompareMode = CompareMode.TOKEN
    epsilon: float = 1e-6
    fail_fast: bool = False
    poll_interval: float = 0.01  # seconds
    fetch_timeout: float = 30.0  # seconds
    openai_api_key: str = ""
    llm_provider: str = "openai"  # "openai" or "ollama"
    review_model: str = "gpt-4o"
    review_temperature: float = 0.2
    ollama_base_url: str = "http://localhost:11434/v1"

    def policy(self) -> QuestPolicy:
        limits = None
        if self.time_limit is not None or self.memory_limit_mb is not None:
            limits = ResourceLimits(time_limit=self.time_limit, memory_limit_mb=self.memory_limit_mb)
        return QuestPolicy(
            fail_fast=self.fail_fast,
            concurrency=self.concurrency,
            limits=limits,
            compare_mode=self.compare_mode,
            epsilon=self.epsilon,
        )

    @property
    def review_enabled(self) -> bool:
        return bool(self.openai_api_key) or self.llm_provider == "ollama"

    def create_openai_client(self) -> OpenAI:
        """Create an OpenAI client configured for the active LLM provider."""
        if self.llm_provider == "ollama":
            return OpenAI(api_key="ollama", base_url=self.ollama_base_url)
        if not self.openai_api_key:
            raise ConfigError("OPENAI_API_KEY environment variable is required for reviews")
        return OpenAI(api_key=self.openai_api_key)

    @classmethod
    def from_env(cls, **overrides) -> Config:
        kwargs: dict = {}
        env_map: dict[str, tuple[str, type]] = {
            "OWLQUEST_HOME": ("home", Path),
            "OWLQUEST_QUEST_URL": ("quest_url", str),
            "OWLQUEST_TIME_LIMIT": ("time_limit", float),
            "OWLQUEST_MEMORY_LIMIT_MB": ("memory_limit_mb", int),
            "OWLQUEST_BUILD_TIMEOUT": ("build_timeout", float),
            "OWLQUEST_JOBS": ("concurrency", int),
            "OWLQUEST_COMPARE_MODE": ("compare_mode", parse_mode),
            "OWLQUEST_EPSILON": ("epsilon", float),
            "OWLQUEST_POLL_INTERVAL": ("poll_interval", float),
            "OWLQUEST_FETCH_TIMEOUT": ("fetch_timeout", float),
            "OPENAI_API_KEY": ("openai_api_key", str),
            "OWLQUEST_LLM_PROVIDER": ("llm_provider", str),
            "OWLQUEST_REVIEW_MODEL": ("review_model", str),
            "OLLAMA_BASE_URL": ("ollama_base_url", str),
        }
        for env_var, (field_name, conv) in env_map.items():
            val = os.environ.get(env_var)
            if val is None or val == "":
                continue
            try:
                kwargs[field_name] = conv(val)
            except ValueError as e:
                raise ConfigError(f"{env_var}: invalid value {val!r} ({e})") from e
        # OWLQUEST_FAIL_FAST: "1", "true" or "yes" enables
        ff_val = os.environ.get("OWLQUEST_FAIL_FAST")
        if ff_val is not None:
            kwargs["fail_fast"] = ff_val.lower() in ("1", "true", "yes")
        kwargs.update({k: v for k, v in overrides.items() if v is not None})

        config = cls(**kwargs)
        if config.concurrency < 1:
            raise ConfigError(f"concurrency must be at least 1, got {config.concurrency}")
        if config.time_limit is not None and config.time_limit <= 0:
            raise ConfigError(f"time limit must be positive, got {config.time_limit}")
        if config.epsilon < 0:
            raise ConfigError(f"epsilon must be non-negative, got {config.epsilon}")
        if config.memory_limit_mb is not None and config.memory_limit_mb <= 0:
            raise ConfigError(f"memory limit must be positive, got {config.memory_limit_mb}")
        return config
