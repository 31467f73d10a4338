"""
dealpilot - Client Configuration

Settings resolved from keyword arguments first, then environment variables.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from .errors import InvalidConfigError
from .logging import setup_logging


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"Invalid {name}: expected a number, got {raw!r}")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Invalid {name}: expected an integer, got {raw!r}")


@dataclass
class ClientSettings:
    """
    Runtime settings for the copilot client.

    Attributes:
        base_url: Functions host, e.g. https://project.example.co
        function_name: Streaming function name under /functions/v1/
        timeout: Timeout in seconds for opening connections and for
            non-streaming calls. Stream bodies have no read timeout.
        cache_ttl: Default Result Cache TTL in seconds
        cache_max_entries: Result Cache size ceiling
        max_retries: Retries for non-streaming analysis calls (0 = none)
        log_level: Level used by setup_logging()
        log_format: "json" or "text"
    """
    base_url: str = ""
    function_name: str = "copilot"
    timeout: float = 60.0
    cache_ttl: float = 300.0
    cache_max_entries: int = 50
    max_retries: int = 0
    log_level: str = "INFO"
    log_format: str = "json"
    extra_headers: dict = field(default_factory=dict)

    @classmethod
    def from_env(cls, **overrides) -> "ClientSettings":
        """Build settings from DEALPILOT_* variables; keyword overrides win."""
        settings = cls(
            base_url=os.getenv("DEALPILOT_BASE_URL", ""),
            function_name=os.getenv("DEALPILOT_FUNCTION", "copilot"),
            timeout=_env_float("DEALPILOT_TIMEOUT", 60.0),
            cache_ttl=_env_float("DEALPILOT_CACHE_TTL", 300.0),
            cache_max_entries=_env_int("DEALPILOT_CACHE_MAX_ENTRIES", 50),
            max_retries=_env_int("DEALPILOT_MAX_RETRIES", 0),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json").lower(),
        )
        for key, value in overrides.items():
            if value is None:
                continue
            if not hasattr(settings, key):
                raise TypeError(f"Unknown setting: {key}")
            setattr(settings, key, value)
        return settings

    def validate(self) -> None:
        """Fail closed on settings the client cannot work with."""
        if not self.base_url:
            raise InvalidConfigError(
                "Base URL required. Set DEALPILOT_BASE_URL environment variable or pass base_url parameter."
            )
        if self.cache_ttl <= 0:
            raise InvalidConfigError("cache_ttl must be positive")
        if self.cache_max_entries < 1:
            raise InvalidConfigError("cache_max_entries must be at least 1")
        if self.max_retries < 0:
            raise InvalidConfigError("max_retries cannot be negative")

    @property
    def json_logs(self) -> bool:
        return self.log_format == "json"

    def configure_logging(self):
        """Install the package log handler using these settings."""
        return setup_logging(self.log_level, json_output=self.json_logs)


def load_settings(base_url: Optional[str] = None, **overrides) -> ClientSettings:
    """Resolve and validate settings in one call."""
    settings = ClientSettings.from_env(base_url=base_url, **overrides)
    settings.validate()
    return settings
