"""Runtime configuration for the tracker and its message queue."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping, Optional
from urllib.parse import urlparse

DEFAULT_API_HOST = "https://api.mixpanel.com"
DEFAULT_STORAGE_DIR = Path.home() / ".mixpanel_analytics"

# Mixpanel accepts at most 50 messages per /track or /engage request.
MAX_BATCH_SIZE = 50

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class MixpanelConfiguration:
    """Where to send messages, how to batch them, and where to keep them."""

    api_host: str = DEFAULT_API_HOST
    events_endpoint: str = "/track"
    people_endpoint: str = "/engage"
    batch_size: int = MAX_BATCH_SIZE
    max_queue_size: int = 10_000
    auto_flush: bool = True
    flush_interval: float = 60.0
    request_timeout: float = 10.0
    backoff_base: float = 5.0
    backoff_max: float = 300.0
    storage_dir: Path = field(default_factory=lambda: DEFAULT_STORAGE_DIR)

    def __post_init__(self):
        self.storage_dir = Path(self.storage_dir).expanduser()

    @property
    def events_url(self) -> str:
        return self._join(self.events_endpoint)

    @property
    def people_url(self) -> str:
        return self._join(self.people_endpoint)

    def _join(self, endpoint: str) -> str:
        return self.api_host.rstrip("/") + "/" + endpoint.lstrip("/")

    def validate(self) -> "MixpanelConfiguration":
        """Raise ValueError listing every invalid field."""
        errors = []

        scheme = urlparse(self.api_host).scheme
        if scheme not in ("http", "https"):
            errors.append(f"api_host must be an http(s) URL: {self.api_host!r}")
        if not 1 <= self.batch_size <= MAX_BATCH_SIZE:
            errors.append(f"batch_size must be between 1 and {MAX_BATCH_SIZE}")
        if self.max_queue_size < self.batch_size:
            errors.append("max_queue_size must be >= batch_size")
        if self.flush_interval <= 0:
            errors.append("flush_interval must be positive")
        if self.request_timeout <= 0:
            errors.append("request_timeout must be positive")
        if self.backoff_base <= 0 or self.backoff_max < self.backoff_base:
            errors.append("backoff_base must be positive and <= backoff_max")

        if errors:
            raise ValueError("Config errors:\n  " + "\n  ".join(errors))
        return self

    def with_overrides(self, **changes) -> "MixpanelConfiguration":
        return replace(self, **changes)

    @classmethod
    def from_env(
        cls, environ: Optional[Mapping[str, str]] = None
    ) -> "MixpanelConfiguration":
        """Build a configuration from MIXPANEL_* environment variables."""
        env = os.environ if environ is None else environ
        kwargs = {}

        if env.get("MIXPANEL_API_HOST"):
            kwargs["api_host"] = env["MIXPANEL_API_HOST"]
        if env.get("MIXPANEL_BATCH_SIZE"):
            kwargs["batch_size"] = int(env["MIXPANEL_BATCH_SIZE"])
        if env.get("MIXPANEL_MAX_QUEUE_SIZE"):
            kwargs["max_queue_size"] = int(env["MIXPANEL_MAX_QUEUE_SIZE"])
        if env.get("MIXPANEL_AUTO_FLUSH"):
            kwargs["auto_flush"] = env["MIXPANEL_AUTO_FLUSH"].lower() in _TRUTHY
        if env.get("MIXPANEL_FLUSH_INTERVAL"):
            kwargs["flush_interval"] = float(env["MIXPANEL_FLUSH_INTERVAL"])
        if env.get("MIXPANEL_REQUEST_TIMEOUT"):
            kwargs["request_timeout"] = float(env["MIXPANEL_REQUEST_TIMEOUT"])
        if env.get("MIXPANEL_STORAGE_DIR"):
            kwargs["storage_dir"] = Path(env["MIXPANEL_STORAGE_DIR"])

        return cls(**kwargs).validate()
