"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from core.errors import ConfigError

DEFAULT_INTERVAL_MINUTES = 5
DEFAULT_QUEUE_THRESHOLD = 20


def parse_interval_minutes(raw: Any, default: int = DEFAULT_INTERVAL_MINUTES) -> int:
    """Parse a polling interval in minutes, falling back to the default."""

    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and exponential backoff for backend HTTP calls."""

    attempts: int = 3
    base_delay: float = 0.3


@dataclass(frozen=True)
class JobOptions:
    """Per-job options for the asynchronous work queue."""

    attempts: int = 3
    backoff_type: str = "exponential"
    backoff_delay: float = 5.0
    remove_on_complete: bool = True
    remove_on_fail: bool = False


@dataclass(frozen=True)
class PollingConfig:
    """Polling cadence and the inline-vs-queued dispatch threshold."""

    interval_minutes: int = DEFAULT_INTERVAL_MINUTES
    queue_threshold: int = DEFAULT_QUEUE_THRESHOLD
    job_options: JobOptions = field(default_factory=JobOptions)

    @property
    def interval_seconds(self) -> float:
        return float(self.interval_minutes * 60)


BACKEND_TITLES = {"rocket_chat": "Rocket.Chat", "pachca": "Pachca"}


@dataclass(frozen=True)
class NotificationConfig:
    """Alert delivery settings consumed by the checker and notifier adapters."""

    backend_title: str = "Rocket.Chat"
    broadcast_chat_id: Optional[str] = None
    include_breakdown: bool = True

    @classmethod
    def for_backend(
        cls,
        backend: str,
        broadcast_chat_id: Optional[str] = None,
        include_breakdown: bool = True,
    ) -> NotificationConfig:
        if backend not in BACKEND_TITLES:
            raise ConfigError("backend must be 'rocket_chat' or 'pachca'")
        return cls(
            backend_title=BACKEND_TITLES[backend],
            broadcast_chat_id=broadcast_chat_id,
            include_breakdown=include_breakdown,
        )


@dataclass(frozen=True)
class PachcaConfig:
    """Single-tenant Pachca watcher settings."""

    base_url: str
    access_token: str
    chat_ids: list[str] = field(default_factory=list)
    user_id: Optional[str] = None
    internal_base_url: str = "https://app.pachca.com/api/v3"
    internal_cookie: Optional[str] = None
    interval_minutes: int = DEFAULT_INTERVAL_MINUTES

    @property
    def interval_seconds(self) -> float:
        return float(self.interval_minutes * 60)


def parse_chat_ids(raw: Optional[str]) -> list[str]:
    """Split a comma-separated id list, dropping blanks."""

    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


def internal_cookie(cookie: Optional[str], jwt: Optional[str]) -> Optional[str]:
    """Prefer an explicit cookie; otherwise turn a bare JWT into ``jwt=<value>``."""

    if cookie:
        return cookie
    if jwt:
        return f"jwt={jwt}"
    return None
