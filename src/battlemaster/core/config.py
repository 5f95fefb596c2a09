"""Core configuration dataclasses.

We keep config parsing outside the core (see ``battlemaster.settings``), but
these dataclasses define the shape the core expects so adapters and app
layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from battlemaster.core.backoff import BackoffPolicy
from battlemaster.core.cursor import StartupPolicy


@dataclass(frozen=True)
class AppConfig:
    """Authority identity and upstream endpoints."""

    did: str
    signing_key: str = field(repr=False)
    jetstream_url: str
    collection: str
    cursor_interval_ms: int
    bsky_handle: str
    bsky_password: str = field(repr=False)
    bsky_url: str = "https://bsky.social"


@dataclass(frozen=True)
class DedupConfig:
    """Deduplication window and sweep cadence."""

    retention_seconds: float = 3600.0
    sweep_interval_seconds: float = 300.0


@dataclass(frozen=True)
class RuntimeConfig:
    """Process-level knobs for the ingestion engine."""

    db_path: str
    startup_policy: StartupPolicy = StartupPolicy.RESUME
    shutdown_deadline_seconds: float = 7.0
    max_in_flight: int = 64
    request_timeout_seconds: float = 10.0
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
