"""Configuration loading for battlemaster.

User-editable settings (labels, dedup, reconnect, cursor, logging) live in a
single JSON file for quick edits without touching Python. Identity, secrets
and the upstream endpoints come from the environment, read via python-dotenv
so they stay out of the repo.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Mapping, Optional
from urllib.parse import urlsplit

from dotenv import load_dotenv

from battlemaster.core.backoff import BackoffPolicy
from battlemaster.core.catalog import LabelCatalog, build_catalog
from battlemaster.core.config import AppConfig, DedupConfig, RuntimeConfig
from battlemaster.core.cursor import StartupPolicy
from battlemaster.core.errors import ConfigError

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))

# config.json sits next to pyproject.toml unless BATTLEMASTER_CONFIG says otherwise.
CONFIG_PATH = os.path.join(PROJECT_ROOT, "config.json")

DEFAULT_DB_PATH = "battlemaster.db"
DEFAULT_JETSTREAM_URL = "wss://jetstream.atproto.tools/subscribe"
DEFAULT_COLLECTION = "app.bsky.feed.like"
DEFAULT_CURSOR_INTERVAL_MS = 100000
DEFAULT_BSKY_URL = "https://bsky.social"


@dataclass(frozen=True)
class Settings:
    app: AppConfig
    dedup: DedupConfig
    runtime: RuntimeConfig
    catalog: LabelCatalog
    logging: dict


def resolve_config_path(explicit: Optional[str] = None) -> str:
    return explicit or os.getenv("BATTLEMASTER_CONFIG") or CONFIG_PATH


def load_json_config(path: str) -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(path):
        raise ConfigError(f"Config file not found: {path}")
    with open(path, "r", encoding="utf-8") as handle:
        try:
            data = json.load(handle)
        except ValueError as exc:
            raise ConfigError(f"Config file {path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")
    return data


def _is_url(value: str, schemes: tuple[str, ...]) -> bool:
    parts = urlsplit(value)
    return parts.scheme in schemes and bool(parts.netloc)


def _number(section: dict, key: str, default: float, errors: list[str], where: str) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        errors.append(f"{where}.{key} must be a positive number")
        return default
    return float(value)


def build_app_config(env: Mapping[str, str]) -> AppConfig:
    """Validate the environment contract into an AppConfig."""

    errors: list[str] = []

    def required(name: str) -> str:
        value = (env.get(name) or "").strip()
        if not value:
            errors.append(f"{name} is required")
        return value

    did = required("DID")
    if did and not did.startswith("did:"):
        errors.append("DID must start with 'did:'")
    signing_key = required("SIGNING_KEY")
    handle = required("BSKY_HANDLE")
    password = required("BSKY_PASSWORD")

    jetstream_url = env.get("JETSTREAM_URL") or DEFAULT_JETSTREAM_URL
    if not _is_url(jetstream_url, ("ws", "wss")):
        errors.append(f"JETSTREAM_URL is not a valid websocket url: {jetstream_url}")
    bsky_url = env.get("BSKY_URL") or DEFAULT_BSKY_URL
    if not _is_url(bsky_url, ("http", "https")):
        errors.append(f"BSKY_URL is not a valid http url: {bsky_url}")
    collection = env.get("COLLECTION") or DEFAULT_COLLECTION

    raw_interval = env.get("CURSOR_INTERVAL") or str(DEFAULT_CURSOR_INTERVAL_MS)
    try:
        cursor_interval = int(raw_interval)
    except ValueError:
        cursor_interval = 0
    if cursor_interval <= 0:
        errors.append(f"CURSOR_INTERVAL must be a positive integer, got {raw_interval!r}")

    if errors:
        raise ConfigError("; ".join(errors))

    return AppConfig(
        did=did,
        signing_key=signing_key,
        jetstream_url=jetstream_url,
        collection=collection,
        cursor_interval_ms=cursor_interval,
        bsky_handle=handle,
        bsky_password=password,
        bsky_url=bsky_url.rstrip("/"),
    )


def build_backoff(section: dict) -> BackoffPolicy:
    max_attempts = section.get("max_attempts")
    try:
        return BackoffPolicy(
            base_delay=float(section.get("base_delay_seconds", 1.0)),
            multiplier=float(section.get("multiplier", 2.0)),
            max_delay=float(section.get("max_delay_seconds", 60.0)),
            max_attempts=int(max_attempts) if max_attempts is not None else None,
            reset_after=float(section.get("reset_after_seconds", 30.0)),
            jitter=float(section.get("jitter", 0.0)),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"reconnect: {exc}") from exc


def build_runtime_config(config: dict) -> RuntimeConfig:
    errors: list[str] = []

    storage = config.get("storage", {})
    db_path = storage.get("db_path", DEFAULT_DB_PATH)
    if not os.path.isabs(db_path):
        db_path = os.path.join(PROJECT_ROOT, db_path)

    raw_policy = config.get("cursor", {}).get("startup_policy", StartupPolicy.RESUME.value)
    try:
        policy = StartupPolicy(raw_policy)
    except ValueError:
        errors.append(
            "cursor.startup_policy must be one of "
            + ", ".join(item.value for item in StartupPolicy)
        )
        policy = StartupPolicy.RESUME

    shutdown = config.get("shutdown", {})
    runtime = config.get("runtime", {})
    deadline = _number(shutdown, "deadline_seconds", 7.0, errors, "shutdown")
    timeout = _number(runtime, "request_timeout_seconds", 10.0, errors, "runtime")
    max_in_flight = runtime.get("max_in_flight", 64)
    if isinstance(max_in_flight, bool) or not isinstance(max_in_flight, int) or max_in_flight < 1:
        errors.append("runtime.max_in_flight must be a positive integer")
        max_in_flight = 64

    if errors:
        raise ConfigError("; ".join(errors))

    return RuntimeConfig(
        db_path=db_path,
        startup_policy=policy,
        shutdown_deadline_seconds=deadline,
        max_in_flight=max_in_flight,
        request_timeout_seconds=timeout,
        backoff=build_backoff(config.get("reconnect", {})),
    )


def build_dedup_config(section: dict) -> DedupConfig:
    errors: list[str] = []
    retention = _number(section, "retention_seconds", 3600.0, errors, "dedup")
    sweep = _number(section, "sweep_interval_seconds", 300.0, errors, "dedup")
    if errors:
        raise ConfigError("; ".join(errors))
    return DedupConfig(retention_seconds=retention, sweep_interval_seconds=sweep)


def load_settings(
    config_path: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Load and validate config.json plus the environment."""

    if env is None:
        load_dotenv()
        env = os.environ
    config = load_json_config(resolve_config_path(config_path))

    catalog = build_catalog(config.get("labels", []))
    if not catalog:
        raise ConfigError("labels: at least one enabled label is required")

    return Settings(
        app=build_app_config(env),
        dedup=build_dedup_config(config.get("dedup", {})),
        runtime=build_runtime_config(config),
        catalog=catalog,
        logging=config.get("logging", {}),
    )
