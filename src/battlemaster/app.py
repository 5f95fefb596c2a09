"""Application entry point for the battlemaster labeler."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint

from battlemaster import settings
from battlemaster.adapters.atproto_session import authorize
from battlemaster.adapters.jetstream_feed import JetstreamFeed
from battlemaster.adapters.ozone_labeler import OzoneLabeler
from battlemaster.adapters.sqlite_storage import SQLiteStorage
from battlemaster.client import build_client
from battlemaster.core.connection import ConnectionManager
from battlemaster.core.cursor import (
    Checkpointer,
    CursorTracker,
    current_time_us,
    resolve_startup_cursor,
)
from battlemaster.core.dedup import DedupCache
from battlemaster.core.errors import AuthError, ConfigError, FeedRejectedError
from battlemaster.core.periodic import run_periodically
from battlemaster.core.processor import LabelProcessor
from battlemaster.core.shutdown import ShutdownCoordinator

NAME = "BATTLEMASTER"
FONT = "tarty-1"

DEFAULT_REDACT_PATTERNS = ("BSKY_PASSWORD", "SIGNING_KEY")
STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", True):
        return []
    values = []
    for name in redact_cfg.get("patterns", DEFAULT_REDACT_PATTERNS):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging(config: dict) -> None:
    config = config or {}
    if not config.get("enabled", True):
        return

    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    secrets = _collect_redaction_values(config)
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/battlemaster.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)
    # websockets logs every frame at DEBUG; keep it at our level or quieter.
    logging.getLogger("websockets").setLevel(max(level, logging.INFO))
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


class _StartupInterrupted(Exception):
    """A stop signal arrived before the engine was running."""


async def _until_interrupted(step, interrupted: asyncio.Event):
    """Await ``step`` unless ``interrupted`` is set first."""

    task = asyncio.ensure_future(step)
    waiter = asyncio.ensure_future(interrupted.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
    if task in done:
        return task.result()
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    raise _StartupInterrupted()


async def _serve(config: settings.Settings) -> int:
    """Wire the engine together and run it until shutdown."""

    logger = logging.getLogger(__name__)
    app_cfg = config.app
    runtime = config.runtime

    storage = SQLiteStorage(runtime.db_path)
    storage.init_db()
    logger.info("Cursor store ready at %s", runtime.db_path)

    now_us = current_time_us()
    stored = storage.load_cursor(now_us)
    start_cursor = resolve_startup_cursor(stored, now_us, runtime.startup_policy)
    if start_cursor != stored:
        storage.save_cursor(start_cursor)
    tracker = CursorTracker(start_cursor)

    # Until the coordinator exists a signal only aborts startup.
    loop = asyncio.get_running_loop()
    interrupted = asyncio.Event()
    for sig in STOP_SIGNALS:
        loop.add_signal_handler(sig, interrupted.set)

    try:
        async with build_client(app_cfg.bsky_url, runtime.request_timeout_seconds) as http:
            try:
                session = await _until_interrupted(
                    authorize(http, app_cfg.bsky_handle, app_cfg.bsky_password), interrupted
                )
            except AuthError as exc:
                logger.error("Error in main: %s", exc)
                storage.close()
                return 1

            dedup = DedupCache(config.dedup.retention_seconds)
            processor = LabelProcessor(
                catalog=config.catalog,
                labeler=OzoneLabeler(http, session, app_cfg.did),
                dedup=dedup,
                authority_did=app_cfg.did,
            )
            logger.info("%s labels are loaded", len(config.catalog))

            manager = ConnectionManager(
                JetstreamFeed(app_cfg.jetstream_url, app_cfg.collection),
                processor,
                tracker,
                runtime.backoff,
                max_in_flight=runtime.max_in_flight,
            )
            try:
                await _until_interrupted(manager.start(), interrupted)
            except FeedRejectedError as exc:
                logger.error("Jetstream initialization failed: %s", exc)
                storage.close()
                return 1
            logger.info("Jetstream started with connection management")

            checkpointer = Checkpointer(storage, tracker, lambda: manager.connected)
            coordinator = ShutdownCoordinator(
                manager,
                checkpointer,
                storage,
                processor=processor,
                deadline=runtime.shutdown_deadline_seconds,
            )
            for sig in STOP_SIGNALS:
                loop.add_signal_handler(sig, coordinator.request, sig.name)

            # Explicit periodic tasks make the maintenance cadence obvious.
            periodic = [
                asyncio.create_task(
                    run_periodically(
                        app_cfg.cursor_interval_ms / 1000,
                        coordinator.stop,
                        checkpointer.save,
                        name="cursor-checkpoint",
                    )
                ),
                asyncio.create_task(
                    run_periodically(
                        config.dedup.sweep_interval_seconds,
                        coordinator.stop,
                        dedup.sweep,
                        name="dedup-sweep",
                    )
                ),
            ]

            exit_code = await coordinator.run()
            await asyncio.gather(*periodic, return_exceptions=True)
        return exit_code
    except _StartupInterrupted:
        logger.info("Interrupted during startup, exiting")
        storage.close()
        return 0
    finally:
        for sig in STOP_SIGNALS:
            loop.remove_signal_handler(sig)


def _load(config_path: Optional[str]) -> Optional[settings.Settings]:
    try:
        return settings.load_settings(config_path)
    except ConfigError as exc:
        # Logging is not configured yet, so fall back to a bare handler.
        logging.basicConfig(level=logging.INFO)
        logging.getLogger(__name__).error("Invalid configuration: %s", exc)
        return None


def _run(config_path: Optional[str]) -> int:
    _print_banner()
    config = _load(config_path)
    if config is None:
        return 1
    _configure_logging(config.logging)
    logger = logging.getLogger(__name__)
    logger.info("Starting battlemaster for %s", config.app.did)

    try:
        return asyncio.run(_serve(config))
    except Exception:
        logger.critical("Unhandled error in main", exc_info=True)
        return 1


def _check_config(config_path: Optional[str]) -> int:
    config = _load(config_path)
    if config is None:
        return 1
    print(f"DID:        {config.app.did}")
    print(f"Handle:     {config.app.bsky_handle}")
    print(f"Signing:    {'configured' if config.app.signing_key else 'missing'}")
    print(f"Jetstream:  {config.app.jetstream_url} ({config.app.collection})")
    print(f"Checkpoint: every {config.app.cursor_interval_ms} ms, policy={config.runtime.startup_policy.value}")
    print(f"Database:   {config.runtime.db_path}")
    for label in config.catalog:
        print(f"Label:      {label.identifier} [{label.category}] <- {label.rkey}")
    return 0


def _definitions(config_path: Optional[str]) -> int:
    config = _load(config_path)
    if config is None:
        return 1
    payload = {
        "labelValues": [label.identifier for label in config.catalog],
        "labelValueDefinitions": config.catalog.value_definitions(),
    }
    print(json.dumps(payload, indent=2, ensure_ascii=False))
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="battlemaster")
    parser.add_argument("--config", help="Path to config.json")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the labeler")
    subparsers.add_parser("check-config", help="Validate configuration and print a summary")
    subparsers.add_parser(
        "definitions",
        help="Print the label value definitions to declare on the labeler service.",
    )

    args = parser.parse_args(argv)
    if args.command == "check-config":
        return _check_config(args.config)
    if args.command == "definitions":
        return _definitions(args.config)
    return _run(args.config)


if __name__ == "__main__":
    raise SystemExit(main())
