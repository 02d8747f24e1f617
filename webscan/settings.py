from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from webscan.fetcher import DEFAULT_USER_AGENT

LOGGER = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def load_yaml(path: str) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


def resolve_settings(path: str | None = None) -> dict[str, Any]:
    settings: dict[str, Any] = {}
    if path and Path(path).exists():
        settings = load_yaml(path)
    elif path:
        LOGGER.warning("Settings file %s not found, using defaults", path)
    for section in ("paths", "workers", "queue", "http", "annotator", "scan"):
        settings.setdefault(section, {})
        if settings[section] is None:
            settings[section] = {}

    settings["paths"].setdefault("db_path", os.getenv("WEBSCAN_DB_PATH", "/data/webscan.db"))
    settings["workers"].setdefault("concurrency", int(os.getenv("WEBSCAN_WORKER_CONCURRENCY", "5")))
    settings["workers"].setdefault("poll_interval_seconds", 1.0)
    settings["queue"].setdefault("attempts", 3)
    settings["queue"].setdefault("backoff_seconds", 2.0)
    settings["queue"].setdefault("keep_completed_count", 1000)
    settings["queue"].setdefault("keep_completed_seconds", 3600)
    settings["queue"].setdefault("keep_failed_seconds", 24 * 3600)
    settings["http"].setdefault("fetch_timeout_seconds", 15.0)
    settings["http"].setdefault("probe_timeout_seconds", 5.0)
    settings["http"].setdefault("ssrf_timeout_seconds", 3.0)
    settings["http"].setdefault("user_agent", os.getenv("WEBSCAN_USER_AGENT", DEFAULT_USER_AGENT))
    settings["annotator"].setdefault("enabled", _env_flag("WEBSCAN_ANNOTATOR_ENABLED", "false"))
    settings["annotator"].setdefault("api_base", os.getenv("WEBSCAN_ANNOTATOR_API_BASE", "https://api.openai.com/v1"))
    settings["annotator"].setdefault("api_key", os.getenv("WEBSCAN_ANNOTATOR_API_KEY"))
    settings["annotator"].setdefault("model", "gpt-4")
    settings["annotator"].setdefault("timeout_seconds", 15.0)
    settings["annotator"].setdefault("max_tokens", 1000)
    settings["annotator"].setdefault("temperature", 0.7)
    settings["scan"].setdefault("cancel_check_interval", 1)
    settings["scan"].setdefault("excerpt_limit", 1000)
    return settings
