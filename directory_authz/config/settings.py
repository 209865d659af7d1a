"""
Settings loader for the authorization core.

Loads config/directory_authz.yml and applies environment overrides.

Consumers:
  - SubscriptionLifecycleService: billing timezone for month boundaries
  - EventLogService: bulk delete threshold, page sizes
  - expire_subscriptions job: whether the sweep writes history rows

Usage:
    from directory_authz.config.settings import get_settings

    settings = get_settings()
    settings.bulk_delete_threshold  # 100
"""

import logging
import os
from dataclasses import dataclass
from datetime import timezone, tzinfo
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "DIRECTORY_AUTHZ_CONFIG"


@dataclass(frozen=True)
class Settings:
    """Resolved, immutable settings snapshot."""
    billing_timezone: str = "UTC"
    bulk_delete_threshold: int = 100
    default_page_size: int = 50
    max_page_size: int = 500
    expiry_writes_history: bool = True

    @property
    def tzinfo(self) -> tzinfo:
        if self.billing_timezone.upper() == "UTC":
            return timezone.utc
        return ZoneInfo(self.billing_timezone)


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class SettingsLoader:
    """
    Thread-safe singleton loader for config/directory_authz.yml.

    A missing file is not an error: defaults apply and a warning is logged.
    """

    _instance: Optional["SettingsLoader"] = None
    _lock = Lock()

    def __new__(cls, config_path: Optional[str] = None):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self, config_path: Optional[str] = None):
        if self._initialized:
            return

        self._config_path = config_path
        self._raw: Dict[str, Any] = {}
        self._settings = Settings()
        self._load_lock = Lock()

        self._load()
        self._initialized = True

    def _resolve_path(self) -> Path:
        explicit = self._config_path or os.getenv(CONFIG_ENV_VAR)
        if explicit:
            return Path(explicit)

        candidates = [
            Path(__file__).parent.parent.parent / "config" / "directory_authz.yml",
            Path(os.getcwd()) / "config" / "directory_authz.yml",
        ]

        for p in candidates:
            resolved = p.resolve()
            if resolved.exists():
                return resolved

        raise FileNotFoundError(
            f"directory_authz.yml not found in: {[str(p) for p in candidates]}"
        )

    def _load(self) -> None:
        with self._load_lock:
            try:
                path = self._resolve_path()
                logger.info("Loading authorization settings from %s", path)
                with open(path, "r") as f:
                    self._raw = yaml.safe_load(f) or {}
            except FileNotFoundError:
                logger.warning("directory_authz.yml not found, using defaults")
                self._raw = {}

            self._settings = self._build(self._raw)

    def _build(self, raw: Dict[str, Any]) -> Settings:
        billing = raw.get("billing", {}) or {}
        event_log = raw.get("event_log", {}) or {}
        jobs = raw.get("jobs", {}) or {}
        defaults = Settings()

        values = {
            "billing_timezone": billing.get("timezone", defaults.billing_timezone),
            "bulk_delete_threshold": int(
                event_log.get("bulk_delete_threshold", defaults.bulk_delete_threshold)
            ),
            "default_page_size": int(
                event_log.get("default_page_size", defaults.default_page_size)
            ),
            "max_page_size": int(event_log.get("max_page_size", defaults.max_page_size)),
            "expiry_writes_history": bool(
                jobs.get("expiry_writes_history", defaults.expiry_writes_history)
            ),
        }

        env_overrides = {
            "BILLING_TIMEZONE": ("billing_timezone", str),
            "EVENT_LOG_BULK_DELETE_THRESHOLD": ("bulk_delete_threshold", int),
            "EVENT_LOG_DEFAULT_PAGE_SIZE": ("default_page_size", int),
            "EVENT_LOG_MAX_PAGE_SIZE": ("max_page_size", int),
            "JOBS_EXPIRY_WRITES_HISTORY": ("expiry_writes_history", _env_bool),
        }
        for env_name, (key, cast) in env_overrides.items():
            value = os.getenv(env_name)
            if value is not None and value != "":
                values[key] = cast(value)

        try:
            if values["billing_timezone"].upper() != "UTC":
                ZoneInfo(values["billing_timezone"])
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(
                "Unknown billing timezone, falling back to UTC",
                extra={"billing_timezone": values["billing_timezone"]},
            )
            values["billing_timezone"] = "UTC"

        return Settings(**values)

    @property
    def settings(self) -> Settings:
        return self._settings

    def reload(self) -> None:
        """Re-read the YAML from disk and re-apply environment overrides."""
        self._load()

    @classmethod
    def reset(cls) -> None:
        """Drop the singleton so the next access re-reads configuration."""
        with cls._lock:
            cls._instance = None


def get_settings() -> Settings:
    return SettingsLoader().settings
