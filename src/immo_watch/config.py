from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from immo_watch.utils.url_utils import is_http_url

logger = logging.getLogger(__name__)

_CHAT_ID = re.compile(r"^-?\d+$")
_PLATFORM_ID = re.compile(r"^[A-Za-z0-9_-]+$")
DEFAULT_INSTANCE = "default"
EXPLORE_ALL_MAX_PAGES = 50


class ConfigError(ValueError):
    """Raised when configuration is invalid."""


@dataclass(slots=True)
class PlatformSettings:
    id: str
    type: str
    url: str
    max_pages: int = 1
    options: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TelegramSettings:
    token_env_var: str = "TELEGRAM_TOKEN"
    chat_ids: list[str] = field(default_factory=list)
    chat_ids_env_var: str = "TELEGRAM_CHAT_IDS"
    timeout_seconds: int = 15

    def resolve_token(self) -> str:
        return os.getenv(self.token_env_var, "").strip()

    def resolve_chat_ids(self) -> list[str]:
        if self.chat_ids:
            return list(self.chat_ids)
        return _parse_chat_ids(os.getenv(self.chat_ids_env_var, ""), field_name=self.chat_ids_env_var)


@dataclass(slots=True)
class StorageSettings:
    data_dir: str = "data"
    max_size: int = 100
    remove_count: int = 70


@dataclass(slots=True)
class ScheduleSettings:
    min_interval_seconds: float = 300.0
    max_interval_seconds: float = 480.0
    notification_delay_min_seconds: float = 0.5
    notification_delay_max_seconds: float = 1.0
    error_pause_seconds: float = 5.0


@dataclass(slots=True)
class RetrySettings:
    max_retries: int = 3
    initial_delay_seconds: float = 5.0


@dataclass(slots=True)
class BrowserSettings:
    headless: bool = True
    navigation_timeout_seconds: int = 30
    selector_timeout_seconds: int = 15
    locale: str = "de-DE"
    timezone_id: str = "Europe/Berlin"


@dataclass(slots=True)
class LoggingSettings:
    audit_log: str | None = None


@dataclass(slots=True)
class AppConfig:
    platforms: list[PlatformSettings]
    instance: str = DEFAULT_INSTANCE
    telegram: TelegramSettings = field(default_factory=TelegramSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    schedule: ScheduleSettings = field(default_factory=ScheduleSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    browser: BrowserSettings = field(default_factory=BrowserSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    log_level: str = "INFO"

    def audit_log_path(self) -> Path:
        if self.logging.audit_log:
            return Path(self.logging.audit_log)
        return Path(self.storage.data_dir) / f"debug.{self.instance}.log"


def _parse_chat_ids(raw: str, *, field_name: str) -> list[str]:
    chat_ids = [part.strip() for part in raw.split(",") if part.strip()]
    invalid = [chat_id for chat_id in chat_ids if not _CHAT_ID.match(chat_id)]
    if invalid:
        raise ConfigError(f"{field_name} contains invalid chat ids: {', '.join(invalid)}")
    return chat_ids


def validate_instance(name: str) -> str:
    instance = name.strip()
    if not _PLATFORM_ID.match(instance):
        raise ConfigError(f"instance '{instance}' may only contain letters, digits, '_' and '-'")
    return instance


def _as_mapping(value: Any, *, field_name: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{field_name} must be a mapping")
    return value


def _as_bool(value: Any, *, field_name: str) -> bool:
    if isinstance(value, bool):
        return value

    if isinstance(value, int) and value in {0, 1}:
        return bool(value)

    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"true", "1", "yes", "on"}:
            return True
        if normalized in {"false", "0", "no", "off"}:
            return False

    raise ConfigError(f"{field_name} must be a boolean")


def _as_int(value: Any, *, field_name: str, minimum: int | None = None) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{field_name} must be an integer")

    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{field_name} must be an integer") from exc

    if minimum is not None and parsed < minimum:
        raise ConfigError(f"{field_name} must be >= {minimum}")
    return parsed


def _as_float(value: Any, *, field_name: str, minimum: float | None = None) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{field_name} must be a number")

    try:
        parsed = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{field_name} must be a number") from exc

    if minimum is not None and parsed < minimum:
        raise ConfigError(f"{field_name} must be >= {minimum}")
    return parsed


def _as_str(value: Any, default: str) -> str:
    if value is None:
        return default
    return str(value).strip() or default


def _resolve_relative_path(config_path: Path, raw_path: str) -> str:
    candidate = Path(raw_path).expanduser()
    if candidate.is_absolute():
        return str(candidate)
    return str((config_path.parent / candidate).resolve())


def _load_platforms(raw_platforms: Any) -> list[PlatformSettings]:
    if not isinstance(raw_platforms, list) or not raw_platforms:
        raise ConfigError("Config must define at least one platform")

    platforms: list[PlatformSettings] = []
    seen_ids: set[str] = set()
    for index, platform in enumerate(raw_platforms, start=1):
        if not isinstance(platform, dict):
            raise ConfigError(f"Platform entry #{index} must be a mapping")

        platform_id = str(platform.get("id", "")).strip()
        platform_type = str(platform.get("type", "")).strip() or platform_id
        if not platform_id:
            raise ConfigError(f"Platform entry #{index} missing id")
        if not _PLATFORM_ID.match(platform_id):
            raise ConfigError(
                f"Platform id '{platform_id}' may only contain letters, digits, '_' and '-'"
            )
        if platform_id in seen_ids:
            raise ConfigError(f"Duplicate platform id '{platform_id}'")
        seen_ids.add(platform_id)

        url = str(platform.get("url") or "").strip()
        url_env_var = str(platform.get("url_env_var") or "").strip()
        if not url and url_env_var:
            url = os.getenv(url_env_var, "").strip()
            if not url:
                logger.warning(
                    "Platform %s disabled: environment variable %s is not set",
                    platform_id,
                    url_env_var,
                )
                continue
        if not url:
            raise ConfigError(f"Platform entry #{index} missing one of: url, url_env_var")
        if not is_http_url(url):
            raise ConfigError(f"Platform '{platform_id}' has an invalid URL: {url}")

        options = {
            key: value
            for key, value in platform.items()
            if key not in {"id", "type", "url", "url_env_var", "max_pages"}
        }

        platforms.append(
            PlatformSettings(
                id=platform_id,
                type=platform_type,
                url=url,
                max_pages=_as_int(
                    platform.get("max_pages", 1),
                    field_name=f"platforms.{platform_id}.max_pages",
                    minimum=1,
                ),
                options=options,
            )
        )

    if not platforms:
        raise ConfigError("At least one platform filter URL is required")
    return platforms


def load_config(path: str | Path) -> AppConfig:
    config_path = Path(path).expanduser().resolve()
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            parsed = yaml.safe_load(handle) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Config file is not valid YAML: {exc}") from exc

    if not isinstance(parsed, dict):
        raise ConfigError("Config root must be a mapping")

    platforms = _load_platforms(parsed.get("platforms", []))

    instance = validate_instance(
        _as_str(
            parsed.get("instance"),
            os.getenv("INSTANCE_NAME", "").strip() or DEFAULT_INSTANCE,
        )
    )

    raw_telegram = _as_mapping(parsed.get("telegram"), field_name="telegram")
    raw_chat_ids = raw_telegram.get("chat_ids")
    if raw_chat_ids is None:
        chat_ids: list[str] = []
    elif isinstance(raw_chat_ids, list):
        chat_ids = _parse_chat_ids(
            ",".join(str(item) for item in raw_chat_ids),
            field_name="telegram.chat_ids",
        )
    else:
        chat_ids = _parse_chat_ids(str(raw_chat_ids), field_name="telegram.chat_ids")

    telegram_settings = TelegramSettings(
        token_env_var=_as_str(raw_telegram.get("token_env_var"), "TELEGRAM_TOKEN"),
        chat_ids=chat_ids,
        chat_ids_env_var=_as_str(raw_telegram.get("chat_ids_env_var"), "TELEGRAM_CHAT_IDS"),
        timeout_seconds=_as_int(
            raw_telegram.get("timeout_seconds", 15),
            field_name="telegram.timeout_seconds",
            minimum=1,
        ),
    )

    raw_storage = _as_mapping(parsed.get("storage"), field_name="storage")
    storage_settings = StorageSettings(
        data_dir=_resolve_relative_path(config_path, _as_str(raw_storage.get("data_dir"), "data")),
        max_size=_as_int(raw_storage.get("max_size", 100), field_name="storage.max_size", minimum=1),
        remove_count=_as_int(
            raw_storage.get("remove_count", 70),
            field_name="storage.remove_count",
            minimum=0,
        ),
    )
    if storage_settings.remove_count >= storage_settings.max_size:
        raise ConfigError("storage.remove_count must be smaller than storage.max_size")

    raw_schedule = _as_mapping(parsed.get("schedule"), field_name="schedule")
    schedule_settings = ScheduleSettings(
        min_interval_seconds=_as_float(
            raw_schedule.get("min_interval_seconds", 300),
            field_name="schedule.min_interval_seconds",
            minimum=0,
        ),
        max_interval_seconds=_as_float(
            raw_schedule.get("max_interval_seconds", 480),
            field_name="schedule.max_interval_seconds",
            minimum=0,
        ),
        notification_delay_min_seconds=_as_float(
            raw_schedule.get("notification_delay_min_seconds", 0.5),
            field_name="schedule.notification_delay_min_seconds",
            minimum=0,
        ),
        notification_delay_max_seconds=_as_float(
            raw_schedule.get("notification_delay_max_seconds", 1.0),
            field_name="schedule.notification_delay_max_seconds",
            minimum=0,
        ),
        error_pause_seconds=_as_float(
            raw_schedule.get("error_pause_seconds", 5),
            field_name="schedule.error_pause_seconds",
            minimum=0,
        ),
    )
    if schedule_settings.min_interval_seconds > schedule_settings.max_interval_seconds:
        raise ConfigError("schedule.min_interval_seconds must be <= max_interval_seconds")
    if (
        schedule_settings.notification_delay_min_seconds
        > schedule_settings.notification_delay_max_seconds
    ):
        raise ConfigError(
            "schedule.notification_delay_min_seconds must be <= notification_delay_max_seconds"
        )

    raw_retry = _as_mapping(parsed.get("retry"), field_name="retry")
    retry_settings = RetrySettings(
        max_retries=_as_int(raw_retry.get("max_retries", 3), field_name="retry.max_retries", minimum=0),
        initial_delay_seconds=_as_float(
            raw_retry.get("initial_delay_seconds", 5),
            field_name="retry.initial_delay_seconds",
            minimum=0,
        ),
    )

    raw_browser = _as_mapping(parsed.get("browser"), field_name="browser")
    browser_settings = BrowserSettings(
        headless=_as_bool(raw_browser.get("headless", True), field_name="browser.headless"),
        navigation_timeout_seconds=_as_int(
            raw_browser.get("navigation_timeout_seconds", 30),
            field_name="browser.navigation_timeout_seconds",
            minimum=1,
        ),
        selector_timeout_seconds=_as_int(
            raw_browser.get("selector_timeout_seconds", 15),
            field_name="browser.selector_timeout_seconds",
            minimum=1,
        ),
        locale=_as_str(raw_browser.get("locale"), "de-DE"),
        timezone_id=_as_str(raw_browser.get("timezone_id"), "Europe/Berlin"),
    )

    raw_logging = _as_mapping(parsed.get("logging"), field_name="logging")
    audit_log = raw_logging.get("audit_log")
    logging_settings = LoggingSettings(
        audit_log=_resolve_relative_path(config_path, str(audit_log)) if audit_log else None,
    )

    return AppConfig(
        platforms=platforms,
        instance=instance,
        telegram=telegram_settings,
        storage=storage_settings,
        schedule=schedule_settings,
        retry=retry_settings,
        browser=browser_settings,
        logging=logging_settings,
        log_level=str(parsed.get("log_level", "INFO")).upper(),
    )
