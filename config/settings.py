"""
Configuration loader for the scheduled delivery engine.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class StoreConfig:
    backend: str = "memory"                 # "memory" | "file" | "sheets"
    file_dir: str = "./data"                # directory for file backend
    spreadsheet_id: str = ""
    service_account_email: str = ""
    private_key: str = ""                   # PEM, "\n" escapes allowed
    timeout_s: float = 120.0
    schedule_table: str = "Schedule"
    birthdays_table: str = "Birthdays"
    auth_table: str = "Auth"


@dataclass
class QueueConfig:
    poll_interval_s: float = 10.0
    due_tolerance_s: float = 2.0            # forward window absorbing poll jitter
    min_recipient_digits: int = 10
    default_country_code: str = ""          # e.g. "94": "0771234567" -> "94771234567"


@dataclass
class ReminderConfig:
    enabled: bool = True
    trigger_hour: int = 0                   # local wall-clock time of the daily run
    trigger_minute: int = 0
    trigger_second: int = 5
    target: str = "tomorrow"                # "tomorrow" | "today"
    send_hour: int = 0                      # local time the reminder job fires
    send_minute: int = 0
    marker: str = "🎂"


@dataclass
class MediaConfig:
    root: str = "./public"
    uploads_dir: str = "uploads"
    retention_hours: float = 24.0
    cleanup_interval_hours: float = 24.0
    keep_files: list[str] = field(default_factory=lambda: [".gitkeep"])


@dataclass
class LLMConfig:
    provider: str = "anthropic"             # "anthropic" | "openai"
    model: str = "claude-sonnet-4-20250514"
    temperature: float = 0.9
    max_tokens: int = 200
    api_keys: list[str] = field(default_factory=list)


@dataclass
class TransportConfig:
    type: str = "whatsapp"
    base_url: str = "https://graph.facebook.com"
    api_version: str = "v18.0"
    phone_number_id: str = ""
    access_token: str = ""
    timeout_s: float = 60.0


@dataclass
class Settings:
    app_name: str = "ScheduledDelivery"
    debug: bool = False
    timezone: str = "Asia/Colombo"
    store: StoreConfig = field(default_factory=StoreConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    reminders: ReminderConfig = field(default_factory=ReminderConfig)
    media: MediaConfig = field(default_factory=MediaConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def _unresolved(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("${")


def _section(cls, raw: dict[str, Any], default):
    """Build a section dataclass, keeping defaults for missing or unresolved keys."""
    values = {}
    for name in cls.__dataclass_fields__:
        if name in raw and raw[name] is not None and not _unresolved(raw[name]):
            values[name] = raw[name]
        else:
            values[name] = getattr(default, name)
    return cls(**values)


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "DELIVERY_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)
        settings.timezone = raw.get("timezone", settings.timezone)

        if "store" in raw:
            settings.store = _section(StoreConfig, raw["store"] or {}, settings.store)
            settings.store.private_key = settings.store.private_key.replace("\\n", "\n")

        if "queue" in raw:
            settings.queue = _section(QueueConfig, raw["queue"] or {}, settings.queue)

        if "reminders" in raw:
            settings.reminders = _section(ReminderConfig, raw["reminders"] or {}, settings.reminders)

        if "media" in raw:
            settings.media = _section(MediaConfig, raw["media"] or {}, settings.media)

        if "llm" in raw:
            llm = raw["llm"] or {}
            keys = llm.get("api_keys", [])
            if isinstance(keys, str):
                keys = [keys]
            llm["api_keys"] = [k for k in keys if k and not _unresolved(k)]
            settings.llm = _section(LLMConfig, llm, settings.llm)

        if "transport" in raw:
            settings.transport = _section(TransportConfig, raw["transport"] or {}, settings.transport)

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings (for testing)."""
    global _settings
    _settings = None
