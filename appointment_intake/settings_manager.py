"""
Application settings management.

Tracks the default timezone used to interpret date/time phrases and the model
names used for the remote extractors. Settings are persisted to a JSON file
(APPOINTMENT_INTAKE_SETTINGS, or ~/.config/appointment-intake/settings.json).
API keys are read from the environment only.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional, TypedDict

from appointment_intake.logging_helper import Log
from appointment_intake.timezone_composer import is_valid_timezone

SETTINGS_PATH_ENV = "APPOINTMENT_INTAKE_SETTINGS"
TIMEZONE_ENV = "DEFAULT_TIMEZONE"
GEMINI_API_KEY_ENV = "GEMINI_API_KEY"
MISTRAL_API_KEY_ENV = "MISTRAL_API_KEY"
USE_STUB_ENV = "USE_STUB"

FALLBACK_TIMEZONE = "Asia/Kolkata"


class SettingsSchema(TypedDict, total=False):
    default_timezone: str
    entity_model: str
    ocr_model: str


DEFAULT_SETTINGS: SettingsSchema = {
    "default_timezone": FALLBACK_TIMEZONE,
    "entity_model": "gemini-2.5-flash-lite",
    "ocr_model": "pixtral-12b-2409",
}


def settings_file() -> Path:
    override = os.getenv(SETTINGS_PATH_ENV)
    if override:
        return Path(override)
    return Path.home() / ".config" / "appointment-intake" / "settings.json"


def load_settings() -> SettingsSchema:
    """
    Load settings from disk, falling back to defaults if anything fails.
    """
    path = settings_file()
    if not path.exists():
        return DEFAULT_SETTINGS.copy()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("Settings data is not a JSON object")
    except (OSError, ValueError) as err:
        Log.warn(f"Failed to read settings file ({path}): {err}")
        return DEFAULT_SETTINGS.copy()

    merged: SettingsSchema = DEFAULT_SETTINGS.copy()
    # Merge only known keys
    for key in DEFAULT_SETTINGS:
        if key in data:
            merged[key] = data[key]  # type: ignore[literal-required]
    return merged


def save_settings(settings: SettingsSchema) -> None:
    """
    Persist settings to disk.
    """
    path = settings_file()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps(settings, indent=2, sort_keys=True),
            encoding="utf-8",
        )
    except OSError as err:
        Log.warn(f"Failed to write settings file ({path}): {err}")


def get_default_timezone() -> str:
    """
    Default IANA timezone for normalization.
    DEFAULT_TIMEZONE in the environment wins over the settings file.
    """
    configured = os.getenv(TIMEZONE_ENV) or load_settings().get("default_timezone", FALLBACK_TIMEZONE)
    if not is_valid_timezone(configured):
        Log.warn(f"Invalid default_timezone value '{configured}', defaulting to {FALLBACK_TIMEZONE}")
        return FALLBACK_TIMEZONE
    return configured


def set_default_timezone(value: str) -> None:
    if not is_valid_timezone(value):
        raise ValueError(f"Invalid timezone: {value}")
    settings = load_settings()
    settings["default_timezone"] = value
    save_settings(settings)
    Log.info(f"Saved default timezone setting: {value}")


def get_model(key: str) -> str:
    """Model name for "entity_model" or "ocr_model"."""
    settings = load_settings()
    value = settings.get(key) or DEFAULT_SETTINGS[key]  # type: ignore[literal-required]
    return str(value)


def get_api_key(env_name: str) -> Optional[str]:
    value = os.getenv(env_name)
    return value.strip() if value and value.strip() else None


def use_stub() -> bool:
    return os.getenv(USE_STUB_ENV, "").lower() in ("1", "true", "yes")
