"""
Configuration Loader - Bridge Between JSON Config and AppSettings
================================================================
Loads configuration from a JSON file and maps it onto AppSettings.
"""

import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import ValidationError

from .settings import AppSettings, LoggingSettings, RequestSettings, SessionSettings, TransportSettings

_SECTIONS = {
    "transport": TransportSettings,
    "session": SessionSettings,
    "request": RequestSettings,
    "logging": LoggingSettings,
}

_cached_settings: Optional[AppSettings] = None


def _resolve_env_vars(data: Any) -> Any:
    """Replace ``"${NAME}"`` strings with the value of environment variable NAME."""
    if isinstance(data, dict):
        return {k: _resolve_env_vars(v) for k, v in data.items()}
    if isinstance(data, list):
        return [_resolve_env_vars(i) for i in data]
    if isinstance(data, str) and data.startswith("${") and data.endswith("}"):
        return os.getenv(data[2:-1], "")
    return data


def load_app_settings_from_json(config_path: str = "config/config.json") -> AppSettings:
    """
    Load AppSettings from a JSON configuration file.

    Each known section (``transport``, ``session``, ``request``, ``logging``)
    is overlaid on the environment-derived defaults; unknown sections are
    ignored. A missing or invalid file yields the defaults.

    Args:
        config_path: Path to config.json

    Returns:
        Configured AppSettings instance
    """
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config_data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        print(f"[WARNING] Failed to load JSON config from {config_path}: {e}", file=sys.stderr)
        return AppSettings()

    resolved_data: Dict[str, Any] = _resolve_env_vars(config_data)
    settings = AppSettings()

    for section, section_cls in _SECTIONS.items():
        overrides = resolved_data.get(section)
        if not isinstance(overrides, dict):
            continue
        base = getattr(settings, section).model_dump()
        base.update(overrides)
        try:
            setattr(settings, section, section_cls(**base))
        except ValidationError as e:
            print(f"[WARNING] Invalid '{section}' section in {config_path}: {e}", file=sys.stderr)

    if "app_name" in resolved_data:
        settings.app_name = str(resolved_data["app_name"])
    if "debug" in resolved_data:
        settings.debug = bool(resolved_data["debug"])

    return settings


def get_settings_from_working_directory(refresh: bool = False) -> AppSettings:
    """
    Load settings from config.json relative to the working directory.

    The result is memoized; pass ``refresh=True`` to reload.
    """
    global _cached_settings
    if _cached_settings is not None and not refresh:
        return _cached_settings

    possible_paths = [
        "config/config.json",
        "psiconnect_sync/config/config.json",
        "../config/config.json",
    ]

    for config_path in possible_paths:
        if Path(config_path).exists():
            _cached_settings = load_app_settings_from_json(config_path)
            return _cached_settings

    _cached_settings = AppSettings()
    return _cached_settings
