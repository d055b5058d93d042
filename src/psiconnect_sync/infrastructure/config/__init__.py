from .settings import (
    AppSettings,
    LoggingSettings,
    LogLevel,
    RequestSettings,
    SessionSettings,
    TransportSettings,
)
from .config_loader import get_settings_from_working_directory, load_app_settings_from_json

__all__ = [
    'AppSettings',
    'LoggingSettings',
    'LogLevel',
    'RequestSettings',
    'SessionSettings',
    'TransportSettings',
    'get_settings_from_working_directory',
    'load_app_settings_from_json',
]
