"""
Unified Configuration Settings - Single Source of Truth
=======================================================
All client configuration using Pydantic Settings.
"""

from enum import Enum
from typing import Optional
from urllib.parse import urlsplit

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LogLevel(str, Enum):
    """Logging levels"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


# === TRANSPORT CONFIGURATION ===

class TransportSettings(BaseSettings):
    """Push channel configuration"""
    model_config = SettingsConfigDict(env_prefix="TRANSPORT_")

    endpoint: Optional[str] = Field(default="/ws", description="Push endpoint path or absolute ws(s):// URL")
    reconnect_attempts: int = Field(default=5, description="Reconnect budget after an abnormal close")
    reconnect_interval_seconds: float = Field(default=3.0, description="Fixed delay between reconnect attempts")
    should_reconnect: bool = Field(default=True, description="Run the reconnection algorithm on abnormal close")
    ping_interval_seconds: Optional[float] = Field(default=20.0, description="Keepalive ping interval (None disables)")
    ping_timeout_seconds: Optional[float] = Field(default=30.0, description="Keepalive pong timeout")
    close_timeout_seconds: float = Field(default=5.0, description="Time allowed for a clean close handshake")
    require_auth_ack: bool = Field(
        default=False,
        description="Ignore push events until the server answers the handshake with auth_ack"
    )

    @field_validator('reconnect_attempts')
    @classmethod
    def validate_attempts(cls, v):
        if v < 0:
            raise ValueError("reconnect_attempts must be >= 0")
        return v

    @field_validator('reconnect_interval_seconds', 'close_timeout_seconds')
    @classmethod
    def validate_non_negative(cls, v):
        if v < 0:
            raise ValueError("interval must be >= 0")
        return v


# === SESSION CONFIGURATION ===

class SessionSettings(BaseSettings):
    """Session Store configuration"""
    model_config = SettingsConfigDict(env_prefix="SESSION_")

    base_url: str = Field(default="http://localhost:5000", description="Origin of the page / API server")
    me_path: str = Field(default="/api/auth/me", description="'Who am I' endpoint")
    login_path: str = Field(default="/api/auth/login")
    register_path: str = Field(default="/api/auth/register")
    logout_path: str = Field(default="/api/auth/logout")
    logout_method: str = Field(default="GET")

    revalidation_interval_seconds: float = Field(default=30.0, description="Periodic revalidation while visible")
    revalidation_retries: int = Field(default=1, description="Extra attempts within one revalidation cycle")
    revalidation_retry_delay_seconds: float = Field(default=1.0)

    login_entry_path: str = Field(default="/login", description="Unauthenticated entry point after session loss")
    logout_redirect_path: str = Field(default="/", description="Hard navigation target after logout")

    identity_marker_key: str = Field(default="lastKnownUser")
    session_marker_key: str = Field(default="sessionActive")
    marker_file: Optional[str] = Field(default=None, description="JSON file for markers (in-memory when unset)")

    @field_validator('base_url')
    @classmethod
    def validate_base_url(cls, v):
        parts = urlsplit(v)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ValueError(f"Invalid base_url: '{v}'. Expected http(s)://host[:port]")
        return v.rstrip("/")

    @field_validator('revalidation_retries')
    @classmethod
    def validate_retries(cls, v):
        if v < 0:
            raise ValueError("revalidation_retries must be >= 0")
        return v

    @property
    def is_secure(self) -> bool:
        """True when the page is served over TLS."""
        return urlsplit(self.base_url).scheme == "https"


# === REQUEST LAYER CONFIGURATION ===

class RequestSettings(BaseSettings):
    """Request Layer and query cache configuration"""
    model_config = SettingsConfigDict(env_prefix="REQUEST_")

    timeout_seconds: float = Field(default=10.0, description="Total timeout per HTTP request")
    stale_time_seconds: float = Field(default=300.0, description="Age after which a cache entry is stale")
    query_retries: int = Field(default=1, description="Automatic retries for non-401 query failures")
    received_cache_key: str = Field(default="/api/messages/received")
    sent_cache_key: str = Field(default="/api/messages/sent")


# === LOGGING CONFIGURATION ===

class LoggingSettings(BaseSettings):
    """Logging configuration"""
    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: LogLevel = Field(default=LogLevel.INFO)
    file_enabled: bool = Field(default=False)
    console_enabled: bool = Field(default=True)
    structured_logging: bool = Field(default=True)
    log_dir: str = Field(default="logs")
    max_file_size_mb: int = Field(default=100)
    backup_count: int = Field(default=5)


# === MAIN APPLICATION SETTINGS ===

class AppSettings(BaseSettings):
    """Main client settings - Single Source of Truth"""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",  # Allows TRANSPORT__RECONNECT_ATTEMPTS=3
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="PsiConnect")
    debug: bool = Field(default=False)

    transport: TransportSettings = Field(default_factory=TransportSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    request: RequestSettings = Field(default_factory=RequestSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
