"""
Configuration Management

Settings for the runnable server, loaded from environment variables with
Pydantic Settings, and the `[user:password@]host[:port]` address spec.
"""

import ipaddress
from functools import lru_cache
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from smtp_test_server.core.exceptions import ConfigError

DEFAULT_PORT = 587


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables or a `.env` file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ===================================
    # SMTP Settings
    # ===================================
    SMTP_ADDRESS: str = Field(default="127.0.0.1", description="Address spec: [user:password@]host[:port]")
    SMTP_STRICT: bool = Field(default=True, description="Reject login attempts when no credentials are configured")

    # ===================================
    # Logging Configuration
    # ===================================
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: str = Field(default="text", description="Log format: json or text")
    LOG_FILE: Optional[str] = Field(default=None, description="Log file path")

    # ===================================
    # Monitoring
    # ===================================
    ENABLE_METRICS: bool = Field(default=False, description="Serve Prometheus metrics")
    METRICS_PORT: int = Field(default=9090, description="Metrics port")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v

    @field_validator("LOG_FORMAT")
    @classmethod
    def validate_log_format(cls, v):
        """Validate log format."""
        v = v.lower()
        if v not in ("json", "text"):
            raise ValueError("Log format must be one of: ['json', 'text']")
        return v

    @property
    def server_config(self) -> "ServerConfig":
        """Parsed `SMTP_ADDRESS`."""
        return ServerConfig.parse(self.SMTP_ADDRESS)


class ServerConfig(BaseModel):
    """
    The configuration for an SMTP server, parsed from an address spec.

    Examples:
        127.0.0.1
        127.0.0.1:587
        user:pwd@127.0.0.1
        user:pwd@127.0.0.1:587
    """

    model_config = ConfigDict(frozen=True)

    address: str
    port: Optional[int] = None
    username_password: Optional[Tuple[str, str]] = None

    @classmethod
    def parse(cls, spec: str) -> "ServerConfig":
        """
        Parse an address spec.

        Args:
            spec: `[user:password@]host[:port]`

        Returns:
            ServerConfig: Parsed configuration

        Raises:
            ConfigError: If the user part, address or port is invalid
        """
        username_password = None
        host = spec
        if "@" in spec:
            user, host = spec.split("@", 1)
            if ":" not in user:
                raise ConfigError("missing ':' in user", detail=spec)
            username, password = user.split(":", 1)
            username_password = (username, password)

        port_str = None
        if ":" in host:
            host, port_str = host.split(":", 1)

        try:
            address = str(ipaddress.ip_address(host))
        except ValueError:
            raise ConfigError("invalid address", detail=host) from None
        port = _parse_port(port_str) if port_str is not None else None

        return cls(address=address, port=port, username_password=username_password)

    @property
    def bind_address(self) -> Tuple[str, int]:
        """Address and port to bind to, falling back to the submission port."""
        return (self.address, self.port if self.port is not None else DEFAULT_PORT)


def _parse_port(value: str) -> int:
    if not value.isdigit():
        raise ConfigError("invalid port number", detail=value)
    port = int(value)
    if port > 65535:
        raise ConfigError("invalid port number", detail=value)
    return port


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Application settings
    """
    return Settings()
