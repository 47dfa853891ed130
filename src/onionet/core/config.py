"""Core configuration - centralized config for the onionet package.

All environment-based configuration flows through this module.

Usage:
    from onionet.core.config import get_config
    config = get_config()

    registry_port = config.registry_port
    log_level = config.log_level
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CoreSettings(BaseSettings):
    """Core configuration settings for onionet.

    Settings are read from ``ONIONET_*`` environment variables or a ``.env``
    file in the working directory.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ==========================================================================
    # ADDRESSING
    # ==========================================================================

    host: str = Field(
        default="localhost",
        description="Host name used to reach registry, routers and users",
        validation_alias="ONIONET_HOST",
    )
    bind_host: str = Field(
        default="127.0.0.1",
        description="Address servers bind to",
        validation_alias="ONIONET_BIND_HOST",
    )
    registry_port: int = Field(
        default=8080,
        description="Registry listen port",
        validation_alias="ONIONET_REGISTRY_PORT",
    )
    base_onion_router_port: int = Field(
        default=4000,
        description="Onion router N listens on base + N",
        validation_alias="ONIONET_BASE_ONION_ROUTER_PORT",
    )
    base_user_port: int = Field(
        default=3000,
        description="User N listens on base + N",
        validation_alias="ONIONET_BASE_USER_PORT",
    )

    # ==========================================================================
    # TIMEOUTS
    # ==========================================================================

    hop_timeout_seconds: float = Field(
        default=10.0,
        description="Budget for a forward when the caller sent no deadline",
        validation_alias="ONIONET_HOP_TIMEOUT",
    )
    circuit_timeout_seconds: float = Field(
        default=30.0,
        description="Total budget for a message to cross the whole circuit",
        validation_alias="ONIONET_CIRCUIT_TIMEOUT",
    )

    # ==========================================================================
    # CRYPTO
    # ==========================================================================

    rsa_key_size: int = Field(
        default=2048,
        description="Modulus size of onion router RSA keys",
        validation_alias="ONIONET_RSA_KEY_SIZE",
    )

    # ==========================================================================
    # LOGGING SETTINGS
    # ==========================================================================

    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
        validation_alias="ONIONET_LOG_LEVEL",
    )
    log_format: str = Field(
        default="",
        description="Log format: 'json', 'text', or '' (auto-detect)",
        validation_alias="ONIONET_LOG_FORMAT",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (optional)",
        validation_alias="ONIONET_LOG_FILE",
    )


# ==========================================================================
# GLOBAL CONFIG INSTANCE (lazy loaded)
# ==========================================================================

_config: CoreSettings | None = None


def get_config() -> CoreSettings:
    """Get the global configuration instance.

    Returns:
        The singleton CoreSettings instance.
    """
    global _config
    if _config is None:
        _config = CoreSettings()
    return _config


def clear_config_cache() -> None:
    """Clear the config cache. Useful for testing."""
    global _config
    _config = None
