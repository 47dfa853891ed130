"""Core onionet infrastructure: configuration, logging and exceptions."""

from onionet.core.config import CoreSettings, clear_config_cache, get_config
from onionet.core.exceptions import (
    ConfigException,
    DecryptionFailure,
    ForwardFailure,
    InsufficientNodes,
    InvalidNodeKey,
    MalformedPacket,
    OnionetException,
    PacketRejected,
    RegistrationError,
    ValidationException,
)
from onionet.core.logging import (
    configure_logging,
    correlation_context,
    get_correlation_id,
    component_context,
)

__all__ = [
    # Config
    "CoreSettings",
    "get_config",
    "clear_config_cache",
    # Exceptions
    "OnionetException",
    "ValidationException",
    "ConfigException",
    "PacketRejected",
    "MalformedPacket",
    "DecryptionFailure",
    "InsufficientNodes",
    "InvalidNodeKey",
    "ForwardFailure",
    "RegistrationError",
    # Logging
    "configure_logging",
    "correlation_context",
    "get_correlation_id",
    "component_context",
]
