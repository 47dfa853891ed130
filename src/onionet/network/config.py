"""
Network addressing and timeout configuration.

Every participant is reachable at a deterministic address derived from a
base port plus its integer identifier:

- registry:        ``registry_port``
- onion router N:  ``base_onion_router_port + N``
- user N:          ``base_user_port + N``

Components receive a :class:`NetworkConfig` at construction and never read
the environment themselves.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from onionet.core.config import CoreSettings, get_config
from onionet.core.exceptions import ConfigException

# Exactly three hops per circuit
CIRCUIT_LENGTH = 3

MAX_PORT = 65535


@dataclass(frozen=True)
class NetworkConfig:
    """Addresses and per-hop timeouts for one onionet deployment."""

    host: str = "localhost"
    bind_host: str = "127.0.0.1"
    registry_port: int = 8080
    base_onion_router_port: int = 4000
    base_user_port: int = 3000

    # Budget when an inbound request carries no deadline
    hop_timeout_seconds: float = 10.0
    # Budget a sender gives the whole circuit
    circuit_timeout_seconds: float = 30.0

    def __post_init__(self):
        for name in ("registry_port", "base_onion_router_port", "base_user_port"):
            port = getattr(self, name)
            if not 1 <= port <= MAX_PORT:
                raise ConfigException(f"{name} must be between 1 and {MAX_PORT}, got {port}", setting=name)
        for name in ("hop_timeout_seconds", "circuit_timeout_seconds"):
            seconds = getattr(self, name)
            if not math.isfinite(seconds) or seconds <= 0:
                raise ConfigException(f"{name} must be a positive number of seconds, got {seconds}", setting=name)

    @classmethod
    def from_settings(cls, settings: CoreSettings | None = None) -> NetworkConfig:
        """Snapshot the addressing settings from the environment config."""
        settings = settings or get_config()
        return cls(
            host=settings.host,
            bind_host=settings.bind_host,
            registry_port=settings.registry_port,
            base_onion_router_port=settings.base_onion_router_port,
            base_user_port=settings.base_user_port,
            hop_timeout_seconds=settings.hop_timeout_seconds,
            circuit_timeout_seconds=settings.circuit_timeout_seconds,
        )

    @property
    def registry_url(self) -> str:
        return self.url_for_port(self.registry_port)

    def router_port(self, node_id: int) -> int:
        """Listening port of onion router ``node_id``."""
        return self.base_onion_router_port + node_id

    def user_port(self, user_id: int) -> int:
        """Listening port of user ``user_id``."""
        return self.base_user_port + user_id

    def url_for_port(self, port: int) -> str:
        return f"http://{self.host}:{port}"
