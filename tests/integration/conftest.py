"""Fixtures for tests that run real registry, router and user servers."""

from __future__ import annotations

import socket

import pytest
from aiohttp.test_utils import unused_port

from onionet.network.config import NetworkConfig


def _free_port_block(size: int, attempts: int = 50) -> int:
    """First port of ``size`` consecutive free local ports."""
    for _ in range(attempts):
        base = unused_port()
        sockets = []
        try:
            for offset in range(size):
                sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
                sockets.append(sock)
                sock.bind(("127.0.0.1", base + offset))
            return base
        except OSError:
            continue
        finally:
            for sock in sockets:
                sock.close()
    raise RuntimeError(f"No block of {size} free ports found")


@pytest.fixture
def live_config() -> NetworkConfig:
    """Addresses on free local ports for up to 5 routers and 3 users."""
    return NetworkConfig(
        host="127.0.0.1",
        bind_host="127.0.0.1",
        registry_port=unused_port(),
        base_onion_router_port=_free_port_block(5),
        base_user_port=_free_port_block(3),
        hop_timeout_seconds=5.0,
        circuit_timeout_seconds=10.0,
    )
