"""Global test fixtures for the onionet test suite."""

from __future__ import annotations

import os

import pytest

from onionet.core.config import clear_config_cache
from onionet.crypto import DefaultCryptoProvider, RsaKeyPair
from onionet.network.config import NetworkConfig

# RSA key generation dominates test time; generate once per session
KEY_POOL_SIZE = 5


@pytest.fixture
def clean_env(monkeypatch):
    """Remove all ONIONET_ environment variables and the cached config."""
    for key in list(os.environ.keys()):
        if key.startswith("ONIONET_"):
            monkeypatch.delenv(key, raising=False)
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture(scope="session")
def provider() -> DefaultCryptoProvider:
    return DefaultCryptoProvider(rsa_key_size=2048)


@pytest.fixture(scope="session")
def key_pool(provider) -> list[RsaKeyPair]:
    """Pre-generated RSA key pairs shared by all tests."""
    return [provider.generate_rsa_key_pair() for _ in range(KEY_POOL_SIZE)]


@pytest.fixture
def network_config() -> NetworkConfig:
    """Default addressing with short timeouts."""
    return NetworkConfig(
        host="localhost",
        bind_host="127.0.0.1",
        hop_timeout_seconds=2.0,
        circuit_timeout_seconds=5.0,
    )
