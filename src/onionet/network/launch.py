"""
Start a complete local onionet: registry, onion routers, users.

Routers register during their own ``start()``, so once
:func:`launch_network` returns every router is already in the registry and
users can send immediately.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Iterable
from dataclasses import dataclass, field

from onionet.crypto import CryptoProvider, get_crypto_provider
from onionet.network.config import NetworkConfig
from onionet.network.registry import RegistryNode
from onionet.network.router import OnionRouter
from onionet.network.user import User

logger = logging.getLogger(__name__)


@dataclass
class NetworkHandle:
    """Everything :func:`launch_network` started."""

    registry: RegistryNode
    routers: list[OnionRouter] = field(default_factory=list)
    users: list[User] = field(default_factory=list)

    def router(self, node_id: int) -> OnionRouter:
        for router in self.routers:
            if router.node_id == node_id:
                return router
        raise KeyError(node_id)

    def user(self, user_id: int) -> User:
        for user in self.users:
            if user.user_id == user_id:
                return user
        raise KeyError(user_id)

    async def close(self) -> None:
        """Stop users, then routers, then the registry."""
        await asyncio.gather(*(user.stop() for user in self.users))
        await asyncio.gather(*(router.stop() for router in self.routers))
        await self.registry.stop()
        logger.info("Network stopped")

    async def __aenter__(self) -> NetworkHandle:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


async def _start_all(starts: Iterable[Awaitable[None]]) -> None:
    """Await every start; then raise the first failure, if any."""
    results = await asyncio.gather(*starts, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result


async def launch_network(
    nb_nodes: int,
    nb_users: int,
    config: NetworkConfig | None = None,
    provider: CryptoProvider | None = None,
) -> NetworkHandle:
    """
    Start a registry, ``nb_nodes`` routers (ids ``0..nb_nodes-1``) and
    ``nb_users`` users (ids ``0..nb_users-1``).

    Anything already started is stopped again if a later step fails.

    Raises:
        RegistrationError: If a router cannot register.
        OSError: If a port is already in use.
    """
    if nb_nodes < 0 or nb_users < 0:
        raise ValueError("nb_nodes and nb_users must be non-negative")

    config = config or NetworkConfig.from_settings()
    provider = provider or get_crypto_provider()

    handle = NetworkHandle(registry=RegistryNode(config=config))
    try:
        await handle.registry.start()

        # Key generation is CPU bound; keep the loop free while it runs
        handle.routers = list(
            await asyncio.gather(
                *(
                    asyncio.to_thread(OnionRouter, node_id=i, config=config, provider=provider)
                    for i in range(nb_nodes)
                )
            )
        )
        await _start_all(router.start() for router in handle.routers)

        handle.users = [User(user_id=i, config=config, provider=provider) for i in range(nb_users)]
        await _start_all(user.start() for user in handle.users)
    except BaseException:
        await handle.close()
        raise

    logger.info(f"Network up: registry on {config.registry_port}, {nb_nodes} routers, {nb_users} users")
    return handle
