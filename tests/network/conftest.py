"""Fixtures for protocol tests that run routers and users in memory."""

from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from onionet.core.exceptions import ForwardFailure, PacketRejected
from onionet.network.config import NetworkConfig
from onionet.network.messages import Node
from onionet.network.registry import Directory
from onionet.network.router import OnionRouter
from onionet.network.transport import Deadline, Transport
from onionet.network.user import User


class LocalTransport(Transport):
    """Delivers messages by calling routers and users directly.

    Mirrors what HttpTransport turns into exceptions: a router rejecting a
    packet reaches the caller as a ForwardFailure with status 400.
    """

    def __init__(self, directory: Directory):
        self.directory = directory
        self.routers: dict[int, OnionRouter] = {}
        self.users: dict[int, User] = {}
        self.posts: list[tuple[int, str]] = []

    def attach_router(self, router: OnionRouter) -> None:
        self.routers[router.port] = router

    def attach_user(self, user: User) -> None:
        self.users[user.port] = user

    async def post_message(self, port: int, message: str, deadline: Deadline) -> None:
        self.posts.append((port, message))
        if deadline.expired:
            raise ForwardFailure("Deadline exceeded before forwarding", destination=str(port), timed_out=True)
        if port in self.routers:
            try:
                await self.routers[port].ingress(message, deadline)
            except PacketRejected as e:
                raise ForwardFailure("Destination answered HTTP 400", destination=str(port), status=400) from e
        elif port in self.users:
            self.users[port].receive(message)
        else:
            raise ForwardFailure("Destination unreachable", destination=str(port))

    async def fetch_nodes(self, deadline: Deadline) -> list[Node]:
        return self.directory.list_nodes()

    async def register_node(self, node: Node) -> None:
        await self.directory.register(node)


@dataclass
class LocalNetwork:
    """Routers and users wired together through one LocalTransport."""

    config: NetworkConfig
    transport: LocalTransport
    directory: Directory
    routers: dict[int, OnionRouter] = field(default_factory=dict)
    users: dict[int, User] = field(default_factory=dict)

    async def add_router(self, router: OnionRouter) -> OnionRouter:
        self.transport.attach_router(router)
        await router.register_with_registry()
        self.routers[router.node_id] = router
        return router

    def add_user(self, user: User) -> User:
        self.transport.attach_user(user)
        self.users[user.user_id] = user
        return user


@pytest.fixture
def directory() -> Directory:
    return Directory()


@pytest.fixture
def local_transport(directory) -> LocalTransport:
    return LocalTransport(directory)


@pytest.fixture
def make_router(network_config, provider, key_pool, local_transport):
    """Factory for routers that reuse the session key pool."""

    def factory(node_id: int, key_index: int | None = None) -> OnionRouter:
        index = node_id if key_index is None else key_index
        return OnionRouter(
            node_id=node_id,
            config=network_config,
            provider=provider,
            transport=local_transport,
            key_pair=key_pool[index % len(key_pool)],
        )

    return factory


@pytest.fixture
def make_user(network_config, provider, local_transport):
    def factory(user_id: int) -> User:
        return User(
            user_id=user_id,
            config=network_config,
            provider=provider,
            transport=local_transport,
        )

    return factory


@pytest.fixture
async def local_network(network_config, local_transport, directory, make_router, make_user) -> LocalNetwork:
    """Routers 1, 2, 3 registered; users 0 and 42 attached."""
    net = LocalNetwork(config=network_config, transport=local_transport, directory=directory)
    for node_id in (1, 2, 3):
        await net.add_router(make_router(node_id))
    net.add_user(make_user(0))
    net.add_user(make_user(42))
    return net
