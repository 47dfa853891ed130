"""
Transport between onionet participants.

Onion routers and users never open sockets themselves; they call a
:class:`Transport`. :class:`HttpTransport` is the aiohttp implementation
used in real deployments; tests substitute an in-memory one.

Every forward carries a :class:`Deadline`: the remaining time budget for
the whole chain. It travels hop to hop in the ``X-Onionet-Deadline`` header
(remaining seconds, so clocks need not agree) and becomes the aiohttp
timeout of each downstream call. A stalled hop therefore fails the chain
with :class:`ForwardFailure` instead of hanging it.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

import aiohttp

from onionet.core.exceptions import (
    ForwardFailure,
    OnionetException,
    RegistrationError,
)
from onionet.core.logging import describe_payload
from onionet.network.config import NetworkConfig
from onionet.network.messages import MessageBody, Node, NodeRegistry

logger = logging.getLogger(__name__)

DEADLINE_HEADER = "X-Onionet-Deadline"

# Registration happens once at startup, outside any message deadline
REGISTRATION_TIMEOUT_SECONDS = 10.0


@dataclass(frozen=True)
class Deadline:
    """Absolute expiry on the local monotonic clock."""

    expires_at: float

    @classmethod
    def from_budget(cls, seconds: float) -> Deadline:
        return cls(expires_at=time.monotonic() + seconds)

    @classmethod
    def from_header(
        cls,
        value: str | None,
        default_seconds: float,
        max_seconds: float | None = None,
    ) -> Deadline:
        """
        Rebuild a deadline from an inbound header.

        A missing, unparseable or non-finite value falls back to
        ``default_seconds``. A parsed budget is capped at ``max_seconds``
        (``default_seconds`` when unset) so no upstream can lift the timeout.
        """
        cap = default_seconds if max_seconds is None else max_seconds
        if value is None:
            return cls.from_budget(default_seconds)
        try:
            seconds = float(value)
        except ValueError:
            logger.debug(f"Ignoring unparseable {DEADLINE_HEADER}: {value!r}")
            return cls.from_budget(default_seconds)
        if not math.isfinite(seconds):
            logger.debug(f"Ignoring non-finite {DEADLINE_HEADER}: {value!r}")
            return cls.from_budget(default_seconds)
        return cls.from_budget(min(seconds, cap))

    def remaining(self) -> float:
        return self.expires_at - time.monotonic()

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0

    def to_header(self) -> str:
        return f"{max(self.remaining(), 0.0):.3f}"


class Transport(ABC):
    """How one participant reaches the others."""

    @abstractmethod
    async def post_message(self, port: int, message: str, deadline: Deadline) -> None:
        """Deliver ``message`` to the ``/message`` endpoint listening on ``port``.

        Returns once the destination has accepted it.

        Raises:
            ForwardFailure: Unreachable, non-2xx answer, or deadline exceeded.
        """

    @abstractmethod
    async def fetch_nodes(self, deadline: Deadline) -> list[Node]:
        """Current node list from the registry, in registration order.

        Raises:
            ForwardFailure: If the registry cannot be queried.
        """

    @abstractmethod
    async def register_node(self, node: Node) -> None:
        """Announce an onion router to the registry.

        Raises:
            RegistrationError: If the registry does not accept it.
        """


class HttpTransport(Transport):
    """aiohttp client transport; one short-lived session per call."""

    def __init__(self, config: NetworkConfig):
        self.config = config

    def _timeout(self, deadline: Deadline, destination: str) -> aiohttp.ClientTimeout:
        remaining = deadline.remaining()
        if remaining <= 0:
            raise ForwardFailure(
                "Deadline exceeded before forwarding",
                destination=destination,
                timed_out=True,
            )
        return aiohttp.ClientTimeout(total=remaining)

    async def post_message(self, port: int, message: str, deadline: Deadline) -> None:
        url = f"{self.config.url_for_port(port)}/message"
        timeout = self._timeout(deadline, url)
        headers = {DEADLINE_HEADER: deadline.to_header()}
        logger.debug(f"POST {url}: {describe_payload(message)}")

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(
                    url, json=MessageBody(message).to_dict(), headers=headers
                ) as response:
                    if response.status >= 300:
                        text = await response.text()
                        raise ForwardFailure(
                            f"Destination answered HTTP {response.status}: {text[:200]}",
                            destination=url,
                            status=response.status,
                            timed_out=response.status == 504,
                        )
        except asyncio.TimeoutError as e:
            raise ForwardFailure(
                "Timed out waiting for destination",
                destination=url,
                timed_out=True,
            ) from e
        except aiohttp.ClientError as e:
            raise ForwardFailure(f"Destination unreachable: {e}", destination=url) from e

    async def fetch_nodes(self, deadline: Deadline) -> list[Node]:
        url = f"{self.config.registry_url}/getNodeRegistry"
        timeout = self._timeout(deadline, url)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url) as response:
                    if response.status != 200:
                        raise ForwardFailure(
                            f"Registry answered HTTP {response.status}",
                            destination=url,
                            status=response.status,
                        )
                    data = await response.json()
        except asyncio.TimeoutError as e:
            raise ForwardFailure("Timed out querying registry", destination=url, timed_out=True) from e
        except aiohttp.ClientError as e:
            raise ForwardFailure(f"Registry unreachable: {e}", destination=url) from e

        try:
            return NodeRegistry.from_dict(data).nodes
        except OnionetException as e:
            raise ForwardFailure(f"Invalid registry response: {e.message}", destination=url) from e

    async def register_node(self, node: Node) -> None:
        url = f"{self.config.registry_url}/registerNode"

        try:
            timeout = aiohttp.ClientTimeout(total=REGISTRATION_TIMEOUT_SECONDS)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, json=node.to_dict()) as response:
                    if response.status != 200:
                        text = await response.text()
                        raise RegistrationError(
                            f"Registry rejected node {node.node_id}: HTTP {response.status}",
                            {"status": response.status, "body": text[:200]},
                        )
        except RegistrationError:
            raise
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            raise RegistrationError(f"Failed to reach registry at {url}: {e}") from e
