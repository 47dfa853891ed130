"""
Onionet User - sends through a fresh three-hop circuit and receives plaintext.

Sending:
1. Fetch the node list from the registry
2. Pick three distinct routers at random
3. Wrap the message in one layer per router, exit layer first
4. Hand the packet to the entry router and wait for the whole chain

Receiving: the exit router posts the plaintext to ``POST /message``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from random import Random

from aiohttp import web

from onionet.core.exceptions import InvalidNodeKey, OnionetException, ValidationException
from onionet.crypto import CryptoError, CryptoProvider, get_crypto_provider
from onionet.network.config import NetworkConfig
from onionet.network.http import (
    create_app,
    error_response,
    read_json,
    result_response,
    text_response,
)
from onionet.network.messages import Circuit, MessageBody, SendMessageBody
from onionet.network.onion import build_onion, plan_hops, select_circuit
from onionet.network.packet import format_destination
from onionet.network.transport import Deadline, HttpTransport, Transport

logger = logging.getLogger(__name__)


@dataclass
class UserState:
    """Most recent values observed by one user."""

    last_received_message: str | None = None
    last_sent_message: str | None = None
    last_circuit: list[int] = field(default_factory=list)


@dataclass
class User:
    """An endpoint that sends and receives messages through the overlay."""

    user_id: int
    config: NetworkConfig = field(default_factory=NetworkConfig.from_settings)
    provider: CryptoProvider = field(default_factory=get_crypto_provider, repr=False)
    transport: Transport | None = field(default=None, repr=False)
    state: UserState = field(default_factory=UserState)

    # Circuit selection source; None means the system CSPRNG
    rng: Random | None = field(default=None, repr=False)

    # Metrics
    messages_sent: int = 0
    messages_received: int = 0

    # Server state
    _app: web.Application | None = field(default=None, repr=False)
    _runner: web.AppRunner | None = field(default=None, repr=False)
    _site: web.TCPSite | None = field(default=None, repr=False)
    _running: bool = field(default=False, repr=False)

    def __post_init__(self):
        if self.user_id < 0:
            raise ValueError(f"user_id must be non-negative, got {self.user_id}")
        if self.transport is None:
            self.transport = HttpTransport(self.config)

    @property
    def port(self) -> int:
        return self.config.user_port(self.user_id)

    @property
    def running(self) -> bool:
        return self._running

    # -------------------------------------------------------------------------
    # Send / receive
    # -------------------------------------------------------------------------

    async def send_message(
        self,
        message: str,
        destination_user_id: int,
        deadline: Deadline | None = None,
    ) -> Circuit:
        """
        Send ``message`` to user ``destination_user_id`` through a new circuit.

        Returns once the entry router, and therefore the whole chain,
        accepted the packet.

        Returns:
            The circuit that carried the message.

        Raises:
            InsufficientNodes: Fewer than three routers are registered
            ForwardFailure: The registry or the chain failed
            ValidationException: The receiver's port does not fit a destination,
                or the message cannot be encoded as UTF-8
        """
        self.state.last_sent_message = message
        receiver_port = self._check_outgoing(message, destination_user_id)
        deadline = deadline or Deadline.from_budget(self.config.circuit_timeout_seconds)

        nodes = await self.transport.fetch_nodes(deadline)
        circuit = select_circuit(nodes, self.rng)
        self.state.last_circuit = circuit.node_ids
        logger.info(f"User {self.user_id} sending via circuit {circuit.node_ids} to user {destination_user_id}")

        hops = plan_hops(circuit, receiver_port, self.config)
        try:
            packet = await asyncio.to_thread(build_onion, message, hops, self.provider)
        except CryptoError as e:
            raise InvalidNodeKey(
                f"Could not encrypt for circuit {circuit.node_ids}: {e}",
                {"circuit": circuit.node_ids},
            ) from e

        await self.transport.post_message(
            self.config.router_port(circuit.entry.node_id), packet, deadline
        )
        self.messages_sent += 1
        return circuit

    def _check_outgoing(self, message: str, destination_user_id: int) -> int:
        """Receiver port for an outgoing send; rejects input no circuit could carry."""
        receiver_port = self.config.user_port(destination_user_id)
        try:
            format_destination(receiver_port)
        except ValueError as e:
            raise ValidationException(str(e), field="destinationUserId", value=destination_user_id) from e
        try:
            message.encode("utf-8")
        except UnicodeEncodeError as e:
            raise ValidationException(f"Message is not encodable as UTF-8: {e.reason}", field="message") from e
        return receiver_port

    def receive(self, message: str) -> None:
        """Accept a delivered plaintext."""
        self.state.last_received_message = message
        self.messages_received += 1
        logger.info(f"User {self.user_id} received a message of {len(message)} chars")

    # -------------------------------------------------------------------------
    # HTTP handlers
    # -------------------------------------------------------------------------

    async def handle_send_message(self, request: web.Request) -> web.Response:
        """
        Send a message through the overlay.

        POST /sendMessage
        {"message": "hello", "destinationUserId": 2}
        """
        try:
            body = SendMessageBody.from_dict(await read_json(request))
            await self.send_message(body.message, body.destination_user_id)
        except OnionetException as e:
            logger.warning(f"User {self.user_id} send failed: {e.__class__.__name__}: {e.message}")
            return error_response(e)
        return text_response()

    async def handle_message(self, request: web.Request) -> web.Response:
        """
        Receive a plaintext from an exit router.

        POST /message
        {"message": "hello"}
        """
        try:
            body = MessageBody.from_dict(await read_json(request))
        except OnionetException as e:
            return error_response(e)
        self.receive(body.message)
        return text_response()

    async def handle_get_last_received_message(self, request: web.Request) -> web.Response:
        """GET /getLastReceivedMessage"""
        return result_response(self.state.last_received_message)

    async def handle_get_last_sent_message(self, request: web.Request) -> web.Response:
        """GET /getLastSentMessage"""
        return result_response(self.state.last_sent_message)

    async def handle_get_last_circuit(self, request: web.Request) -> web.Response:
        """GET /getLastCircuit"""
        return result_response(list(self.state.last_circuit))

    async def handle_status(self, request: web.Request) -> web.Response:
        """GET /status"""
        return text_response("live")

    def _create_app(self) -> web.Application:
        """Create the aiohttp application."""
        app = create_app(f"user {self.user_id}")

        app.router.add_post("/sendMessage", self.handle_send_message)
        app.router.add_post("/message", self.handle_message)

        app.router.add_get("/getLastReceivedMessage", self.handle_get_last_received_message)
        app.router.add_get("/getLastSentMessage", self.handle_get_last_sent_message)
        app.router.add_get("/getLastCircuit", self.handle_get_last_circuit)

        app.router.add_get("/status", self.handle_status)

        return app

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Start the user's server."""
        if self._running:
            logger.warning(f"User {self.user_id} already running")
            return

        self._app = self._create_app()
        self._runner = web.AppRunner(self._app, access_log=None)
        await self._runner.setup()

        self._site = web.TCPSite(self._runner, self.config.bind_host, self.port)
        try:
            await self._site.start()
        except OSError:
            await self._runner.cleanup()
            self._app = self._runner = self._site = None
            raise

        self._running = True
        logger.info(f"User {self.user_id} listening on {self.config.bind_host}:{self.port}")

    async def stop(self) -> None:
        """Stop the user's server."""
        if not self._running:
            return

        if self._site:
            await self._site.stop()
        if self._runner:
            await self._runner.cleanup()

        self._running = False
        self._app = None
        self._runner = None
        self._site = None

        logger.info(f"User {self.user_id} stopped")

    async def run_forever(self) -> None:
        """Start and run until interrupted."""
        await self.start()

        try:
            while self._running:
                await asyncio.sleep(1)
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================


def create_user(user_id: int, config: NetworkConfig | None = None) -> User:
    """Create a user endpoint."""
    return User(user_id=user_id, config=config or NetworkConfig.from_settings())


async def run_user(user_id: int, config: NetworkConfig | None = None) -> None:
    """Create and run a user endpoint (convenience function)."""
    await create_user(user_id, config).run_forever()
