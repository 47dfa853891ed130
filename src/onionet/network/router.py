"""
Onionet Onion Router - peels one layer and forwards the rest.

Each onion router:
- Generates an RSA key pair once, at construction
- Registers its public key with the registry when it starts
- Accepts layered packets on ``POST /message``, removes exactly one layer
  and forwards the remainder to the destination named inside it

A router keeps no routing state: it knows only the destination hidden in
the layer it just opened. The three ``last_*`` slots of
:class:`RouterState` exist for inspection and are never read back by the
protocol.

The forward is awaited before the router answers its caller, so a
``POST /message`` succeeds only once every later hop and the receiver have
accepted the message.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from aiohttp import web

from onionet.core.exceptions import (
    ForwardFailure,
    OnionetException,
    PacketRejected,
    RegistrationError,
)
from onionet.core.logging import describe_payload
from onionet.crypto import CryptoProvider, RsaKeyPair, get_crypto_provider
from onionet.network.config import NetworkConfig
from onionet.network.http import (
    create_app,
    error_response,
    read_json,
    result_response,
    text_response,
)
from onionet.network.messages import MessageBody, Node
from onionet.network.onion import decrypt_layer
from onionet.network.packet import LayeredPacket, PeeledLayer
from onionet.network.transport import DEADLINE_HEADER, Deadline, HttpTransport, Transport

logger = logging.getLogger(__name__)


@dataclass
class RouterState:
    """Most recent values observed by one onion router."""

    last_received_encrypted_message: str | None = None
    last_received_decrypted_message: str | None = None
    last_message_destination: int | None = None


@dataclass
class OnionRouter:
    """
    One onion router of the overlay.

    Listens on ``config.router_port(node_id)`` and is known to users only
    through its registry entry.
    """

    node_id: int
    config: NetworkConfig = field(default_factory=NetworkConfig.from_settings)
    provider: CryptoProvider = field(default_factory=get_crypto_provider, repr=False)
    transport: Transport | None = field(default=None, repr=False)
    state: RouterState = field(default_factory=RouterState)

    # Generated at construction unless supplied (tests reuse fixture keys)
    key_pair: RsaKeyPair | None = field(default=None, repr=False)

    # Metrics
    messages_relayed: int = 0
    messages_rejected: int = 0
    forward_failures: int = 0

    # Server state
    _public_key_str: str = field(default="", repr=False)
    _app: web.Application | None = field(default=None, repr=False)
    _runner: web.AppRunner | None = field(default=None, repr=False)
    _site: web.TCPSite | None = field(default=None, repr=False)
    _running: bool = field(default=False, repr=False)

    def __post_init__(self):
        if self.node_id < 0:
            raise ValueError(f"node_id must be non-negative, got {self.node_id}")
        if self.key_pair is None:
            self.key_pair = self.provider.generate_rsa_key_pair()
        if self.transport is None:
            self.transport = HttpTransport(self.config)
        self._public_key_str = self.provider.export_public_key(self.key_pair.public_key)

    @property
    def port(self) -> int:
        return self.config.router_port(self.node_id)

    @property
    def public_key(self) -> str:
        """Exported public key, as registered."""
        return self._public_key_str

    @property
    def running(self) -> bool:
        return self._running

    def as_node(self) -> Node:
        return Node(node_id=self.node_id, pub_key=self._public_key_str)

    # -------------------------------------------------------------------------
    # Peel and forward
    # -------------------------------------------------------------------------

    async def ingress(self, raw: str, deadline: Deadline | None = None) -> int:
        """
        Remove one layer from ``raw`` and forward the remainder.

        Args:
            raw: Layered packet received from the previous hop
            deadline: Remaining budget of the chain; ``hop_timeout_seconds``
                when the caller sent none

        Returns:
            The destination port the inner packet was delivered to.

        Raises:
            MalformedPacket: No delimiter, or bad destination field
            DecryptionFailure: The layer was not encrypted for this router
            ForwardFailure: The destination did not accept the inner packet
        """
        self.state.last_received_encrypted_message = raw
        try:
            packet = LayeredPacket.parse(raw)
            decrypted = await asyncio.to_thread(
                decrypt_layer, packet, self.key_pair.private_key, self.provider
            )
            self.state.last_received_decrypted_message = decrypted
            layer = PeeledLayer.parse(decrypted)
        except PacketRejected as e:
            self.messages_rejected += 1
            logger.warning(
                f"Router {self.node_id} rejected packet {describe_payload(raw)}: "
                f"{e.__class__.__name__}: {e.message}"
            )
            raise
        self.state.last_message_destination = layer.destination

        deadline = deadline or Deadline.from_budget(self.config.hop_timeout_seconds)
        logger.debug(
            f"Router {self.node_id} forwarding to port {layer.destination}, "
            f"{deadline.remaining():.2f}s left"
        )
        try:
            await self.transport.post_message(layer.destination, layer.inner_payload, deadline)
        except ForwardFailure as e:
            self.forward_failures += 1
            logger.warning(f"Router {self.node_id} forward to port {layer.destination} failed: {e.message}")
            raise

        self.messages_relayed += 1
        return layer.destination

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    async def register_with_registry(self) -> None:
        """
        Announce this router's public key to the registry.

        Raises:
            RegistrationError: If the registry cannot be reached or refuses.
        """
        await self.transport.register_node(self.as_node())
        logger.info(f"Router {self.node_id} registered with {self.config.registry_url}")

    # -------------------------------------------------------------------------
    # HTTP handlers
    # -------------------------------------------------------------------------

    async def handle_message(self, request: web.Request) -> web.Response:
        """
        Peel and forward one packet.

        POST /message
        {"message": "<encSymKey>:<iv>:<ciphertext>"}
        """
        try:
            body = MessageBody.from_dict(await read_json(request))
            deadline = Deadline.from_header(
                request.headers.get(DEADLINE_HEADER),
                self.config.hop_timeout_seconds,
                max_seconds=self.config.circuit_timeout_seconds,
            )
            await self.ingress(body.message, deadline)
        except OnionetException as e:
            return error_response(e)
        return text_response()

    async def handle_get_last_received_encrypted_message(self, request: web.Request) -> web.Response:
        """GET /getLastReceivedEncryptedMessage"""
        return result_response(self.state.last_received_encrypted_message)

    async def handle_get_last_received_decrypted_message(self, request: web.Request) -> web.Response:
        """GET /getLastReceivedDecryptedMessage"""
        return result_response(self.state.last_received_decrypted_message)

    async def handle_get_last_message_destination(self, request: web.Request) -> web.Response:
        """GET /getLastMessageDestination"""
        return result_response(self.state.last_message_destination)

    async def handle_get_private_key(self, request: web.Request) -> web.Response:
        """GET /getPrivateKey - diagnostic export of the PKCS8 key."""
        return result_response(self.provider.export_private_key(self.key_pair.private_key))

    async def handle_status(self, request: web.Request) -> web.Response:
        """GET /status"""
        return text_response("live")

    async def handle_health(self, request: web.Request) -> web.Response:
        """Health check endpoint."""
        return web.json_response(
            {
                "status": "healthy",
                "node_id": self.node_id,
                "port": self.port,
                "metrics": {
                    "messages_relayed": self.messages_relayed,
                    "messages_rejected": self.messages_rejected,
                    "forward_failures": self.forward_failures,
                },
            }
        )

    def _create_app(self) -> web.Application:
        """Create the aiohttp application."""
        app = create_app(f"router {self.node_id}")

        app.router.add_post("/message", self.handle_message)

        # Inspection
        app.router.add_get(
            "/getLastReceivedEncryptedMessage",
            self.handle_get_last_received_encrypted_message,
        )
        app.router.add_get(
            "/getLastReceivedDecryptedMessage",
            self.handle_get_last_received_decrypted_message,
        )
        app.router.add_get("/getLastMessageDestination", self.handle_get_last_message_destination)
        app.router.add_get("/getPrivateKey", self.handle_get_private_key)

        app.router.add_get("/status", self.handle_status)
        app.router.add_get("/health", self.handle_health)

        return app

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Start listening, then register with the registry.

        Raises:
            RegistrationError: If registration fails; the server is stopped
                again before the error propagates.
        """
        if self._running:
            logger.warning(f"Router {self.node_id} already running")
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
        logger.info(f"Router {self.node_id} listening on {self.config.bind_host}:{self.port}")

        try:
            await self.register_with_registry()
        except RegistrationError:
            logger.error(f"Router {self.node_id} could not register, shutting down")
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the router."""
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

        logger.info(f"Router {self.node_id} stopped")

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


def create_router(node_id: int, config: NetworkConfig | None = None) -> OnionRouter:
    """Create an onion router with a fresh key pair."""
    return OnionRouter(node_id=node_id, config=config or NetworkConfig.from_settings())


async def run_router(node_id: int, config: NetworkConfig | None = None) -> None:
    """Create and run an onion router (convenience function)."""
    await create_router(node_id, config).run_forever()
