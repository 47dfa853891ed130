"""
Onionet Registry - the directory of onion routers.

Onion routers announce themselves once at startup; users read the full
node list every time they build a circuit.

Protocol:
- POST /registerNode - Register an onion router's public key
- GET /getNodeRegistry - All registered nodes, in registration order
- GET /status - Liveness check
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from aiohttp import web

from onionet.core.exceptions import OnionetException
from onionet.network.config import NetworkConfig
from onionet.network.http import (
    create_app,
    error_response,
    read_json,
    text_response,
)
from onionet.network.messages import Node, NodeRegistry

from .directory import Directory

logger = logging.getLogger(__name__)

REGISTRATION_HEADER = "X-Onionet-Registration"


@dataclass
class RegistryNode:
    """
    Registry server.

    Holds the :class:`Directory` of onion routers and serves it over HTTP.
    """

    config: NetworkConfig = field(default_factory=NetworkConfig.from_settings)
    directory: Directory = field(default_factory=Directory)

    # Server state
    _app: web.Application | None = field(default=None, repr=False)
    _runner: web.AppRunner | None = field(default=None, repr=False)
    _site: web.TCPSite | None = field(default=None, repr=False)
    _running: bool = field(default=False, repr=False)

    @property
    def port(self) -> int:
        return self.config.registry_port

    @property
    def running(self) -> bool:
        return self._running

    async def handle_register_node(self, request: web.Request) -> web.Response:
        """
        Register an onion router.

        POST /registerNode
        {"nodeId": 7, "pubKey": "<base64 SPKI>"}

        Re-registering a known id keeps the first key and still succeeds;
        the ``X-Onionet-Registration`` header says which happened.
        """
        try:
            node = Node.from_dict(await read_json(request))
        except OnionetException as e:
            logger.warning(f"Rejected registration: {e.message}")
            return error_response(e)

        inserted = await self.directory.register(node)
        response = text_response()
        response.headers[REGISTRATION_HEADER] = "registered" if inserted else "ignored"
        return response

    async def handle_get_node_registry(self, request: web.Request) -> web.Response:
        """GET /getNodeRegistry"""
        return web.json_response(NodeRegistry(nodes=self.directory.list_nodes()).to_dict())

    async def handle_status(self, request: web.Request) -> web.Response:
        """GET /status"""
        return text_response("live")

    def _create_app(self) -> web.Application:
        """Create the aiohttp application."""
        app = create_app("registry")

        app.router.add_post("/registerNode", self.handle_register_node)
        app.router.add_get("/getNodeRegistry", self.handle_get_node_registry)
        app.router.add_get("/status", self.handle_status)

        return app

    async def start(self) -> None:
        """Start the registry server."""
        if self._running:
            logger.warning("Registry already running")
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
        logger.info(f"Registry listening on {self.config.bind_host}:{self.port}")

    async def stop(self) -> None:
        """Stop the registry server."""
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

        logger.info("Registry stopped")

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


def create_registry(config: NetworkConfig | None = None) -> RegistryNode:
    """Create a registry for the given network."""
    return RegistryNode(config=config or NetworkConfig.from_settings())


async def run_registry(config: NetworkConfig | None = None) -> None:
    """Create and run a registry (convenience function)."""
    await create_registry(config).run_forever()
