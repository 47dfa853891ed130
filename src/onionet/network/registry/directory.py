"""
Directory data model for the registry.
"""

from __future__ import annotations

import asyncio
import logging

from onionet.network.messages import Node

logger = logging.getLogger(__name__)


class Directory:
    """
    In-memory, insertion-ordered map of node id to :class:`Node`.

    Entries are never replaced or removed: registering an id that is
    already present leaves the first entry in place.
    """

    def __init__(self):
        self._nodes: dict[int, Node] = {}
        self._lock = asyncio.Lock()

    async def register(self, node: Node) -> bool:
        """Insert ``node`` unless its id is already registered.

        Returns:
            True if inserted, False if the id was already present.
        """
        async with self._lock:
            if node.node_id in self._nodes:
                logger.info(f"Node {node.node_id} already registered, keeping first key")
                return False
            self._nodes[node.node_id] = node
            logger.info(f"Registered node {node.node_id} ({len(self._nodes)} total)")
            return True

    def list_nodes(self) -> list[Node]:
        """Snapshot of all nodes in registration order."""
        return list(self._nodes.values())

    def get(self, node_id: int) -> Node | None:
        return self._nodes.get(node_id)

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes
