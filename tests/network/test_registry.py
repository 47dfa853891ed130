"""
Tests for the Registry.

Tests cover:
- Directory insert-or-ignore semantics and snapshots
- Concurrent registration
- HTTP handlers (registration, node list, status)
- Validation of registration bodies
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from onionet.network.messages import Node
from onionet.network.registry import (
    REGISTRATION_HEADER,
    Directory,
    RegistryNode,
    create_registry,
)

# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def registry(network_config):
    return RegistryNode(config=network_config)


def make_request(body=None, json_error=None):
    request = MagicMock()
    if json_error is not None:
        request.json = AsyncMock(side_effect=json_error)
    else:
        request.json = AsyncMock(return_value=body)
    request.headers = {}
    return request


# =============================================================================
# DIRECTORY
# =============================================================================


class TestDirectory:
    @pytest.mark.asyncio
    async def test_register_and_list(self):
        directory = Directory()

        assert await directory.register(Node(1, "key1")) is True
        assert await directory.register(Node(2, "key2")) is True

        assert directory.list_nodes() == [Node(1, "key1"), Node(2, "key2")]
        assert len(directory) == 2
        assert 1 in directory

    @pytest.mark.asyncio
    async def test_insertion_order(self):
        directory = Directory()
        for node_id in (5, 1, 3):
            await directory.register(Node(node_id, f"key{node_id}"))

        assert [n.node_id for n in directory.list_nodes()] == [5, 1, 3]

    @pytest.mark.asyncio
    async def test_duplicate_first_write_wins(self):
        directory = Directory()

        assert await directory.register(Node(1, "first")) is True
        assert await directory.register(Node(1, "second")) is False

        assert directory.list_nodes() == [Node(1, "first")]
        assert directory.get(1).pub_key == "first"

    @pytest.mark.asyncio
    async def test_snapshot_is_a_copy(self):
        directory = Directory()
        await directory.register(Node(1, "key1"))

        snapshot = directory.list_nodes()
        snapshot.append(Node(2, "key2"))
        await directory.register(Node(3, "key3"))

        assert [n.node_id for n in snapshot] == [1, 2]
        assert [n.node_id for n in directory.list_nodes()] == [1, 3]

    @pytest.mark.asyncio
    async def test_concurrent_registration(self):
        directory = Directory()

        results = await asyncio.gather(
            *(directory.register(Node(i % 10, f"key{i}")) for i in range(50))
        )

        assert sum(results) == 10
        assert len(directory) == 10
        assert len({n.node_id for n in directory.list_nodes()}) == 10

    def test_empty(self):
        directory = Directory()

        assert directory.list_nodes() == []
        assert directory.get(1) is None


# =============================================================================
# HTTP HANDLERS
# =============================================================================


class TestRegisterNodeHandler:
    @pytest.mark.asyncio
    async def test_register(self, registry):
        response = await registry.handle_register_node(make_request({"nodeId": 1, "pubKey": "key1"}))

        assert response.status == 200
        assert response.text == "success"
        assert response.headers[REGISTRATION_HEADER] == "registered"
        assert registry.directory.list_nodes() == [Node(1, "key1")]

    @pytest.mark.asyncio
    async def test_duplicate_ignored(self, registry):
        await registry.handle_register_node(make_request({"nodeId": 1, "pubKey": "first"}))

        response = await registry.handle_register_node(make_request({"nodeId": 1, "pubKey": "second"}))

        assert response.status == 200
        assert response.text == "success"
        assert response.headers[REGISTRATION_HEADER] == "ignored"
        assert registry.directory.list_nodes() == [Node(1, "first")]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body,field",
        [
            ({"pubKey": "key"}, "nodeId"),
            ({"nodeId": 1}, "pubKey"),
            ({"nodeId": "1", "pubKey": "key"}, "nodeId"),
            ({"nodeId": 1.5, "pubKey": "key"}, "nodeId"),
            ({"nodeId": True, "pubKey": "key"}, "nodeId"),
            ({"nodeId": -1, "pubKey": "key"}, "nodeId"),
            ({"nodeId": 1, "pubKey": 42}, "pubKey"),
            ({"nodeId": 1, "pubKey": ""}, "pubKey"),
        ],
    )
    async def test_rejects_malformed(self, registry, body, field):
        response = await registry.handle_register_node(make_request(body))

        assert response.status == 400
        data = json.loads(response.text)
        assert data["error"] == "ValidationException"
        assert data["details"]["field"] == field
        assert len(registry.directory) == 0

    @pytest.mark.asyncio
    async def test_rejects_non_object(self, registry):
        response = await registry.handle_register_node(make_request([1, "key"]))

        assert response.status == 400
        assert len(registry.directory) == 0

    @pytest.mark.asyncio
    async def test_rejects_invalid_json(self, registry):
        request = make_request(json_error=json.JSONDecodeError("Expecting value", "x", 0))

        response = await registry.handle_register_node(request)

        assert response.status == 400
        assert json.loads(response.text)["error"] == "ValidationException"


class TestGetNodeRegistryHandler:
    @pytest.mark.asyncio
    async def test_empty(self, registry):
        response = await registry.handle_get_node_registry(MagicMock())

        assert response.status == 200
        assert json.loads(response.text) == {"nodes": []}

    @pytest.mark.asyncio
    async def test_lists_in_order(self, registry):
        for node_id in (2, 1):
            await registry.handle_register_node(make_request({"nodeId": node_id, "pubKey": f"k{node_id}"}))

        response = await registry.handle_get_node_registry(MagicMock())

        assert json.loads(response.text) == {
            "nodes": [
                {"nodeId": 2, "pubKey": "k2"},
                {"nodeId": 1, "pubKey": "k1"},
            ]
        }


class TestRegistryNode:
    @pytest.mark.asyncio
    async def test_status(self, registry):
        response = await registry.handle_status(MagicMock())

        assert response.text == "live"

    def test_routes(self, registry):
        app = registry._create_app()

        paths = {route.resource.canonical for route in app.router.routes()}
        assert {"/registerNode", "/getNodeRegistry", "/status"} <= paths

    def test_port(self, registry):
        assert registry.port == 8080

    def test_create_registry(self, network_config):
        registry = create_registry(network_config)

        assert registry.config is network_config
        assert not registry.running

    @pytest.mark.asyncio
    async def test_stop_when_not_running(self, registry):
        await registry.stop()

        assert not registry.running
