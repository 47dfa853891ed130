"""
Tests for the User endpoint.

Tests cover:
- Insufficient directory (0, 1, 2 nodes): no forward performed
- The three-router scenario end to end over LocalTransport
- Receive path and inspection getters
- Error mapping in the HTTP handlers
"""

from __future__ import annotations

import json
import logging
import random
from unittest.mock import AsyncMock, MagicMock

import pytest

from onionet.core.exceptions import (
    ForwardFailure,
    InsufficientNodes,
    InvalidNodeKey,
    ValidationException,
)
from onionet.network.messages import Node
from onionet.network.transport import Deadline, Transport
from onionet.network.user import User, UserState


def make_request(body=None, json_error=None):
    request = MagicMock()
    if json_error is not None:
        request.json = AsyncMock(side_effect=json_error)
    else:
        request.json = AsyncMock(return_value=body)
    request.headers = {}
    return request


@pytest.fixture
def mock_transport():
    transport = MagicMock(spec=Transport)
    transport.post_message = AsyncMock(return_value=None)
    transport.fetch_nodes = AsyncMock(return_value=[])
    transport.register_node = AsyncMock(return_value=None)
    return transport


@pytest.fixture
def user(network_config, provider, mock_transport):
    return User(user_id=0, config=network_config, provider=provider, transport=mock_transport)


@pytest.fixture
def registered_nodes(provider, key_pool):
    return [
        Node(node_id=i, pub_key=provider.export_public_key(key_pool[i].public_key))
        for i in (1, 2, 3)
    ]


# =============================================================================
# SEND PATH (mocked transport)
# =============================================================================


class TestSendMessage:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("count", [0, 1, 2])
    async def test_insufficient_nodes(self, user, mock_transport, registered_nodes, count):
        mock_transport.fetch_nodes.return_value = registered_nodes[:count]

        with pytest.raises(InsufficientNodes):
            await user.send_message("hello", 1)

        mock_transport.post_message.assert_not_awaited()
        assert user.state.last_sent_message == "hello"
        assert user.state.last_circuit == []

    @pytest.mark.asyncio
    async def test_sends_to_entry_router(self, user, mock_transport, registered_nodes, network_config):
        mock_transport.fetch_nodes.return_value = registered_nodes

        circuit = await user.send_message("hello", 1)

        port, packet, deadline = mock_transport.post_message.await_args.args
        assert port == network_config.router_port(circuit.entry.node_id)
        assert packet.count(":") == 2
        assert isinstance(deadline, Deadline)
        assert user.state.last_circuit == circuit.node_ids
        assert sorted(circuit.node_ids) == [1, 2, 3]
        assert user.messages_sent == 1

    @pytest.mark.asyncio
    async def test_circuit_deadline_budget(self, user, mock_transport, registered_nodes, network_config):
        mock_transport.fetch_nodes.return_value = registered_nodes

        await user.send_message("hello", 1)

        deadline = mock_transport.fetch_nodes.await_args.args[0]
        assert deadline is mock_transport.post_message.await_args.args[2]
        assert 0 < deadline.remaining() <= network_config.circuit_timeout_seconds

    @pytest.mark.asyncio
    async def test_seeded_rng(self, network_config, provider, mock_transport, registered_nodes):
        mock_transport.fetch_nodes.return_value = registered_nodes
        circuits = []
        for _ in range(2):
            user = User(user_id=0, config=network_config, provider=provider,
                        transport=mock_transport, rng=random.Random(3))
            circuits.append((await user.send_message("x", 1)).node_ids)

        assert circuits[0] == circuits[1]

    @pytest.mark.asyncio
    async def test_forward_failure_propagates(self, user, mock_transport, registered_nodes):
        mock_transport.fetch_nodes.return_value = registered_nodes
        mock_transport.post_message.side_effect = ForwardFailure("entry down")

        with pytest.raises(ForwardFailure):
            await user.send_message("hello", 1)

        assert user.messages_sent == 0
        assert len(user.state.last_circuit) == 3

    @pytest.mark.asyncio
    async def test_registry_failure_propagates(self, user, mock_transport):
        mock_transport.fetch_nodes.side_effect = ForwardFailure("registry down")

        with pytest.raises(ForwardFailure):
            await user.send_message("hello", 1)

        mock_transport.post_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unusable_key(self, user, mock_transport):
        mock_transport.fetch_nodes.return_value = [Node(i, "AAAA") for i in range(3)]

        with pytest.raises(InvalidNodeKey):
            await user.send_message("hello", 1)

        mock_transport.post_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_receiver_port_too_large(self, user, mock_transport, registered_nodes):
        mock_transport.fetch_nodes.return_value = registered_nodes

        with pytest.raises(ValidationException) as exc_info:
            await user.send_message("hello", 10**11)

        assert exc_info.value.field == "destinationUserId"
        mock_transport.fetch_nodes.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_lone_surrogate_rejected_as_message(self, user, mock_transport, registered_nodes):
        mock_transport.fetch_nodes.return_value = registered_nodes

        with pytest.raises(ValidationException) as exc_info:
            await user.send_message("bad \ud800 text", 1)

        assert exc_info.value.field == "message"
        mock_transport.fetch_nodes.assert_not_awaited()
        mock_transport.post_message.assert_not_awaited()


# =============================================================================
# RECEIVE PATH
# =============================================================================


class TestReceive:
    def test_stores_verbatim(self, user):
        user.receive("hello: world")

        assert user.state.last_received_message == "hello: world"
        assert user.messages_received == 1

    def test_overwrites(self, user):
        user.receive("first")
        user.receive("second")

        assert user.state.last_received_message == "second"

    def test_log_shows_length_only(self, user, caplog):
        with caplog.at_level(logging.DEBUG, logger="onionet.network.user"):
            user.receive("top secret plaintext")

        assert "20 chars" in caplog.text
        assert "top secret" not in caplog.text

    def test_initial_state(self, user):
        assert user.state == UserState()


# =============================================================================
# THREE-ROUTER SCENARIO (LocalTransport)
# =============================================================================


class TestScenario:
    @pytest.mark.asyncio
    async def test_hello_to_user_42(self, local_network, network_config):
        sender = local_network.users[0]
        receiver = local_network.users[42]

        await sender.send_message("hello", 42)

        circuit = sender.state.last_circuit
        assert sorted(circuit) == [1, 2, 3]
        entry = local_network.routers[circuit[0]]
        middle = local_network.routers[circuit[1]]
        exit_ = local_network.routers[circuit[2]]
        assert entry.state.last_message_destination == network_config.router_port(circuit[1])
        assert middle.state.last_message_destination == network_config.router_port(circuit[2])
        assert exit_.state.last_message_destination == network_config.user_port(42)
        assert exit_.state.last_received_decrypted_message == "0000003042hello"
        assert receiver.state.last_received_message == "hello"
        assert sender.state.last_sent_message == "hello"

    @pytest.mark.asyncio
    async def test_each_hop_sees_only_its_layer(self, local_network):
        await local_network.users[0].send_message("secret", 42)

        circuit = local_network.users[0].state.last_circuit
        for node_id in circuit[:2]:
            router = local_network.routers[node_id]
            assert "secret" not in router.state.last_received_decrypted_message

    @pytest.mark.asyncio
    async def test_transport_order(self, local_network, network_config):
        await local_network.users[0].send_message("hello", 42)

        circuit = local_network.users[0].state.last_circuit
        ports = [port for port, _ in local_network.transport.posts]
        assert ports == [
            network_config.router_port(circuit[0]),
            network_config.router_port(circuit[1]),
            network_config.router_port(circuit[2]),
            network_config.user_port(42),
        ]
        assert local_network.transport.posts[-1][1] == "hello"

    @pytest.mark.asyncio
    async def test_unknown_receiver_fails(self, local_network):
        with pytest.raises(ForwardFailure):
            await local_network.users[0].send_message("hello", 7)

    @pytest.mark.asyncio
    async def test_expired_deadline_fails(self, local_network):
        with pytest.raises(ForwardFailure) as exc_info:
            await local_network.users[0].send_message("hello", 42, Deadline.from_budget(-1))

        assert exc_info.value.timed_out

    @pytest.mark.asyncio
    async def test_duplicate_registration_keeps_first_key(self, local_network, make_router):
        # Same id, different key: the registry keeps router 1's original key
        impostor = make_router(1, key_index=4)
        await impostor.register_with_registry()

        node = local_network.directory.get(1)
        assert node.pub_key == local_network.routers[1].public_key
        assert len(local_network.directory) == 3

        await local_network.users[0].send_message("still works", 42)
        assert local_network.users[42].state.last_received_message == "still works"


# =============================================================================
# HTTP HANDLERS
# =============================================================================


class TestHandlers:
    @pytest.mark.asyncio
    async def test_send_message_success(self, user, mock_transport, registered_nodes):
        mock_transport.fetch_nodes.return_value = registered_nodes

        response = await user.handle_send_message(make_request({"message": "hi", "destinationUserId": 1}))

        assert response.status == 200
        assert response.text == "success"

    @pytest.mark.asyncio
    async def test_send_message_insufficient_503(self, user):
        response = await user.handle_send_message(make_request({"message": "hi", "destinationUserId": 1}))

        assert response.status == 503
        data = json.loads(response.text)
        assert data["error"] == "InsufficientNodes"
        assert data["details"] == {"available": 0, "required": 3}

    @pytest.mark.asyncio
    async def test_send_message_forward_failure_502(self, user, mock_transport, registered_nodes):
        mock_transport.fetch_nodes.return_value = registered_nodes
        mock_transport.post_message.side_effect = ForwardFailure("down")

        response = await user.handle_send_message(make_request({"message": "hi", "destinationUserId": 1}))

        assert response.status == 502

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            {"message": "hi"},
            {"destinationUserId": 1},
            {"message": "hi", "destinationUserId": "1"},
            {"message": "hi", "destinationUserId": -2},
            {"message": 5, "destinationUserId": 1},
        ],
    )
    async def test_send_message_validation(self, user, mock_transport, body):
        response = await user.handle_send_message(make_request(body))

        assert response.status == 400
        mock_transport.fetch_nodes.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_receive_message(self, user):
        response = await user.handle_message(make_request({"message": "hello"}))

        assert response.status == 200
        assert response.text == "success"
        assert user.state.last_received_message == "hello"

    @pytest.mark.asyncio
    async def test_receive_message_invalid(self, user):
        response = await user.handle_message(make_request({"msg": "hello"}))

        assert response.status == 400
        assert user.state.last_received_message is None

    @pytest.mark.asyncio
    async def test_getters(self, user, mock_transport, registered_nodes):
        mock_transport.fetch_nodes.return_value = registered_nodes
        await user.send_message("out", 1)
        user.receive("in")

        sent = json.loads((await user.handle_get_last_sent_message(MagicMock())).text)
        received = json.loads((await user.handle_get_last_received_message(MagicMock())).text)
        circuit = json.loads((await user.handle_get_last_circuit(MagicMock())).text)

        assert sent == {"result": "out"}
        assert received == {"result": "in"}
        assert sorted(circuit["result"]) == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_getters_initial(self, user):
        assert json.loads((await user.handle_get_last_sent_message(MagicMock())).text) == {"result": None}
        assert json.loads((await user.handle_get_last_received_message(MagicMock())).text) == {"result": None}
        assert json.loads((await user.handle_get_last_circuit(MagicMock())).text) == {"result": []}

    @pytest.mark.asyncio
    async def test_status(self, user):
        assert (await user.handle_status(MagicMock())).text == "live"

    def test_port(self, user):
        assert user.port == 3000
