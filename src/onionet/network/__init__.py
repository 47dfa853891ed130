"""
Onionet Network - layered-encryption relay protocol over HTTP.

Users wrap each message once per onion router in a three-hop circuit;
routers peel one layer each and forward the rest.
"""

from onionet.network.config import CIRCUIT_LENGTH, NetworkConfig
from onionet.network.launch import NetworkHandle, launch_network
from onionet.network.messages import (
    Circuit,
    MessageBody,
    Node,
    NodeRegistry,
    SendMessageBody,
)
from onionet.network.onion import (
    OnionHop,
    build_onion,
    decrypt_layer,
    peel_onion,
    plan_hops,
    select_circuit,
)
from onionet.network.packet import (
    DESTINATION_WIDTH,
    LayeredPacket,
    PeeledLayer,
    format_destination,
    parse_destination,
)
from onionet.network.registry import Directory, RegistryNode
from onionet.network.router import OnionRouter, RouterState
from onionet.network.transport import (
    DEADLINE_HEADER,
    Deadline,
    HttpTransport,
    Transport,
)
from onionet.network.user import User, UserState

__all__ = [
    # Config
    "CIRCUIT_LENGTH",
    "NetworkConfig",
    # Messages
    "Circuit",
    "MessageBody",
    "Node",
    "NodeRegistry",
    "SendMessageBody",
    # Onion construction
    "OnionHop",
    "build_onion",
    "decrypt_layer",
    "peel_onion",
    "plan_hops",
    "select_circuit",
    # Wire format
    "DESTINATION_WIDTH",
    "LayeredPacket",
    "PeeledLayer",
    "format_destination",
    "parse_destination",
    # Components
    "Directory",
    "RegistryNode",
    "OnionRouter",
    "RouterState",
    "User",
    "UserState",
    "NetworkHandle",
    "launch_network",
    # Transport
    "DEADLINE_HEADER",
    "Deadline",
    "HttpTransport",
    "Transport",
]
