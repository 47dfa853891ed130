"""
Message formats for the onionet HTTP interfaces.

Node: A registered onion router (id + exported public key)
NodeRegistry: The registry's node list response
MessageBody: Body of every ``POST /message`` (relay ingress and user delivery)
SendMessageBody: Body of a user's ``POST /sendMessage``
Circuit: The three routers chosen for one outgoing message

Request bodies are parsed into these types as the first step of every
handler; ``from_dict`` raises :class:`ValidationException` for anything
malformed so no state is touched by a bad request.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from onionet.core.exceptions import ValidationException
from onionet.network.config import CIRCUIT_LENGTH


def _require_dict(data: Any) -> dict:
    if not isinstance(data, dict):
        raise ValidationException("Request body must be a JSON object")
    return data


def _require_int(data: dict, name: str, minimum: int = 0) -> int:
    value = data.get(name)
    if value is None:
        raise ValidationException(f"Missing {name}", field=name)
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationException(f"{name} must be an integer", field=name, value=value)
    if value < minimum:
        raise ValidationException(f"{name} must be >= {minimum}", field=name, value=value)
    return value


def _require_str(data: dict, name: str, allow_empty: bool = True) -> str:
    value = data.get(name)
    if value is None:
        raise ValidationException(f"Missing {name}", field=name)
    if not isinstance(value, str):
        raise ValidationException(f"{name} must be a string", field=name)
    if not allow_empty and not value:
        raise ValidationException(f"{name} must not be empty", field=name)
    return value


@dataclass(frozen=True)
class Node:
    """A registered onion router. Identity is ``node_id``."""

    node_id: int
    pub_key: str = field(repr=False)

    def to_dict(self) -> dict:
        return {"nodeId": self.node_id, "pubKey": self.pub_key}

    @classmethod
    def from_dict(cls, data: Any) -> Node:
        data = _require_dict(data)
        return cls(
            node_id=_require_int(data, "nodeId"),
            pub_key=_require_str(data, "pubKey", allow_empty=False),
        )


@dataclass
class NodeRegistry:
    """Snapshot of registered nodes, in registration order."""

    nodes: list[Node] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"nodes": [node.to_dict() for node in self.nodes]}

    @classmethod
    def from_dict(cls, data: Any) -> NodeRegistry:
        data = _require_dict(data)
        nodes = data.get("nodes")
        if not isinstance(nodes, list):
            raise ValidationException("nodes must be a list", field="nodes")
        return cls(nodes=[Node.from_dict(n) for n in nodes])


@dataclass(frozen=True)
class MessageBody:
    """Body of ``POST /message``: a layered packet or final plaintext."""

    message: str

    def to_dict(self) -> dict:
        return {"message": self.message}

    @classmethod
    def from_dict(cls, data: Any) -> MessageBody:
        data = _require_dict(data)
        return cls(message=_require_str(data, "message"))


@dataclass(frozen=True)
class SendMessageBody:
    """Body of ``POST /sendMessage``."""

    message: str
    destination_user_id: int

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "destinationUserId": self.destination_user_id,
        }

    @classmethod
    def from_dict(cls, data: Any) -> SendMessageBody:
        data = _require_dict(data)
        return cls(
            message=_require_str(data, "message"),
            destination_user_id=_require_int(data, "destinationUserId"),
        )


@dataclass(frozen=True)
class Circuit:
    """
    The routers one message travels through, in hop order.

    ``hops[0]`` is the entry router, ``hops[-1]`` the exit router adjacent
    to the receiver. A circuit lives only for the send that built it.
    """

    hops: tuple[Node, ...]

    def __post_init__(self):
        if len(self.hops) != CIRCUIT_LENGTH:
            raise ValueError(f"Circuit must have exactly {CIRCUIT_LENGTH} hops, got {len(self.hops)}")
        if len({hop.node_id for hop in self.hops}) != len(self.hops):
            raise ValueError("Circuit hops must be distinct nodes")

    @property
    def node_ids(self) -> list[int]:
        return [hop.node_id for hop in self.hops]

    @property
    def entry(self) -> Node:
        return self.hops[0]
