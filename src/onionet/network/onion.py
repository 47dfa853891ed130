"""
Onion construction and peeling.

Sender side:
- :func:`select_circuit` picks three distinct registered routers
- :func:`plan_hops` pairs each router's public key with the destination
  hidden in its layer
- :func:`build_onion` wraps a message from the exit hop outward

Router side:
- :func:`decrypt_layer` removes one layer
- :func:`peel_onion` also parses the result into a :class:`PeeledLayer`

Each layer gets its own freshly generated symmetric key, wrapped with that
hop's RSA public key. Keys are never reused across hops or messages.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Sequence
from dataclasses import dataclass, field
from random import Random

from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from onionet.core.exceptions import DecryptionFailure, InsufficientNodes
from onionet.crypto import CryptoError, CryptoProvider, get_crypto_provider
from onionet.network.config import CIRCUIT_LENGTH, NetworkConfig
from onionet.network.messages import Circuit, Node
from onionet.network.packet import LayeredPacket, PeeledLayer

logger = logging.getLogger(__name__)

# Circuit selection draws from the OS CSPRNG so paths are not predictable
_secure_random = secrets.SystemRandom()


@dataclass(frozen=True)
class OnionHop:
    """One layer to build: who can open it, and where it points next."""

    public_key: str = field(repr=False)
    next_destination: int


def select_circuit(nodes: Sequence[Node], rng: Random | None = None) -> Circuit:
    """Pick ``CIRCUIT_LENGTH`` distinct nodes uniformly without replacement.

    Args:
        nodes: Registered nodes (registry order)
        rng: Random source; defaults to the system CSPRNG

    Raises:
        InsufficientNodes: If fewer than ``CIRCUIT_LENGTH`` nodes are given.
    """
    if len(nodes) < CIRCUIT_LENGTH:
        raise InsufficientNodes(available=len(nodes), required=CIRCUIT_LENGTH)
    rng = rng or _secure_random
    return Circuit(hops=tuple(rng.sample(list(nodes), CIRCUIT_LENGTH)))


def plan_hops(circuit: Circuit, receiver_port: int, config: NetworkConfig) -> list[OnionHop]:
    """Destination of each hop's layer: the next router, or the receiver for the exit."""
    hops = []
    last = len(circuit.hops) - 1
    for i, node in enumerate(circuit.hops):
        if i == last:
            next_destination = receiver_port
        else:
            next_destination = config.router_port(circuit.hops[i + 1].node_id)
        hops.append(OnionHop(public_key=node.pub_key, next_destination=next_destination))
    return hops


def build_onion(
    message: str,
    hops: Sequence[OnionHop],
    provider: CryptoProvider | None = None,
) -> str:
    """Wrap ``message`` in one layer per hop, innermost (exit) layer first.

    The returned packet can be opened only by ``hops[0]``.

    Raises:
        ValueError: If a destination does not fit the 10-digit field.
    """
    provider = provider or get_crypto_provider()
    payload = message
    for hop in reversed(hops):
        layer = PeeledLayer(destination=hop.next_destination, inner_payload=payload).to_wire()
        sym_key = provider.create_random_symmetric_key()
        sym_payload = provider.sym_encrypt(sym_key, layer)
        wrapped_key = provider.rsa_encrypt(provider.export_symmetric_key(sym_key), hop.public_key)
        payload = LayeredPacket(encrypted_key=wrapped_key, encrypted_payload=sym_payload).to_wire()
    return payload


def decrypt_layer(
    packet: LayeredPacket,
    private_key: RSAPrivateKey,
    provider: CryptoProvider | None = None,
) -> str:
    """Unwrap the layer's symmetric key, then decrypt the layer.

    Raises:
        DecryptionFailure: If either step fails.
    """
    provider = provider or get_crypto_provider()
    try:
        sym_key = provider.rsa_decrypt(packet.encrypted_key, private_key)
    except CryptoError as e:
        raise DecryptionFailure(f"Could not unwrap layer key: {e}", stage="asymmetric") from e
    try:
        return provider.sym_decrypt(sym_key, packet.encrypted_payload)
    except CryptoError as e:
        raise DecryptionFailure(f"Could not decrypt layer: {e}", stage="symmetric") from e


def peel_onion(
    raw: str,
    private_key: RSAPrivateKey,
    provider: CryptoProvider | None = None,
) -> PeeledLayer:
    """Parse, decrypt and split one layer of ``raw``.

    Raises:
        MalformedPacket: Missing delimiter or bad destination field.
        DecryptionFailure: Wrong key or corrupted ciphertext.
    """
    decrypted = decrypt_layer(LayeredPacket.parse(raw), private_key, provider)
    return PeeledLayer.parse(decrypted)
