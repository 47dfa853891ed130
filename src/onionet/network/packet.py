"""
Layered packet wire format.

A packet addressed through ``k`` remaining hops is::

    Packet(0) = plaintext
    Packet(k) = EncryptedSymKey ":" SymEncrypt(symkey, Destination ++ Packet(k-1))

where ``Destination`` is the next hop's port as exactly 10 zero-padded
decimal digits and ``SymEncrypt`` yields ``base64(iv):base64(ciphertext)``.

Raw strings are parsed into :class:`LayeredPacket` (before decryption) and
:class:`PeeledLayer` (after decryption) at the boundary; the rest of the
code only handles these values.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from onionet.core.exceptions import MalformedPacket

DESTINATION_WIDTH = 10
PACKET_DELIMITER = ":"

_DESTINATION_RE = re.compile(r"[0-9]{%d}" % DESTINATION_WIDTH)


def format_destination(port: int) -> str:
    """Encode a port as the 10-digit destination field.

    Raises:
        ValueError: If ``port`` is negative or needs more than 10 digits.
    """
    if isinstance(port, bool) or not isinstance(port, int) or port < 0:
        raise ValueError(f"Destination must be a non-negative integer, got {port!r}")
    digits = str(port)
    if len(digits) > DESTINATION_WIDTH:
        raise ValueError(f"Destination {port} does not fit in {DESTINATION_WIDTH} digits")
    return digits.zfill(DESTINATION_WIDTH)


def parse_destination(field: str) -> int:
    """Decode the 10-digit destination field.

    Raises:
        MalformedPacket: Unless ``field`` is exactly 10 ASCII digits.
    """
    if not _DESTINATION_RE.fullmatch(field):
        raise MalformedPacket("Destination must be exactly 10 decimal digits", field="destination")
    return int(field, 10)


@dataclass(frozen=True)
class LayeredPacket:
    """An encrypted packet as received by an onion router."""

    encrypted_key: str
    encrypted_payload: str

    @classmethod
    def parse(cls, raw: str) -> LayeredPacket:
        """Split at the first delimiter into wrapped key and symmetric payload.

        The payload keeps its own ``iv:ciphertext`` delimiter.

        Raises:
            MalformedPacket: If ``raw`` contains no delimiter.
        """
        encrypted_key, sep, encrypted_payload = raw.partition(PACKET_DELIMITER)
        if not sep:
            raise MalformedPacket("Missing packet delimiter", field="packet")
        return cls(encrypted_key=encrypted_key, encrypted_payload=encrypted_payload)

    def to_wire(self) -> str:
        return self.encrypted_key + PACKET_DELIMITER + self.encrypted_payload


@dataclass(frozen=True)
class PeeledLayer:
    """A decrypted layer: where to forward, and what to forward there."""

    destination: int
    inner_payload: str

    @classmethod
    def parse(cls, decrypted: str) -> PeeledLayer:
        """Split a decrypted layer into destination and inner payload.

        Raises:
            MalformedPacket: If the layer does not start with 10 ASCII digits.
        """
        destination = parse_destination(decrypted[:DESTINATION_WIDTH])
        return cls(destination=destination, inner_payload=decrypted[DESTINATION_WIDTH:])

    def to_wire(self) -> str:
        return format_destination(self.destination) + self.inner_payload
