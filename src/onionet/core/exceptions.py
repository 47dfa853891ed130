# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Onionet Contributors

"""Exception hierarchy for onionet.

Every error raised by the registry, the onion routers and the user
endpoints derives from :class:`OnionetException`, so HTTP handlers can turn
any of them into a JSON error body with ``to_dict()``.
"""

from __future__ import annotations

from typing import Any


class OnionetException(Exception):  # noqa: N818
    """Base exception for all onionet errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ValidationException(OnionetException):
    """Exception for malformed request bodies.

    Raised when:
    - A required field is missing
    - A field has the wrong type or is out of range
    """

    def __init__(self, message: str, field: str | None = None, value: Any = None):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, details)
        self.field = field
        self.value = value


class ConfigException(OnionetException):
    """Exception for configuration errors."""

    def __init__(self, message: str, setting: str | None = None):
        details = {}
        if setting:
            details["setting"] = setting
        super().__init__(message, details)
        self.setting = setting


class PacketRejected(OnionetException):
    """Base class for packets an onion router refuses to process.

    Callers only ever see this generic class name; the concrete subclass is
    kept for logs and tests.
    """

    def public_dict(self) -> dict:
        """Error body sent to the upstream hop."""
        return {
            "error": "PacketRejected",
            "message": "Packet rejected",
            "details": {},
        }


class MalformedPacket(PacketRejected):
    """The packet does not follow the layered packet format.

    Raised when:
    - The ``key:payload`` delimiter is missing
    - The destination field is not exactly 10 decimal digits
    """

    def __init__(self, message: str, field: str | None = None):
        details = {}
        if field:
            details["field"] = field
        super().__init__(message, details)
        self.field = field


class DecryptionFailure(PacketRejected):
    """Asymmetric or symmetric decryption of a layer failed.

    Raised when:
    - The wrapped key was encrypted for another router
    - The ciphertext or IV is corrupted or not valid base64
    - The decrypted layer is not valid UTF-8
    """

    def __init__(self, message: str, stage: str | None = None):
        details = {}
        if stage:
            details["stage"] = stage
        super().__init__(message, details)
        self.stage = stage


class InsufficientNodes(OnionetException):
    """Fewer onion routers are registered than a circuit needs."""

    def __init__(self, available: int, required: int):
        message = f"Not enough nodes registered: {available} available, {required} required"
        super().__init__(message, {"available": available, "required": required})
        self.available = available
        self.required = required


class ForwardFailure(OnionetException):
    """A downstream hop did not accept the forwarded message.

    Raised when:
    - The destination is unreachable
    - The destination answered with a non-2xx status
    - The deadline budget ran out before or during the call
    """

    def __init__(
        self,
        message: str,
        destination: str | None = None,
        status: int | None = None,
        timed_out: bool = False,
    ):
        details: dict[str, Any] = {}
        if destination:
            details["destination"] = destination
        if status is not None:
            details["status"] = status
        if timed_out:
            details["timed_out"] = True
        super().__init__(message, details)
        self.destination = destination
        self.status = status
        self.timed_out = timed_out


class RegistrationError(OnionetException):
    """Raised when an onion router cannot register with the registry."""

    pass


class InvalidNodeKey(OnionetException):
    """A public key from the registry could not be used to build a layer."""

    pass
