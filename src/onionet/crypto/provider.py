"""Crypto Provider for onion routing.

The onion protocol never touches cryptographic primitives directly; it asks
a :class:`CryptoProvider` for them. The provider covers:

- RSA key pairs (generation, export, import)
- Asymmetric encryption of short byte strings (the per-hop symmetric keys)
- Random symmetric keys (generation, export, import)
- Symmetric encryption of arbitrary-length strings with a fresh IV

All keys and ciphertexts cross process boundaries as standard base64
strings, which never contain ``:``, so ``:`` can delimit packet fields.

:class:`DefaultCryptoProvider` implements the interface with the
``cryptography`` package:

- RSA-OAEP with SHA-256 (MGF1-SHA-256), 2048-bit keys by default
- Public keys as SPKI DER, private keys as PKCS8 DER
- AES-256-CBC with PKCS7 padding and a random 16-byte IV

Example:
    >>> provider = DefaultCryptoProvider()
    >>> pair = provider.generate_rsa_key_pair()
    >>> key = provider.create_random_symmetric_key()
    >>> wrapped = provider.rsa_encrypt(
    ...     provider.export_symmetric_key(key), provider.export_public_key(pair.public_key)
    ... )
    >>> unwrapped = provider.rsa_decrypt(wrapped, pair.private_key)
    >>> provider.sym_decrypt(unwrapped, provider.sym_encrypt(key, "hi"))
    'hi'
"""

from __future__ import annotations

import base64
import binascii
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from cryptography.hazmat.primitives import hashes, padding, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric import padding as asym_padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

SYMMETRIC_KEY_BYTES = 32  # AES-256
IV_BYTES = 16
RSA_PUBLIC_EXPONENT = 65537
DEFAULT_RSA_KEY_SIZE = 2048
CIPHERTEXT_DELIMITER = ":"


# =============================================================================
# Exceptions
# =============================================================================


class CryptoError(Exception):
    """Base exception for Crypto Provider operations."""
    pass


class CryptoKeyError(CryptoError):
    """Raised when a key cannot be imported or has the wrong type."""
    pass


class CryptoDecryptionError(CryptoError):
    """Raised when asymmetric or symmetric decryption fails."""
    pass


# =============================================================================
# Data Classes
# =============================================================================


def b64encode(data: bytes) -> str:
    """Standard base64 as an ASCII string."""
    return base64.b64encode(data).decode("ascii")


def b64decode(data: str) -> bytes:
    """Strict standard base64 decode.

    Raises:
        binascii.Error: If ``data`` contains non-alphabet characters or bad padding.
    """
    return base64.b64decode(data.encode("ascii"), validate=True)


@dataclass
class RsaKeyPair:
    """An onion router's asymmetric key pair."""

    public_key: rsa.RSAPublicKey
    private_key: rsa.RSAPrivateKey = field(repr=False)


@dataclass(frozen=True)
class SymmetricCiphertext:
    """Parsed ``iv:ciphertext`` symmetric encryption result."""

    iv: bytes
    ciphertext: bytes

    @classmethod
    def parse(cls, encrypted_data: str) -> SymmetricCiphertext:
        """Parse the ``base64(iv):base64(ciphertext)`` wire form.

        Raises:
            CryptoDecryptionError: If the string does not have exactly two
                base64 parts or the IV has the wrong length.
        """
        parts = encrypted_data.split(CIPHERTEXT_DELIMITER)
        if len(parts) != 2:
            raise CryptoDecryptionError("Invalid encrypted data format")
        iv_b64, cipher_b64 = parts
        try:
            iv = b64decode(iv_b64)
            ciphertext = b64decode(cipher_b64)
        except (binascii.Error, ValueError) as e:
            raise CryptoDecryptionError(f"Invalid base64 in encrypted data: {e}") from e
        if len(iv) != IV_BYTES:
            raise CryptoDecryptionError(f"Invalid IV length: {len(iv)}")
        return cls(iv=iv, ciphertext=ciphertext)

    def to_wire(self) -> str:
        """Serialize to ``base64(iv):base64(ciphertext)``."""
        return b64encode(self.iv) + CIPHERTEXT_DELIMITER + b64encode(self.ciphertext)


# =============================================================================
# Abstract Interface
# =============================================================================


class CryptoProvider(ABC):
    """Key generation, asymmetric and symmetric encryption, key (de)serialization."""

    # RSA keys

    @abstractmethod
    def generate_rsa_key_pair(self) -> RsaKeyPair:
        """Generate a fresh RSA key pair."""

    @abstractmethod
    def export_public_key(self, key: rsa.RSAPublicKey) -> str:
        """Serialize a public key to a base64 string."""

    @abstractmethod
    def export_private_key(self, key: rsa.RSAPrivateKey | None) -> str | None:
        """Serialize a private key to a base64 string (None passes through)."""

    @abstractmethod
    def import_public_key(self, key_str: str) -> rsa.RSAPublicKey:
        """Load a public key from its base64 string."""

    @abstractmethod
    def import_private_key(self, key_str: str) -> rsa.RSAPrivateKey:
        """Load a private key from its base64 string."""

    @abstractmethod
    def rsa_encrypt(self, b64_data: str, public_key_str: str) -> str:
        """Encrypt base64-encoded bytes for the holder of ``public_key_str``.

        Returns the base64-encoded ciphertext.
        """

    @abstractmethod
    def rsa_decrypt(self, data: str, private_key: rsa.RSAPrivateKey) -> str:
        """Decrypt base64 ciphertext; returns the plaintext bytes as base64."""

    # Symmetric keys

    @abstractmethod
    def create_random_symmetric_key(self) -> bytes:
        """Generate a random symmetric key from a CSPRNG."""

    @abstractmethod
    def export_symmetric_key(self, key: bytes) -> str:
        """Serialize a symmetric key to a base64 string."""

    @abstractmethod
    def import_symmetric_key(self, key_str: str) -> bytes:
        """Load a symmetric key from its base64 string."""

    @abstractmethod
    def sym_encrypt(self, key: bytes, data: str) -> str:
        """Encrypt a string; returns ``base64(iv):base64(ciphertext)``."""

    @abstractmethod
    def sym_decrypt(self, key_str: str, encrypted_data: str) -> str:
        """Decrypt ``iv:ciphertext`` with the base64 key ``key_str``."""


# =============================================================================
# cryptography-backed implementation
# =============================================================================


class DefaultCryptoProvider(CryptoProvider):
    """RSA-OAEP / AES-256-CBC provider backed by the ``cryptography`` package."""

    def __init__(self, rsa_key_size: int = DEFAULT_RSA_KEY_SIZE):
        self.rsa_key_size = rsa_key_size

    @staticmethod
    def _oaep() -> asym_padding.OAEP:
        return asym_padding.OAEP(
            mgf=asym_padding.MGF1(algorithm=hashes.SHA256()),
            algorithm=hashes.SHA256(),
            label=None,
        )

    def generate_rsa_key_pair(self) -> RsaKeyPair:
        private_key = rsa.generate_private_key(
            public_exponent=RSA_PUBLIC_EXPONENT,
            key_size=self.rsa_key_size,
        )
        return RsaKeyPair(public_key=private_key.public_key(), private_key=private_key)

    def export_public_key(self, key: rsa.RSAPublicKey) -> str:
        spki = key.public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        return b64encode(spki)

    def export_private_key(self, key: rsa.RSAPrivateKey | None) -> str | None:
        if key is None:
            return None
        pkcs8 = key.private_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        return b64encode(pkcs8)

    def import_public_key(self, key_str: str) -> rsa.RSAPublicKey:
        try:
            key = serialization.load_der_public_key(b64decode(key_str))
        except (binascii.Error, ValueError) as e:
            raise CryptoKeyError(f"Invalid public key: {e}") from e
        if not isinstance(key, rsa.RSAPublicKey):
            raise CryptoKeyError("Public key is not an RSA key")
        return key

    def import_private_key(self, key_str: str) -> rsa.RSAPrivateKey:
        try:
            key = serialization.load_der_private_key(b64decode(key_str), password=None)
        except (binascii.Error, ValueError, TypeError) as e:
            raise CryptoKeyError(f"Invalid private key: {e}") from e
        if not isinstance(key, rsa.RSAPrivateKey):
            raise CryptoKeyError("Private key is not an RSA key")
        return key

    def rsa_encrypt(self, b64_data: str, public_key_str: str) -> str:
        public_key = self.import_public_key(public_key_str)
        ciphertext = public_key.encrypt(b64decode(b64_data), self._oaep())
        return b64encode(ciphertext)

    def rsa_decrypt(self, data: str, private_key: rsa.RSAPrivateKey) -> str:
        try:
            plaintext = private_key.decrypt(b64decode(data), self._oaep())
        except (binascii.Error, ValueError) as e:
            raise CryptoDecryptionError(f"RSA decryption failed: {e}") from e
        return b64encode(plaintext)

    def create_random_symmetric_key(self) -> bytes:
        return os.urandom(SYMMETRIC_KEY_BYTES)

    def export_symmetric_key(self, key: bytes) -> str:
        return b64encode(key)

    def import_symmetric_key(self, key_str: str) -> bytes:
        try:
            key = b64decode(key_str)
        except (binascii.Error, ValueError) as e:
            raise CryptoKeyError(f"Invalid symmetric key: {e}") from e
        if len(key) != SYMMETRIC_KEY_BYTES:
            raise CryptoKeyError(f"Invalid symmetric key length: {len(key)}")
        return key

    def sym_encrypt(self, key: bytes, data: str) -> str:
        iv = os.urandom(IV_BYTES)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(data.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return SymmetricCiphertext(iv=iv, ciphertext=ciphertext).to_wire()

    def sym_decrypt(self, key_str: str, encrypted_data: str) -> str:
        try:
            key = self.import_symmetric_key(key_str)
        except CryptoKeyError as e:
            raise CryptoDecryptionError(str(e)) from e
        parsed = SymmetricCiphertext.parse(encrypted_data)
        try:
            decryptor = Cipher(algorithms.AES(key), modes.CBC(parsed.iv)).decryptor()
            padded = decryptor.update(parsed.ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except (ValueError, UnicodeDecodeError) as e:
            raise CryptoDecryptionError(f"Symmetric decryption failed: {e}") from e


_default_provider: CryptoProvider | None = None


def get_crypto_provider() -> CryptoProvider:
    """Process-wide default provider, created on first use."""
    global _default_provider
    if _default_provider is None:
        from onionet.core.config import get_config

        _default_provider = DefaultCryptoProvider(rsa_key_size=get_config().rsa_key_size)
    return _default_provider
