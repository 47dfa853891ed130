"""Cryptographic primitives for onionet.

The onion protocol consumes these through the :class:`CryptoProvider`
interface; :class:`DefaultCryptoProvider` is the ``cryptography``-backed
implementation used by every process.
"""

from onionet.crypto.provider import (
    # Exceptions
    CryptoError,
    CryptoKeyError,
    CryptoDecryptionError,
    # Data classes
    RsaKeyPair,
    SymmetricCiphertext,
    # Interface and implementation
    CryptoProvider,
    DefaultCryptoProvider,
    get_crypto_provider,
)

__all__ = [
    "CryptoError",
    "CryptoKeyError",
    "CryptoDecryptionError",
    "RsaKeyPair",
    "SymmetricCiphertext",
    "CryptoProvider",
    "DefaultCryptoProvider",
    "get_crypto_provider",
]
