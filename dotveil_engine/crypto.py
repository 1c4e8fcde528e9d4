"""
Symmetric cryptographic primitives for AES-256-GCM secret encryption.

This module provides:
- SecureKey: Secure key wrapper with best-effort zeroization
- EncryptedData: Encrypted payload with nonce and ciphertext
- AesGcmCipher: AES-256-GCM encryption/decryption operations
- Text encoding helpers (hex/base64) and the SHA-256 content digest
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import secrets
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import AuthenticationError, SerializationError

# Cryptographic constants
AES_256_KEY_SIZE: int = 32  # 256 bits
NONCE_SIZE: int = 12  # 96 bits (standard for AES-GCM)
TAG_SIZE: int = 16  # 128 bits (authentication tag)


class SecureKey:
    """
    Symmetric key wrapper with memory cleanup on deletion.

    Uses bytearray internally so the bytes can be zeroed in __del__.
    Python's garbage collector doesn't guarantee immediate cleanup,
    so this is best-effort zeroization.
    """

    __slots__ = ("_bytes",)

    def __init__(self, key_bytes: bytes | bytearray) -> None:
        if not isinstance(key_bytes, (bytes, bytearray)):
            raise TypeError("Key must be bytes or bytearray")
        self._bytes = bytearray(key_bytes)

    @classmethod
    def generate(cls) -> SecureKey:
        """Generate a cryptographically secure random 32-byte key."""
        return cls(secrets.token_bytes(AES_256_KEY_SIZE))

    @classmethod
    def from_hex(cls, encoded: str) -> SecureKey:
        """Parse a key from its hex text form."""
        return cls(from_hex(encoded))

    def as_bytes(self) -> bytes:
        """Return key as immutable bytes."""
        return bytes(self._bytes)

    def to_hex(self) -> str:
        """Hex text form, used for CI export."""
        return self._bytes.hex()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SecureKey):
            return NotImplemented
        return hmac.compare_digest(bytes(self._bytes), bytes(other._bytes))

    __hash__ = None  # type: ignore[assignment]

    def __len__(self) -> int:
        return len(self._bytes)

    def __repr__(self) -> str:
        """Redacted representation to prevent accidental key disclosure."""
        return "SecureKey([REDACTED])"

    def __del__(self) -> None:
        """Zero memory on deletion (best-effort)."""
        if hasattr(self, "_bytes"):
            for i in range(len(self._bytes)):
                self._bytes[i] = 0


@dataclass(frozen=True)
class EncryptedData:
    """
    Encrypted data container with nonce and ciphertext.

    The ciphertext includes the 16-byte authentication tag appended by AESGCM.
    """

    nonce: bytes  # 12 bytes
    ciphertext: bytes  # Ciphertext + 16-byte auth tag


class AesGcmCipher:
    """
    AES-256-GCM authenticated encryption.

    Every call to encrypt draws a fresh random nonce. Tag verification is done
    by the underlying library in constant time before any plaintext is
    returned.
    """

    @staticmethod
    def encrypt(
        key: SecureKey,
        plaintext: bytes,
        aad: Optional[bytes] = None,
    ) -> EncryptedData:
        """
        Encrypt plaintext with AES-256-GCM.

        Args:
            key: 32-byte encryption key
            plaintext: Data to encrypt
            aad: Optional Additional Authenticated Data for binding

        Returns:
            EncryptedData with nonce and ciphertext (includes auth tag)

        Raises:
            ValueError: If key size is invalid
        """
        if len(key) != AES_256_KEY_SIZE:
            raise ValueError(
                f"Invalid key size: expected {AES_256_KEY_SIZE}, got {len(key)}"
            )

        nonce = secrets.token_bytes(NONCE_SIZE)
        ciphertext = AESGCM(key.as_bytes()).encrypt(nonce, plaintext, aad)
        return EncryptedData(nonce=nonce, ciphertext=ciphertext)

    @staticmethod
    def decrypt(
        key: SecureKey,
        encrypted: EncryptedData,
        aad: Optional[bytes] = None,
    ) -> bytes:
        """
        Decrypt ciphertext with AES-256-GCM.

        Args:
            key: 32-byte decryption key
            encrypted: EncryptedData with nonce and ciphertext
            aad: Optional Additional Authenticated Data (must match encryption)

        Returns:
            Decrypted plaintext bytes

        Raises:
            AuthenticationError: If the tag does not verify (wrong key,
                tampering, truncated or malformed input)
            ValueError: If key size is invalid
        """
        if len(key) != AES_256_KEY_SIZE:
            raise ValueError(
                f"Invalid key size: expected {AES_256_KEY_SIZE}, got {len(key)}"
            )

        if len(encrypted.nonce) != NONCE_SIZE or len(encrypted.ciphertext) < TAG_SIZE:
            raise AuthenticationError("Decryption failed")

        try:
            return AESGCM(key.as_bytes()).decrypt(
                encrypted.nonce, encrypted.ciphertext, aad
            )
        except InvalidTag:
            # Generic error to prevent oracle attacks
            raise AuthenticationError("Decryption failed") from None


def generate_random_bytes(length: int) -> bytes:
    """Generate cryptographically secure random bytes."""
    return secrets.token_bytes(length)


def content_digest(data: bytes) -> str:
    """SHA-256 hex digest of a ciphertext, used for transport integrity."""
    return hashlib.sha256(data).hexdigest()


def digests_match(expected: str, actual: str) -> bool:
    """Constant-time comparison of two hex digests."""
    return hmac.compare_digest(expected.lower().encode("utf-8"), actual.lower().encode("utf-8"))


# ---------------------------------------------------------------------------
# Text encodings (artifacts are never stored or sent as raw binary)
# ---------------------------------------------------------------------------

def to_hex(data: bytes) -> str:
    return data.hex()


def from_hex(encoded: str) -> bytes:
    try:
        return bytes.fromhex(encoded)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Hex decode error: {e}") from None


def to_base64(data: bytes) -> str:
    return base64.standard_b64encode(data).decode("ascii")


def from_base64(encoded: str) -> bytes:
    try:
        return base64.b64decode(encoded.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError, AttributeError) as e:
        raise SerializationError(f"Base64 decode error: {e}") from None
