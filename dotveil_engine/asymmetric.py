"""
RSA-OAEP key wrapping.

Used only to share a project's symmetric key with team members: the key is
encrypted under each member's public key so the server never sees it.
Keys travel as PEM text (SubjectPublicKeyInfo / PKCS#8).
"""

from __future__ import annotations

from typing import Optional

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey

from .config import EngineConfig, MIN_RSA_KEY_SIZE, get_config
from .errors import WrapError

PUBLIC_EXPONENT = 65537
_OAEP_HASH_SIZE = 32  # SHA-256


def _oaep() -> padding.OAEP:
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None,
    )


def max_payload_size(key_size_bits: int) -> int:
    """Largest payload OAEP/SHA-256 can carry for a modulus of this size."""
    return key_size_bits // 8 - 2 * _OAEP_HASH_SIZE - 2


def generate_rsa_keypair(config: Optional[EngineConfig] = None) -> tuple[str, str]:
    """
    Generate an RSA keypair.

    Returns:
        Tuple of (public_key_pem, private_key_pem)
    """
    cfg = config or get_config()
    private_key = rsa.generate_private_key(
        public_exponent=PUBLIC_EXPONENT,
        key_size=cfg.rsa_key_size,
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return public_pem.decode("ascii"), private_pem.decode("ascii")


def load_public_key(public_key_pem: str) -> RSAPublicKey:
    """
    Parse a PEM public key.

    Raises:
        WrapError: If the PEM is malformed, not RSA, or below the minimum size
    """
    try:
        key = serialization.load_pem_public_key(public_key_pem.encode("ascii"))
    except (ValueError, TypeError, UnicodeEncodeError, AttributeError):
        raise WrapError("Malformed public key") from None
    if not isinstance(key, RSAPublicKey):
        raise WrapError("Public key is not an RSA key")
    if key.key_size < MIN_RSA_KEY_SIZE:
        raise WrapError(f"Public key is below {MIN_RSA_KEY_SIZE} bits")
    return key


def load_private_key(private_key_pem: str) -> RSAPrivateKey:
    """
    Parse an unencrypted PEM private key.

    Raises:
        WrapError: If the PEM is malformed or not RSA
    """
    try:
        key = serialization.load_pem_private_key(
            private_key_pem.encode("ascii"), password=None
        )
    except (ValueError, TypeError, UnicodeEncodeError, AttributeError):
        raise WrapError("Malformed private key") from None
    if not isinstance(key, RSAPrivateKey):
        raise WrapError("Private key is not an RSA key")
    return key


def public_key_from_private(private_key_pem: str) -> str:
    """Derive the PEM public key for a PEM private key."""
    public_key = load_private_key(private_key_pem).public_key()
    return public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


class RsaKeyWrap:
    """
    RSA-OAEP (SHA-256) wrap/unwrap for short payloads.

    Provides static methods, like the symmetric cipher.
    """

    @staticmethod
    def wrap(payload: bytes, public_key_pem: str) -> bytes:
        """
        Encrypt a short payload under a public key.

        Args:
            payload: Bytes to wrap (a project key)
            public_key_pem: Recipient's PEM public key

        Returns:
            Wrapped ciphertext

        Raises:
            WrapError: If the key is malformed or the payload too large
        """
        public_key = load_public_key(public_key_pem)
        limit = max_payload_size(public_key.key_size)
        if len(payload) > limit:
            raise WrapError(
                f"Payload of {len(payload)} bytes exceeds the {limit} byte limit"
            )
        return public_key.encrypt(payload, _oaep())

    @staticmethod
    def unwrap(ciphertext: bytes, private_key_pem: str) -> bytes:
        """
        Decrypt a wrapped payload with a private key.

        Raises:
            WrapError: If the ciphertext is malformed or was not wrapped for
                this private key
        """
        private_key = load_private_key(private_key_pem)
        if len(ciphertext) != private_key.key_size // 8:
            raise WrapError("Wrapped ciphertext has the wrong length")
        try:
            return private_key.decrypt(ciphertext, _oaep())
        except ValueError:
            raise WrapError("Unwrap failed") from None
