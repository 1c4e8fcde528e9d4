"""
Identity vault: a user's keypair lifecycle.

- generate: new RSA keypair, once per user at first login
- protect: encrypt the private key under a passphrase-derived key before
  anything is uploaded
- recover: re-derive with the stored salt and decrypt on a new device

The passphrase is never stored or transmitted. Losing it is unrecoverable.
"""

from __future__ import annotations

import logging
from typing import Optional

from .asymmetric import generate_rsa_keypair
from .config import EngineConfig, get_config
from .crypto import AesGcmCipher
from .errors import AuthenticationError, PassphrasePolicyError
from .kdf import KeyDerivation
from .models import Keypair, ProtectedPrivateKey

logger = logging.getLogger("dotveil.identity")

# Binds the ciphertext to its purpose so it cannot be swapped for a bundle.
_PRIVATE_KEY_AAD = b"dotveil:private-key:v1"


class IdentityVault:
    """Generates, protects and recovers a user's private key."""

    def __init__(self, config: Optional[EngineConfig] = None) -> None:
        self._config = config or get_config()
        self._kdf = KeyDerivation(self._config)

    def check_passphrase(self, passphrase: str) -> None:
        """Raise PassphrasePolicyError before any slow work if the passphrase is too short."""
        self._kdf.check_policy(passphrase)

    def generate(self) -> Keypair:
        """Create a fresh keypair."""
        public_pem, private_pem = generate_rsa_keypair(self._config)
        logger.info("Generated %d-bit identity keypair", self._config.rsa_key_size)
        return Keypair(public_key=public_pem, private_key=private_pem)

    def protect(self, private_key: str, passphrase: str) -> ProtectedPrivateKey:
        """
        Encrypt a private key under a passphrase.

        Args:
            private_key: PEM private key
            passphrase: User passphrase (checked against the minimum length)

        Returns:
            ProtectedPrivateKey safe to upload

        Raises:
            PassphrasePolicyError: If the passphrase is too short
            KeyDerivationError: If derivation runs out of memory
        """
        salt = self._kdf.generate_salt()
        derived = self._kdf.derive_key(passphrase, salt)
        encrypted = AesGcmCipher.encrypt(derived, private_key.encode("utf-8"), _PRIVATE_KEY_AAD)
        return ProtectedPrivateKey(
            ciphertext=encrypted.ciphertext,
            salt=salt,
            nonce=encrypted.nonce,
            algorithm=f"RSA-OAEP-{self._config.rsa_key_size}",
            scrypt_n=self._config.scrypt_n,
            scrypt_r=self._config.scrypt_r,
            scrypt_p=self._config.scrypt_p,
        )

    def recover(self, protected: ProtectedPrivateKey, passphrase: str) -> str:
        """
        Decrypt a protected private key.

        Derivation uses the scrypt cost recorded in the protected form, not
        the current configuration. Wrong passphrase and corrupted data are
        indistinguishable here and both raise AuthenticationError.

        Returns:
            PEM private key

        Raises:
            AuthenticationError: Incorrect passphrase or corrupted data
            KeyDerivationError: If derivation runs out of memory
        """
        try:
            derived = self._kdf.derive_key(
                passphrase,
                protected.salt,
                n=protected.scrypt_n,
                r=protected.scrypt_r,
                p=protected.scrypt_p,
            )
        except PassphrasePolicyError:
            # A passphrase shorter than the policy was never accepted by protect().
            raise AuthenticationError("Incorrect passphrase") from None

        try:
            plaintext = AesGcmCipher.decrypt(derived, protected.encrypted, _PRIVATE_KEY_AAD)
        except AuthenticationError:
            raise AuthenticationError("Incorrect passphrase") from None

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise AuthenticationError("Incorrect passphrase") from None
