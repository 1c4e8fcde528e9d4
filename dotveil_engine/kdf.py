"""
Passphrase key derivation using scrypt.

The derived key protects a user's private key. Derivation is deterministic
for a given passphrase and salt, which is what makes later recovery work.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .config import EngineConfig, get_config
from .crypto import SecureKey
from .errors import KeyDerivationError, PassphrasePolicyError

logger = logging.getLogger("dotveil.kdf")


class KeyDerivation:
    """Derives symmetric keys from passphrases with a memory-hard function."""

    def __init__(self, config: Optional[EngineConfig] = None) -> None:
        self._config = config or get_config()

    @property
    def salt_size(self) -> int:
        return self._config.salt_size

    def generate_salt(self) -> bytes:
        """Generate a cryptographically secure random salt."""
        return os.urandom(self._config.salt_size)

    def check_policy(self, passphrase: str) -> None:
        """
        Reject passphrases shorter than the configured minimum.

        Raises:
            PassphrasePolicyError: If the passphrase is too short
        """
        minimum = self._config.min_passphrase_length
        if len(passphrase) < minimum:
            raise PassphrasePolicyError(
                f"Passphrase must be at least {minimum} characters"
            )

    def derive_key(
        self,
        passphrase: str,
        salt: bytes,
        *,
        n: Optional[int] = None,
        r: Optional[int] = None,
        p: Optional[int] = None,
    ) -> SecureKey:
        """
        Derive a 256-bit key from a passphrase.

        Args:
            passphrase: The user's passphrase
            salt: Salt stored alongside the protected data
            n, r, p: scrypt cost recorded with the protected data; the
                configured cost is used for any that are omitted

        Returns:
            Derived key

        Raises:
            PassphrasePolicyError: If the passphrase is below the minimum length
            KeyDerivationError: If derivation exceeds the memory ceiling
        """
        self.check_policy(passphrase)
        cfg = self._config
        n = cfg.scrypt_n if n is None else n
        r = cfg.scrypt_r if r is None else r
        p = cfg.scrypt_p if p is None else p
        required = 128 * n * r * p
        if required > cfg.scrypt_max_memory:
            raise KeyDerivationError(
                f"scrypt needs {required} bytes, ceiling is {cfg.scrypt_max_memory}"
            )

        kdf = Scrypt(salt=salt, length=cfg.key_size, n=n, r=r, p=p)
        try:
            return SecureKey(kdf.derive(passphrase.encode("utf-8")))
        except MemoryError:
            logger.error("scrypt derivation ran out of memory (n=%d r=%d p=%d)", n, r, p)
            raise KeyDerivationError("Not enough memory to derive key") from None
