"""
Engine configuration.

Values come from the process environment, optionally seeded from a ``.env``
file:

    DOTVEIL_SCRYPT_N          scrypt CPU/memory cost (power of two, default 32768)
    DOTVEIL_SCRYPT_R          scrypt block size (default 8)
    DOTVEIL_SCRYPT_P          scrypt parallelization (default 1)
    DOTVEIL_SCRYPT_MAXMEM     memory ceiling in bytes (default 64 MiB)
    DOTVEIL_MIN_PASSPHRASE    minimum passphrase length (default 12)
    DOTVEIL_RSA_KEY_SIZE      RSA modulus size in bits (default 4096)
    DOTVEIL_ROTATION_WORKERS  worker threads used during rotation (default 4)
    DOTVEIL_HOME              directory for local credentials (default ~/.dotveil)
    DOTVEIL_PROJECT_KEY       hex project key for CI (see project_key_from_env)

Security Note:
    Never log key material. Only log parameter values and paths.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .crypto import AES_256_KEY_SIZE, SecureKey
from .errors import ConfigError, SerializationError

logger = logging.getLogger("dotveil.config")

MIN_RSA_KEY_SIZE = 4096
PROJECT_KEY_ENV = "DOTVEIL_PROJECT_KEY"


def _default_home() -> Path:
    return Path.home() / ".dotveil"


@dataclass
class EngineConfig:
    """Tunable parameters for key derivation, wrapping and rotation."""

    # Key derivation (scrypt)
    scrypt_n: int = 2**15
    scrypt_r: int = 8
    scrypt_p: int = 1
    scrypt_max_memory: int = 64 * 1024 * 1024
    salt_size: int = 32
    key_size: int = AES_256_KEY_SIZE
    min_passphrase_length: int = 12

    # Asymmetric wrapping
    rsa_key_size: int = MIN_RSA_KEY_SIZE

    # Rotation
    rotation_workers: int = 4

    # Local credentials
    credentials_dir: Path = field(default_factory=_default_home)

    def __post_init__(self) -> None:
        self.validate()

    @property
    def scrypt_memory_required(self) -> int:
        """Approximate scrypt working memory: 128 * n * r * p bytes."""
        return 128 * self.scrypt_n * self.scrypt_r * self.scrypt_p

    def validate(self) -> None:
        """
        Check parameter sanity.

        Raises:
            ConfigError: On any invalid value
        """
        n = self.scrypt_n
        if n <= 1 or n & (n - 1) != 0:
            raise ConfigError(f"scrypt n must be a power of two greater than 1, got {n}")
        if self.scrypt_r < 1 or self.scrypt_p < 1:
            raise ConfigError("scrypt r and p must be positive")
        if self.scrypt_memory_required > self.scrypt_max_memory:
            raise ConfigError(
                f"scrypt parameters need {self.scrypt_memory_required} bytes, "
                f"above the {self.scrypt_max_memory} byte ceiling"
            )
        if self.salt_size < 16:
            raise ConfigError(f"salt size must be at least 16 bytes, got {self.salt_size}")
        if self.key_size != AES_256_KEY_SIZE:
            raise ConfigError(f"key size must be {AES_256_KEY_SIZE} bytes")
        if self.min_passphrase_length < 1:
            raise ConfigError("minimum passphrase length must be positive")
        if self.rsa_key_size < MIN_RSA_KEY_SIZE:
            raise ConfigError(
                f"RSA key size must be at least {MIN_RSA_KEY_SIZE} bits, got {self.rsa_key_size}"
            )
        if self.rotation_workers < 1:
            raise ConfigError("rotation workers must be at least 1")

    @classmethod
    def from_env(cls, env_file: Optional[str | Path] = None) -> EngineConfig:
        """
        Load configuration from environment variables.

        Args:
            env_file: Optional ``.env`` file loaded first (existing variables win)

        Returns:
            Validated EngineConfig

        Raises:
            ConfigError: If a variable is not a valid value
        """
        load_dotenv(env_file)
        defaults = cls()

        config = cls(
            scrypt_n=_env_int("DOTVEIL_SCRYPT_N", defaults.scrypt_n),
            scrypt_r=_env_int("DOTVEIL_SCRYPT_R", defaults.scrypt_r),
            scrypt_p=_env_int("DOTVEIL_SCRYPT_P", defaults.scrypt_p),
            scrypt_max_memory=_env_int("DOTVEIL_SCRYPT_MAXMEM", defaults.scrypt_max_memory),
            min_passphrase_length=_env_int(
                "DOTVEIL_MIN_PASSPHRASE", defaults.min_passphrase_length
            ),
            rsa_key_size=_env_int("DOTVEIL_RSA_KEY_SIZE", defaults.rsa_key_size),
            rotation_workers=_env_int("DOTVEIL_ROTATION_WORKERS", defaults.rotation_workers),
            credentials_dir=Path(os.environ.get("DOTVEIL_HOME", defaults.credentials_dir)),
        )
        logger.debug(
            "Loaded engine config (scrypt n=%d r=%d p=%d, rsa=%d bits)",
            config.scrypt_n, config.scrypt_r, config.scrypt_p, config.rsa_key_size,
        )
        return config


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


def project_key_from_env() -> SecureKey:
    """
    Read a hex project key from DOTVEIL_PROJECT_KEY (service-token / CI use).

    Raises:
        ConfigError: If the variable is missing or is not a 32-byte hex key
    """
    raw = os.environ.get(PROJECT_KEY_ENV)
    if not raw:
        raise ConfigError(f"{PROJECT_KEY_ENV} is not set")
    try:
        key = SecureKey.from_hex(raw.strip())
    except SerializationError:
        raise ConfigError(f"{PROJECT_KEY_ENV} is not valid hex") from None
    if len(key) != AES_256_KEY_SIZE:
        raise ConfigError(f"{PROJECT_KEY_ENV} must decode to {AES_256_KEY_SIZE} bytes")
    return key


# Global configuration instance
_config: EngineConfig | None = None


def get_config() -> EngineConfig:
    """Get the process-wide default configuration."""
    global _config
    if _config is None:
        _config = EngineConfig.from_env()
    return _config


def set_config(config: EngineConfig | None) -> None:
    """Set (or reset with None) the process-wide default configuration."""
    global _config
    _config = config
