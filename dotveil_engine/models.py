"""
Artifacts produced and consumed by the engine.

This module provides:
- Keypair: User's asymmetric keypair (PEM text)
- ProtectedPrivateKey: Private key encrypted under a passphrase-derived key
- EnvelopeKey: Project key wrapped for one member
- SecretBundle: Encrypted secret set for one environment
- SecretVersion: Immutable historical bundle kept for rollback
- Member: Roster entry, with or without a registered public key

All binary fields serialize to hex (symmetric artifacts) or base64 (wrapped
keys) so they stay JSON/API-safe.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .crypto import EncryptedData, from_base64, from_hex, to_base64, to_hex
from .errors import SerializationError


def _require(data: Dict[str, Any], *names: str) -> None:
    missing = [n for n in names if n not in data]
    if missing:
        raise SerializationError(f"Missing fields: {', '.join(missing)}")


def _scrypt_params(params: Dict[str, Any]) -> Dict[str, int]:
    """Validate a recorded scrypt cost. Missing values take the defaults."""
    try:
        n, r, p = (int(params.get(k, d)) for k, d in (("n", 2**15), ("r", 8), ("p", 1)))
    except (TypeError, ValueError, AttributeError) as e:
        raise SerializationError(f"Invalid kdf_params: {e}") from None
    if n <= 1 or n & (n - 1) != 0 or r < 1 or p < 1:
        raise SerializationError("Invalid kdf_params: n must be a power of two, r and p positive")
    return {"scrypt_n": n, "scrypt_r": r, "scrypt_p": p}


@dataclass(frozen=True)
class Keypair:
    """Asymmetric keypair. Only public_key may leave the device unprotected."""

    public_key: str  # PEM (SubjectPublicKeyInfo)
    private_key: str  # PEM (PKCS#8, unencrypted)

    def __repr__(self) -> str:
        return "Keypair(public_key=..., private_key=[REDACTED])"


@dataclass(frozen=True)
class ProtectedPrivateKey:
    """
    Private key encrypted under a passphrase-derived key.

    This is the only form of the private key the server ever stores.
    """

    ciphertext: bytes  # includes 16-byte GCM tag
    salt: bytes
    nonce: bytes
    algorithm: str = "RSA-OAEP-4096"
    kdf: str = "scrypt"
    # scrypt cost used by protect()
    scrypt_n: int = 2**15
    scrypt_r: int = 8
    scrypt_p: int = 1

    @property
    def encrypted(self) -> EncryptedData:
        return EncryptedData(nonce=self.nonce, ciphertext=self.ciphertext)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ciphertext": to_hex(self.ciphertext),
            "salt": to_hex(self.salt),
            "nonce": to_hex(self.nonce),
            "algorithm": self.algorithm,
            "kdf": self.kdf,
            "kdf_params": {"n": self.scrypt_n, "r": self.scrypt_r, "p": self.scrypt_p},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ProtectedPrivateKey:
        _require(data, "ciphertext", "salt", "nonce")
        return cls(
            ciphertext=from_hex(data["ciphertext"]),
            salt=from_hex(data["salt"]),
            nonce=from_hex(data["nonce"]),
            algorithm=data.get("algorithm", "RSA-OAEP-4096"),
            kdf=data.get("kdf", "scrypt"),
            **_scrypt_params(data.get("kdf_params") or {}),
        )


@dataclass(frozen=True)
class EnvelopeKey:
    """A project key wrapped under one member's public key."""

    member_id: str
    ciphertext: bytes

    def to_dict(self) -> Dict[str, str]:
        return {"member_id": self.member_id, "ciphertext": to_base64(self.ciphertext)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> EnvelopeKey:
        _require(data, "member_id", "ciphertext")
        return cls(member_id=data["member_id"], ciphertext=from_base64(data["ciphertext"]))


@dataclass(frozen=True)
class SecretBundle:
    """
    An environment's secret set encrypted under the project key.

    integrity_digest is SHA-256 over the ciphertext, independent of the GCM tag.
    """

    ciphertext: bytes
    nonce: bytes
    integrity_digest: str

    @property
    def encrypted(self) -> EncryptedData:
        return EncryptedData(nonce=self.nonce, ciphertext=self.ciphertext)

    def to_dict(self) -> Dict[str, str]:
        return {
            "ciphertext": to_hex(self.ciphertext),
            "nonce": to_hex(self.nonce),
            "sha256": self.integrity_digest,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SecretBundle:
        _require(data, "ciphertext", "nonce", "sha256")
        return cls(
            ciphertext=from_hex(data["ciphertext"]),
            nonce=from_hex(data["nonce"]),
            integrity_digest=str(data["sha256"]),
        )


@dataclass(frozen=True)
class SecretVersion:
    """Immutable historical bundle. version numbers increase with each push."""

    version_id: str
    environment: str
    version: int
    bundle: SecretBundle
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    created_by: Optional[str] = None

    def with_bundle(self, bundle: SecretBundle) -> SecretVersion:
        """Same version identity and ordering, new ciphertext."""
        return SecretVersion(
            version_id=self.version_id,
            environment=self.environment,
            version=self.version,
            bundle=bundle,
            created_at=self.created_at,
            created_by=self.created_by,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.version_id,
            "environment": self.environment,
            "version": self.version,
            "created_at": self.created_at.isoformat(),
            "created_by": self.created_by,
            **self.bundle.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SecretVersion:
        _require(data, "id", "environment", "version", "created_at")
        try:
            created_at = datetime.fromisoformat(data["created_at"])
            version = int(data["version"])
        except (TypeError, ValueError) as e:
            raise SerializationError(f"Invalid version record: {e}") from None
        return cls(
            version_id=data["id"],
            environment=data["environment"],
            version=version,
            bundle=SecretBundle.from_dict(data),
            created_at=created_at,
            created_by=data.get("created_by"),
        )


@dataclass(frozen=True)
class Member:
    """Project member. public_key is None until identity setup is complete."""

    member_id: str
    public_key: Optional[str] = None
    email: Optional[str] = None

    @property
    def has_public_key(self) -> bool:
        return bool(self.public_key)
