"""
Exception classes for the secret-encryption engine.

Every error carries optional context (project, environment, version) so the
caller can act on it, and a ``user_hint`` for user-facing diagnostics.
Messages never include key material.
"""

from __future__ import annotations

from typing import Optional


class EngineError(Exception):
    """Base exception for all engine operations."""

    user_hint: str = "An unexpected error occurred."

    def __init__(
        self,
        message: str = "",
        *,
        project_id: Optional[str] = None,
        environment: Optional[str] = None,
        version_id: Optional[str] = None,
    ) -> None:
        self.message = message or self.user_hint
        self.project_id = project_id
        self.environment = environment
        self.version_id = version_id
        super().__init__(self.message)

    @property
    def context(self) -> dict:
        """Non-empty context fields."""
        ctx = {
            "project": self.project_id,
            "environment": self.environment,
            "version": self.version_id,
        }
        return {k: v for k, v in ctx.items() if v is not None}

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.message} ({details})"


class KeyDerivationError(EngineError):
    """Passphrase key derivation ran out of resources."""

    user_hint = "Key derivation exceeded its memory limit."


class AuthenticationError(EngineError):
    """Authentication tag or passphrase mismatch. Never retried automatically."""

    user_hint = "Wrong key or passphrase. Please re-enter your credentials."


class IntegrityError(EngineError):
    """Content digest mismatch, most likely transport corruption."""

    user_hint = "Downloaded data failed its integrity check. Retry the download."


class WrapError(EngineError):
    """Asymmetric wrap/unwrap failed (oversized payload, malformed input)."""

    user_hint = "Key envelope is malformed or does not belong to this key."


class RotationItemError(EngineError):
    """A single bundle or version could not be re-encrypted during rotation."""

    user_hint = "An item could not be re-encrypted and was skipped."


class RotationError(EngineError):
    """Rotation failed as a whole; nothing was committed."""

    user_hint = "Key rotation failed. The previous key remains active."


class PassphrasePolicyError(EngineError, ValueError):
    """Passphrase does not meet the minimum policy."""

    user_hint = "Passphrase is too short."


class SerializationError(EngineError):
    """Artifact or secret set could not be encoded or decoded."""

    user_hint = "Stored data is not in the expected format."


class ConfigError(EngineError):
    """Configuration error."""

    user_hint = "Invalid configuration."


class StorageError(EngineError):
    """Collaborator storage error."""

    user_hint = "The secret store rejected the request."


class NotFoundError(StorageError):
    """Requested artifact does not exist in the store."""

    user_hint = "Not found."


class StaleRotationError(StorageError):
    """The store changed after the rotation read it; the staged result was not committed."""

    user_hint = "Secrets changed while the key was rotating. Run the rotation again."


class InvalidStateError(EngineError):
    """Operation is not allowed in the project's current key state."""

    user_hint = "Operation not allowed in the current project state."


class CredentialError(EngineError):
    """Local credential vault could not be read or written."""

    user_hint = "Local credentials are unavailable. Please log in again."
