"""
Project key engine.

This module provides:
- ProjectState / ProjectLifecycle: per-project key state machine
- ProjectKeyEngine: project key generation, bundle encryption, sharing and rotation
- EstablishedKey, ShareResult, RotationResult: operation results

Key hierarchy:
- Member keypair (RSA-OAEP) -> EnvelopeKey (project key wrapped per member)
- ProjectKey (AES-256-GCM) -> SecretBundle / SecretVersion

The engine holds no project state. Every operation takes its keys and
payloads explicitly and returns new values; persistence belongs to the
secret store.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from .asymmetric import RsaKeyWrap
from .config import EngineConfig, get_config
from .crypto import (
    AES_256_KEY_SIZE,
    AesGcmCipher,
    SecureKey,
    content_digest,
    digests_match,
)
from .errors import (
    AuthenticationError,
    EngineError,
    IntegrityError,
    InvalidStateError,
    RotationError,
    RotationItemError,
    WrapError,
)
from .models import EnvelopeKey, Member, SecretBundle, SecretVersion
from .secret_set import SecretSet, deserialize_secrets, serialize_secrets

logger = logging.getLogger("dotveil.engine")


# =============================================================================
# Lifecycle
# =============================================================================


class ProjectState(Enum):
    """Project key lifecycle state."""

    UNINITIALIZED = "UNINITIALIZED"  # No key yet (before first push)
    KEY_ESTABLISHED = "KEY_ESTABLISHED"  # Key generated and wrapped for its creator
    ACTIVE = "ACTIVE"  # Secrets encrypted under the key
    ROTATING = "ROTATING"  # Replacement staged, old key still authoritative

    def __str__(self) -> str:
        return self.value


_TRANSITIONS: Dict[ProjectState, Tuple[ProjectState, ...]] = {
    ProjectState.UNINITIALIZED: (ProjectState.KEY_ESTABLISHED,),
    ProjectState.KEY_ESTABLISHED: (ProjectState.ACTIVE,),
    ProjectState.ACTIVE: (ProjectState.ROTATING,),
    ProjectState.ROTATING: (ProjectState.ACTIVE,),
}


class ProjectLifecycle:
    """Tracks one project's key state and rejects illegal transitions."""

    def __init__(self, project_id: str, state: ProjectState = ProjectState.UNINITIALIZED) -> None:
        self.project_id = project_id
        self._state = state

    @property
    def state(self) -> ProjectState:
        return self._state

    def transition(self, target: ProjectState) -> None:
        """
        Move to target state.

        Raises:
            InvalidStateError: If the transition is not allowed
        """
        if target not in _TRANSITIONS[self._state]:
            raise InvalidStateError(
                f"Cannot move from {self._state} to {target}",
                project_id=self.project_id,
            )
        logger.debug("Project %s: %s -> %s", self.project_id, self._state, target)
        self._state = target

    @contextmanager
    def rotating(self) -> Iterator[None]:
        """ACTIVE -> ROTATING for the duration of the block, then back to ACTIVE."""
        self.transition(ProjectState.ROTATING)
        try:
            yield
        finally:
            self._state = ProjectState.ACTIVE


# =============================================================================
# Results
# =============================================================================


@dataclass
class EstablishedKey:
    """A freshly generated project key and its creator's envelope."""

    key: SecureKey
    envelope: EnvelopeKey


@dataclass
class ShareResult:
    """Envelopes produced for members, and members skipped for lack of a public key."""

    envelopes: List[EnvelopeKey] = field(default_factory=list)
    skipped: List[Member] = field(default_factory=list)


@dataclass
class RotationResult:
    """
    Staged output of a rotation.

    Nothing here has replaced anything yet: the secret store commits it in a
    single transaction, and only when ready_to_commit is true.

    snapshot maps each environment to the (current bundle digest, version
    count) the rotation was computed from. The store refuses to commit if
    either has changed since.
    """

    project_id: Optional[str]
    new_key: SecureKey
    new_envelopes: List[EnvelopeKey]
    new_bundles: Dict[str, SecretBundle]
    new_versions: List[SecretVersion]
    skipped_items: List[RotationItemError] = field(default_factory=list)
    skipped_members: List[Member] = field(default_factory=list)
    snapshot: Dict[str, Tuple[Optional[str], int]] = field(default_factory=dict)
    ready_to_commit: bool = False

    @property
    def total_items(self) -> int:
        return len(self.new_bundles) + len(self.new_versions) + len(self.skipped_items)

    @property
    def rotated_items(self) -> int:
        return len(self.new_bundles) + len(self.new_versions)

    def summary(self) -> str:
        """User-facing summary, listing skipped items and members."""
        lines = [f"{self.rotated_items} of {self.total_items} items rotated successfully"]
        for item in self.skipped_items:
            lines.append(f"  skipped: {item}")
        for member in self.skipped_members:
            lines.append(f"  member without public key: {member.member_id}")
        return "\n".join(lines)


_Item = Union[Tuple[str, SecretBundle], SecretVersion]


# =============================================================================
# Engine
# =============================================================================


class ProjectKeyEngine:
    """
    Project key lifecycle operations.

    Stateless: safe to share between threads and projects.
    """

    def __init__(self, config: Optional[EngineConfig] = None) -> None:
        self._config = config or get_config()

    # -------------------------------------------------------------------------
    # Keys and envelopes
    # -------------------------------------------------------------------------

    @staticmethod
    def generate_key() -> SecureKey:
        """Generate a random project key."""
        return SecureKey.generate()

    def establish(self, owner: Member) -> EstablishedKey:
        """
        Generate a project key on first push and wrap it for the pushing user.

        Raises:
            WrapError: If the owner has no usable public key
        """
        key = self.generate_key()
        envelope = self.share_with(owner, key)
        logger.info("Established project key for owner %s", owner.member_id)
        return EstablishedKey(key=key, envelope=envelope)

    @staticmethod
    def share_with(member: Member, key: SecureKey) -> EnvelopeKey:
        """
        Wrap the project key for one member.

        Raises:
            WrapError: If the member has no public key or it is malformed
        """
        if not member.has_public_key:
            raise WrapError(f"Member {member.member_id} has no registered public key")
        ciphertext = RsaKeyWrap.wrap(key.as_bytes(), member.public_key)
        return EnvelopeKey(member_id=member.member_id, ciphertext=ciphertext)

    def share_with_members(self, members: Sequence[Member], key: SecureKey) -> ShareResult:
        """
        Wrap the project key for every member holding a public key.

        Members without one are skipped and reported, not treated as failure.
        Wrapping runs in parallel; envelopes keep the roster's order.

        Raises:
            WrapError: If a registered public key is malformed
        """
        members = tuple(members)
        eligible = [m for m in members if m.has_public_key]
        skipped = [m for m in members if not m.has_public_key]
        for member in skipped:
            logger.warning("Member %s has no public key, skipping", member.member_id)

        with ThreadPoolExecutor(max_workers=self._config.rotation_workers) as pool:
            envelopes = list(pool.map(lambda m: self.share_with(m, key), eligible))

        return ShareResult(envelopes=envelopes, skipped=skipped)

    @staticmethod
    def unwrap_project_key(envelope: EnvelopeKey, private_key: str) -> SecureKey:
        """
        Recover the project key from a member's envelope.

        Raises:
            WrapError: If the envelope does not open with this private key
        """
        payload = RsaKeyWrap.unwrap(envelope.ciphertext, private_key)
        if len(payload) != AES_256_KEY_SIZE:
            raise WrapError("Envelope does not contain a project key")
        return SecureKey(payload)

    # -------------------------------------------------------------------------
    # Secret bundles
    # -------------------------------------------------------------------------

    @staticmethod
    def _seal(plaintext: bytes, key: SecureKey) -> SecretBundle:
        encrypted = AesGcmCipher.encrypt(key, plaintext)
        return SecretBundle(
            ciphertext=encrypted.ciphertext,
            nonce=encrypted.nonce,
            integrity_digest=content_digest(encrypted.ciphertext),
        )

    @staticmethod
    def _open(
        bundle: SecretBundle,
        key: SecureKey,
        project_id: Optional[str] = None,
        environment: Optional[str] = None,
        version_id: Optional[str] = None,
    ) -> bytes:
        """Digest check first, then authenticated decryption."""
        context = dict(project_id=project_id, environment=environment, version_id=version_id)
        if not digests_match(bundle.integrity_digest, content_digest(bundle.ciphertext)):
            raise IntegrityError("Ciphertext digest mismatch", **context)
        try:
            return AesGcmCipher.decrypt(key, bundle.encrypted)
        except AuthenticationError:
            raise AuthenticationError("Bundle failed authentication", **context) from None

    def encrypt_secrets(self, secrets: Mapping[str, str], key: SecureKey) -> SecretBundle:
        """
        Serialize and encrypt a secret set.

        Returns:
            SecretBundle with a SHA-256 digest over the ciphertext
        """
        return self._seal(serialize_secrets(secrets), key)

    def decrypt_secrets(
        self,
        bundle: SecretBundle,
        key: SecureKey,
        *,
        project_id: Optional[str] = None,
        environment: Optional[str] = None,
        version_id: Optional[str] = None,
    ) -> SecretSet:
        """
        Verify and decrypt a bundle.

        Raises:
            IntegrityError: Digest mismatch (likely transport corruption, retry)
            AuthenticationError: Tag mismatch (wrong key or tampering)
            SerializationError: Decrypted payload is not a secret set
        """
        plaintext = self._open(bundle, key, project_id, environment, version_id)
        return deserialize_secrets(plaintext)

    # -------------------------------------------------------------------------
    # Rotation
    # -------------------------------------------------------------------------

    def _reencrypt(
        self,
        bundle: SecretBundle,
        old_key: SecureKey,
        new_key: SecureKey,
        project_id: Optional[str],
        environment: str,
        version_id: Optional[str] = None,
    ) -> SecretBundle:
        """Decrypt under old_key, re-encrypt under new_key, and prove the round trip."""
        context = dict(project_id=project_id, environment=environment, version_id=version_id)
        try:
            plaintext = self._open(bundle, old_key, project_id, environment, version_id)
            rotated = self._seal(plaintext, new_key)
            if self._open(rotated, new_key, project_id, environment, version_id) != plaintext:
                raise RotationItemError("Re-encrypted payload does not match", **context)
        except RotationItemError:
            raise
        except EngineError as e:
            raise RotationItemError(f"Re-encryption failed: {e.message}", **context) from e
        return rotated

    def _rotate_item(
        self, item: _Item, old_key: SecureKey, new_key: SecureKey, project_id: Optional[str]
    ) -> Union[Tuple[str, SecretBundle], SecretVersion, RotationItemError]:
        try:
            if isinstance(item, SecretVersion):
                rotated = self._reencrypt(
                    item.bundle, old_key, new_key, project_id, item.environment, item.version_id
                )
                return item.with_bundle(rotated)
            environment, bundle = item
            return environment, self._reencrypt(bundle, old_key, new_key, project_id, environment)
        except RotationItemError as e:
            return e

    @staticmethod
    def _snapshot(
        bundles: Mapping[str, SecretBundle], versions: Sequence[SecretVersion]
    ) -> Dict[str, Tuple[Optional[str], int]]:
        counts: Dict[str, int] = {}
        for version in versions:
            counts[version.environment] = counts.get(version.environment, 0) + 1
        environments = set(bundles) | set(counts)
        return {
            env: (bundles[env].integrity_digest if env in bundles else None, counts.get(env, 0))
            for env in environments
        }

    def rotate(
        self,
        current_key: SecureKey,
        members: Sequence[Member],
        bundles: Mapping[str, SecretBundle],
        versions: Sequence[SecretVersion],
        *,
        project_id: Optional[str] = None,
    ) -> RotationResult:
        """
        Re-key a project.

        Steps:
        1. Generate the new project key (nothing is wrapped or encrypted before this)
        2. Re-encrypt every current bundle and every retained version, each
           verified by decrypting under the new key
        3. Wrap the new key for every member with a public key
        4. Mark the result ready to commit

        A historical version that fails is skipped and reported. A current
        bundle that fails, or a rotation that would leave no member able to
        unwrap the new key, aborts the rotation.

        Args:
            current_key: Active project key
            members: Project roster
            bundles: Current bundle per environment
            versions: Retained versions, in store order
            project_id: Used for error context and logging only

        Returns:
            Staged RotationResult

        Raises:
            RotationError: If the rotation cannot produce a complete result
        """
        members = tuple(members)
        items: List[_Item] = [*bundles.items(), *versions]
        logger.info(
            "Starting key rotation for project %s (%d bundles, %d versions, %d members)",
            project_id, len(bundles), len(versions), len(members),
        )

        try:
            new_key = self.generate_key()
        except Exception as e:
            raise RotationError("Could not generate new project key", project_id=project_id) from e

        with ThreadPoolExecutor(max_workers=self._config.rotation_workers) as pool:
            outcomes = list(
                pool.map(lambda item: self._rotate_item(item, current_key, new_key, project_id), items)
            )

        new_bundles: Dict[str, SecretBundle] = {}
        new_versions: List[SecretVersion] = []
        skipped: List[RotationItemError] = []
        for outcome in outcomes:
            if isinstance(outcome, RotationItemError):
                if outcome.version_id is None:
                    logger.error("Current bundle failed to rotate: %s", outcome)
                    raise RotationError(
                        f"Current bundle could not be re-encrypted: {outcome.message}",
                        project_id=project_id,
                        environment=outcome.environment,
                    ) from outcome
                logger.warning("Skipping version during rotation: %s", outcome)
                skipped.append(outcome)
            elif isinstance(outcome, SecretVersion):
                new_versions.append(outcome)
            else:
                environment, bundle = outcome
                new_bundles[environment] = bundle

        try:
            shared = self.share_with_members(members, new_key)
        except WrapError as e:
            raise RotationError(f"Could not wrap new key: {e.message}", project_id=project_id) from e
        if not shared.envelopes:
            raise RotationError(
                "No member has a public key; rotation would lock everyone out",
                project_id=project_id,
            )

        result = RotationResult(
            project_id=project_id,
            new_key=new_key,
            new_envelopes=shared.envelopes,
            new_bundles=new_bundles,
            new_versions=new_versions,
            skipped_items=skipped,
            skipped_members=shared.skipped,
            snapshot=self._snapshot(bundles, versions),
            ready_to_commit=True,
        )
        logger.info(
            "Rotation staged for project %s: %d of %d items, %d envelopes",
            project_id, result.rotated_items, result.total_items, len(result.new_envelopes),
        )
        return result
