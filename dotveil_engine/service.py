"""
Team secrets service.

High-level workflows composed from the engine and its collaborators:

- setup_identity / recover_identity: first login and new-device login
- push / pull: encrypt an environment's secrets, fetch and verify them
- invite / remove_member: share or withdraw the project key
- rotate: re-key the project (see RotationCoordinator)
- rollback: restore a retained version
- export_project_key: hex project key for CI

The service never holds a "current project key": every workflow unwraps the
key it needs from the caller's envelope (or the explicit CI key) and drops it.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional, Tuple

from .config import EngineConfig, get_config
from .credentials import CredentialVault
from .crypto import SecureKey
from .errors import CredentialError, InvalidStateError, NotFoundError, WrapError
from .identity import IdentityVault
from .models import EnvelopeKey, Keypair, Member, ProtectedPrivateKey, SecretVersion
from .project_keys import ProjectKeyEngine, ProjectLifecycle, ProjectState, RotationResult
from .rotation import RotationCoordinator
from .secret_set import SecretSet, expand_secrets
from .storage import MemberRoster, SecretStore

logger = logging.getLogger("dotveil.service")


class ProjectSecretsService:
    """
    Client-side workflows for one user.

    Args:
        store: Secret store collaborator
        roster: Member roster collaborator
        credentials: Local credential vault holding the user's private key
        config: Engine configuration (defaults to the process-wide config)
        project_key: Explicit project key (service-token / CI mode); when set,
            envelopes and the private key are not consulted for reads
    """

    def __init__(
        self,
        store: SecretStore,
        roster: MemberRoster,
        credentials: CredentialVault,
        config: Optional[EngineConfig] = None,
        project_key: Optional[SecureKey] = None,
    ) -> None:
        self._config = config or get_config()
        self._store = store
        self._roster = roster
        self._credentials = credentials
        self._identity = IdentityVault(self._config)
        self._engine = ProjectKeyEngine(self._config)
        self._rotation = RotationCoordinator(store, roster, self._engine)
        self._ci_key = project_key
        self._lifecycles: Dict[str, ProjectLifecycle] = {}

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    def setup_identity(self, passphrase: str) -> Tuple[Keypair, ProtectedPrivateKey]:
        """
        First login: generate a keypair and protect it.

        The protected form is what gets uploaded. The unwrapped private key
        is kept only in the local credential vault.
        """
        self._identity.check_passphrase(passphrase)
        keypair = self._identity.generate()
        protected = self._identity.protect(keypair.private_key, passphrase)
        self._credentials.set_private_key(keypair.private_key)
        return keypair, protected

    def recover_identity(self, protected: ProtectedPrivateKey, passphrase: str) -> str:
        """
        New-device login: unwrap the uploaded private key and store it locally.

        Raises:
            AuthenticationError: Incorrect passphrase
        """
        private_key = self._identity.recover(protected, passphrase)
        self._credentials.set_private_key(private_key)
        return private_key

    def _private_key(self) -> str:
        private_key = self._credentials.get_private_key()
        if not private_key:
            raise CredentialError("Private key not found")
        return private_key

    # -------------------------------------------------------------------------
    # Project key access
    # -------------------------------------------------------------------------

    async def _lifecycle(self, project_id: str) -> ProjectLifecycle:
        lifecycle = self._lifecycles.get(project_id)
        if lifecycle is None:
            existing = await self._store.list_environments(project_id)
            state = ProjectState.ACTIVE if existing else ProjectState.UNINITIALIZED
            lifecycle = self._lifecycles[project_id] = ProjectLifecycle(project_id, state)
        return lifecycle

    async def _project_key(self, project_id: str, member_id: str) -> SecureKey:
        if self._ci_key is not None:
            return self._ci_key
        envelope = await self._store.get_envelope(project_id, member_id)
        if envelope is None:
            raise NotFoundError("No project key envelope for member", project_id=project_id)
        return self._engine.unwrap_project_key(envelope, self._private_key())

    async def _push_key(self, project_id: str, member: Member) -> SecureKey:
        if self._ci_key is not None:
            return self._ci_key
        envelope = await self._store.get_envelope(project_id, member.member_id)
        if envelope is not None:
            return self._engine.unwrap_project_key(envelope, self._private_key())
        environments = await self._store.list_environments(project_id)
        if environments or await self._roster.list_members(project_id):
            raise NotFoundError("No project key envelope for member", project_id=project_id)

        established = self._engine.establish(member)
        await self._store.put_envelope(project_id, established.envelope)
        await self._roster.add_member(project_id, member)
        logger.info("Established project key for project %s", project_id)
        return established.key

    async def export_project_key(self, project_id: str, member: Member) -> str:
        """Hex project key for use as DOTVEIL_PROJECT_KEY in CI."""
        key = await self._project_key(project_id, member.member_id)
        logger.info("Exported project key for project %s", project_id)
        return key.to_hex()

    # -------------------------------------------------------------------------
    # Secrets
    # -------------------------------------------------------------------------

    async def push(
        self, project_id: str, environment: str, secrets: Mapping[str, str], member: Member
    ) -> SecretVersion:
        """
        Encrypt and upload an environment's secrets.

        A member who already holds an envelope pushes under that key, even
        before any environment has secrets. Only a project with no secrets and
        no members gets a new key, wrapped for the pushing member. In CI mode
        the explicit project key is used and no envelope is written.

        Raises:
            InvalidStateError: If the project is mid-rotation
            NotFoundError: If the project already has secrets or members but no
                envelope for member
        """
        lifecycle = await self._lifecycle(project_id)
        if lifecycle.state == ProjectState.ROTATING:
            raise InvalidStateError("Project key is being rotated", project_id=project_id)

        key = await self._push_key(project_id, member)
        if lifecycle.state == ProjectState.UNINITIALIZED:
            lifecycle.transition(ProjectState.KEY_ESTABLISHED)

        bundle = self._engine.encrypt_secrets(secrets, key)
        version = await self._store.put_current_bundle(
            project_id, environment, bundle, created_by=member.member_id
        )
        if lifecycle.state == ProjectState.KEY_ESTABLISHED:
            lifecycle.transition(ProjectState.ACTIVE)
        logger.info("Pushed %s v%d for project %s", environment, version.version, project_id)
        return version

    async def pull(
        self, project_id: str, environment: str, member: Member, *, expand: bool = False
    ) -> SecretSet:
        """
        Download, verify and decrypt an environment's secrets.

        Raises:
            NotFoundError: If the environment has no secrets
            IntegrityError: Digest mismatch, safe to retry
            AuthenticationError: Wrong key or tampering
        """
        bundle = await self._store.get_current_bundle(project_id, environment)
        if bundle is None:
            raise NotFoundError(
                "No secrets for environment", project_id=project_id, environment=environment
            )
        key = await self._project_key(project_id, member.member_id)
        secrets = self._engine.decrypt_secrets(
            bundle, key, project_id=project_id, environment=environment
        )
        return expand_secrets(secrets) if expand else secrets

    async def list_versions(self, project_id: str, environment: str) -> List[SecretVersion]:
        return await self._store.list_versions(project_id, environment)

    async def rollback(
        self, project_id: str, environment: str, version_id: str, member: Member
    ) -> SecretVersion:
        """
        Make a retained version current again.

        The version is decrypted under the active key first, so an
        unreadable version is never promoted.
        """
        versions = await self._store.list_versions(project_id, environment)
        target = next((v for v in versions if v.version_id == version_id), None)
        if target is None:
            raise NotFoundError(
                "Version not found",
                project_id=project_id,
                environment=environment,
                version_id=version_id,
            )
        key = await self._project_key(project_id, member.member_id)
        self._engine.decrypt_secrets(
            target.bundle, key, project_id=project_id, environment=environment, version_id=version_id
        )
        restored = await self._store.rollback(
            project_id, environment, version_id, created_by=member.member_id
        )
        logger.info(
            "Rolled back %s to v%d for project %s", environment, target.version, project_id
        )
        return restored

    # -------------------------------------------------------------------------
    # Members
    # -------------------------------------------------------------------------

    async def invite(self, project_id: str, inviter: Member, invitee: Member) -> EnvelopeKey:
        """
        Share the project key with a new member.

        Raises:
            WrapError: If the invitee has not completed identity setup
        """
        if not invitee.has_public_key:
            raise WrapError(
                f"Member {invitee.member_id} has not set up their vault (no public key)",
                project_id=project_id,
            )
        key = await self._project_key(project_id, inviter.member_id)
        envelope = self._engine.share_with(invitee, key)
        await self._store.put_envelope(project_id, envelope)
        await self._roster.add_member(project_id, invitee)
        logger.info("Shared project %s key with %s", project_id, invitee.member_id)
        return envelope

    async def remove_member(self, project_id: str, member_id: str) -> None:
        """Drop a member and their envelope. Rotate afterwards to revoke the old key."""
        await self._roster.remove_member(project_id, member_id)
        await self._store.delete_envelope(project_id, member_id)

    async def rotate(self, project_id: str, member: Member) -> RotationResult:
        """Rotate the project key and re-protect everything derived from it."""
        lifecycle = await self._lifecycle(project_id)
        return await self._rotation.rotate(
            project_id, member.member_id, self._private_key(), lifecycle
        )
