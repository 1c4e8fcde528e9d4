"""
Project key rotation against the secret store.

Gathers the current envelope, roster, bundles and versions, runs the
CPU-bound re-encryption in a worker thread, and commits the staged result in
one store transaction. If anything fails or the task is cancelled before the
commit, the store still holds the old key, envelopes and bundles untouched.

Security Note:
    Plaintext exists in memory only while each item is re-encrypted.
    Never log plaintext, ciphertext or key values.
"""

import asyncio
import logging
from typing import Optional

from .errors import NotFoundError, StaleRotationError
from .project_keys import ProjectKeyEngine, ProjectLifecycle, RotationResult
from .storage import MemberRoster, SecretStore

logger = logging.getLogger("dotveil.rotation")


class RotationCoordinator:
    """Runs a full project key rotation for one member holding the current key."""

    def __init__(
        self,
        store: SecretStore,
        roster: MemberRoster,
        engine: Optional[ProjectKeyEngine] = None,
    ) -> None:
        self._store = store
        self._roster = roster
        self._engine = engine or ProjectKeyEngine()

    async def _collect(self, project_id: str):
        environments = await self._store.list_environments(project_id)
        bundles = await asyncio.gather(
            *(self._store.get_current_bundle(project_id, env) for env in environments)
        )
        histories = await asyncio.gather(
            *(self._store.list_versions(project_id, env) for env in environments)
        )
        current = {env: b for env, b in zip(environments, bundles) if b is not None}
        versions = [v for history in histories for v in history]
        return current, versions

    async def rotate(
        self,
        project_id: str,
        member_id: str,
        private_key: str,
        lifecycle: Optional[ProjectLifecycle] = None,
    ) -> RotationResult:
        """
        Rotate a project's key and commit the result.

        Args:
            project_id: Project to rotate
            member_id: Member performing the rotation (must hold an envelope)
            private_key: That member's PEM private key
            lifecycle: Optional state tracker, held in ROTATING for the duration

        Returns:
            The committed RotationResult (see summary() for skipped items)

        Raises:
            NotFoundError: If the member has no envelope for this project
            WrapError: If the envelope does not open with the private key
            RotationError: If the rotation could not be staged
            StaleRotationError: If secrets or members changed before the commit
        """
        if lifecycle is None:
            return await self._rotate(project_id, member_id, private_key)
        with lifecycle.rotating():
            return await self._rotate(project_id, member_id, private_key)

    async def _rotate(self, project_id: str, member_id: str, private_key: str) -> RotationResult:
        envelope = await self._store.get_envelope(project_id, member_id)
        if envelope is None:
            raise NotFoundError("No project key envelope for member", project_id=project_id)
        current_key = self._engine.unwrap_project_key(envelope, private_key)

        members = await self._roster.list_members(project_id)
        bundles, versions = await self._collect(project_id)

        result = await asyncio.to_thread(
            self._engine.rotate,
            current_key,
            members,
            bundles,
            versions,
            project_id=project_id,
        )

        roster_now = await self._roster.list_members(project_id)
        if {m.member_id for m in roster_now} != {m.member_id for m in members}:
            raise StaleRotationError(
                "Project members changed since rotation started", project_id=project_id
            )

        await self._store.commit_rotation(project_id, result)
        logger.info("Rotation committed for project %s: %s", project_id, result.summary())
        return result
