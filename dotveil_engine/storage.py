"""
Collaborator interfaces for server-resident state.

This module provides:
- SecretStore: Abstract store for envelopes, current bundles and versions
- MemberRoster: Abstract project roster
- InMemorySecretStore / InMemoryMemberRoster: asyncio-safe in-memory
  implementations for testing and local use

The real backends live on the server and enforce access control; the engine
only ever hands them ciphertexts and wrapped keys.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional
from uuid import uuid4

from .errors import NotFoundError, StaleRotationError, StorageError
from .models import EnvelopeKey, Member, SecretBundle, SecretVersion
from .project_keys import RotationResult


class SecretStore(ABC):
    """
    Abstract secret store addressed by (project_id, environment).

    All methods are async to support both in-memory and remote backends.
    """

    @abstractmethod
    async def get_envelope(self, project_id: str, member_id: str) -> Optional[EnvelopeKey]:
        """Get a member's wrapped project key (dedicated key fetch)."""
        ...

    @abstractmethod
    async def put_envelope(self, project_id: str, envelope: EnvelopeKey) -> None:
        """Store or replace a member's wrapped project key."""
        ...

    @abstractmethod
    async def delete_envelope(self, project_id: str, member_id: str) -> None:
        """Remove a member's wrapped project key."""
        ...

    @abstractmethod
    async def list_environments(self, project_id: str) -> List[str]:
        """List environments that have a current bundle."""
        ...

    @abstractmethod
    async def get_current_bundle(self, project_id: str, environment: str) -> Optional[SecretBundle]:
        """Get the current bundle for an environment."""
        ...

    @abstractmethod
    async def put_current_bundle(
        self,
        project_id: str,
        environment: str,
        bundle: SecretBundle,
        created_by: Optional[str] = None,
    ) -> SecretVersion:
        """Replace the current bundle and append it to the version list."""
        ...

    @abstractmethod
    async def list_versions(self, project_id: str, environment: str) -> List[SecretVersion]:
        """List retained versions, oldest first."""
        ...

    @abstractmethod
    async def rollback(
        self, project_id: str, environment: str, version_id: str, created_by: Optional[str] = None
    ) -> SecretVersion:
        """Make a retained version's bundle current again."""
        ...

    @abstractmethod
    async def commit_rotation(self, project_id: str, result: RotationResult) -> None:
        """
        Atomically swap in a staged rotation's envelopes, bundles and versions.

        Raises:
            StaleRotationError: If a bundle or version list no longer matches
                result.snapshot; nothing is written
        """
        ...


class MemberRoster(ABC):
    """Abstract roster of project members."""

    @abstractmethod
    async def list_members(self, project_id: str) -> List[Member]:
        """List members with their public keys (or None)."""
        ...

    @abstractmethod
    async def add_member(self, project_id: str, member: Member) -> None:
        """Add or update a member."""
        ...

    @abstractmethod
    async def remove_member(self, project_id: str, member_id: str) -> None:
        """Remove a member."""
        ...


class InMemorySecretStore(SecretStore):
    """
    In-memory secret store.

    Uses asyncio.Lock for safe concurrent access. Versions are append-only;
    rotation replaces their ciphertext in place, keeping id and order.
    """

    def __init__(self) -> None:
        self._envelopes: Dict[str, Dict[str, EnvelopeKey]] = {}
        self._bundles: Dict[str, Dict[str, SecretBundle]] = {}
        self._versions: Dict[str, Dict[str, List[SecretVersion]]] = {}
        self._key_generations: Dict[str, int] = {}
        self._lock = asyncio.Lock()

    async def key_generation(self, project_id: str) -> int:
        """Number of committed rotations for a project."""
        async with self._lock:
            return self._key_generations.get(project_id, 0)

    async def get_envelope(self, project_id: str, member_id: str) -> Optional[EnvelopeKey]:
        async with self._lock:
            return self._envelopes.get(project_id, {}).get(member_id)

    async def put_envelope(self, project_id: str, envelope: EnvelopeKey) -> None:
        async with self._lock:
            self._envelopes.setdefault(project_id, {})[envelope.member_id] = envelope

    async def delete_envelope(self, project_id: str, member_id: str) -> None:
        async with self._lock:
            self._envelopes.get(project_id, {}).pop(member_id, None)

    async def list_environments(self, project_id: str) -> List[str]:
        async with self._lock:
            return list(self._bundles.get(project_id, {}))

    async def get_current_bundle(self, project_id: str, environment: str) -> Optional[SecretBundle]:
        async with self._lock:
            return self._bundles.get(project_id, {}).get(environment)

    async def put_current_bundle(
        self,
        project_id: str,
        environment: str,
        bundle: SecretBundle,
        created_by: Optional[str] = None,
    ) -> SecretVersion:
        async with self._lock:
            return self._append(project_id, environment, bundle, created_by)

    def _append(
        self, project_id: str, environment: str, bundle: SecretBundle, created_by: Optional[str]
    ) -> SecretVersion:
        history = self._versions.setdefault(project_id, {}).setdefault(environment, [])
        version = SecretVersion(
            version_id=str(uuid4()),
            environment=environment,
            version=(history[-1].version + 1) if history else 1,
            bundle=bundle,
            created_at=datetime.now(timezone.utc),
            created_by=created_by,
        )
        history.append(version)
        self._bundles.setdefault(project_id, {})[environment] = bundle
        return version

    async def list_versions(self, project_id: str, environment: str) -> List[SecretVersion]:
        async with self._lock:
            return list(self._versions.get(project_id, {}).get(environment, []))

    async def rollback(
        self, project_id: str, environment: str, version_id: str, created_by: Optional[str] = None
    ) -> SecretVersion:
        async with self._lock:
            history = self._versions.get(project_id, {}).get(environment, [])
            for version in history:
                if version.version_id == version_id:
                    return self._append(project_id, environment, version.bundle, created_by)
            raise NotFoundError(
                "Version not found",
                project_id=project_id,
                environment=environment,
                version_id=version_id,
            )

    def _check_snapshot(self, project_id: str, result: RotationResult) -> None:
        bundles = self._bundles.get(project_id, {})
        histories = self._versions.get(project_id, {})
        environments = set(bundles) | {env for env, history in histories.items() if history}
        if environments != set(result.snapshot):
            raise StaleRotationError(
                "Environments changed since rotation started", project_id=project_id
            )
        for environment, (digest, count) in result.snapshot.items():
            current = bundles.get(environment)
            current_digest = current.integrity_digest if current is not None else None
            if current_digest != digest or len(histories.get(environment, [])) != count:
                raise StaleRotationError(
                    "Secrets changed since rotation started",
                    project_id=project_id,
                    environment=environment,
                )

    async def commit_rotation(self, project_id: str, result: RotationResult) -> None:
        if not result.ready_to_commit:
            raise StorageError("Rotation result is not ready to commit", project_id=project_id)

        async with self._lock:
            bundles = self._bundles.get(project_id, {})
            histories = self._versions.get(project_id, {})

            # Validate everything before touching anything.
            self._check_snapshot(project_id, result)
            for environment in result.new_bundles:
                if environment not in bundles:
                    raise NotFoundError(
                        "Unknown environment in rotation",
                        project_id=project_id,
                        environment=environment,
                    )
            positions: Dict[str, tuple] = {}
            for version in result.new_versions:
                history = histories.get(version.environment, [])
                index = next(
                    (i for i, v in enumerate(history) if v.version_id == version.version_id),
                    None,
                )
                if index is None:
                    raise NotFoundError(
                        "Unknown version in rotation",
                        project_id=project_id,
                        environment=version.environment,
                        version_id=version.version_id,
                    )
                positions[version.version_id] = (version.environment, index)

            self._envelopes[project_id] = {e.member_id: e for e in result.new_envelopes}
            bundles.update(result.new_bundles)
            for version in result.new_versions:
                environment, index = positions[version.version_id]
                histories[environment][index] = version
            self._key_generations[project_id] = self._key_generations.get(project_id, 0) + 1


class InMemoryMemberRoster(MemberRoster):
    """In-memory roster. Members keep insertion order."""

    def __init__(self) -> None:
        self._members: Dict[str, Dict[str, Member]] = {}
        self._lock = asyncio.Lock()

    async def list_members(self, project_id: str) -> List[Member]:
        async with self._lock:
            return list(self._members.get(project_id, {}).values())

    async def add_member(self, project_id: str, member: Member) -> None:
        async with self._lock:
            self._members.setdefault(project_id, {})[member.member_id] = member

    async def remove_member(self, project_id: str, member_id: str) -> None:
        async with self._lock:
            self._members.get(project_id, {}).pop(member_id, None)
