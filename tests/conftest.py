"""
Pytest configuration and fixtures for engine tests.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List

import pytest

from dotveil_engine import (
    EngineConfig,
    InMemoryCredentialVault,
    InMemoryMemberRoster,
    InMemorySecretStore,
    Keypair,
    Member,
    ProjectKeyEngine,
    SecureKey,
    SecretBundle,
    SecretVersion,
    generate_rsa_keypair,
    set_config,
)


@pytest.fixture
def config(tmp_path: Path) -> EngineConfig:
    """Cheap scrypt parameters so tests stay fast. RSA stays at 4096 bits."""
    return EngineConfig(scrypt_n=2**10, credentials_dir=tmp_path / "dotveil")


@pytest.fixture(autouse=True)
def default_config(config: EngineConfig):
    """Install the test config as the process-wide default."""
    set_config(config)
    yield config
    set_config(None)


@pytest.fixture(scope="session")
def keypairs() -> Dict[str, Keypair]:
    """RSA-4096 keypairs for members a, b, c and an outsider (generated once)."""
    result = {}
    for name in ("a", "b", "c", "outsider"):
        public_pem, private_pem = generate_rsa_keypair(EngineConfig())
        result[name] = Keypair(public_key=public_pem, private_key=private_pem)
    return result


@pytest.fixture
def members(keypairs: Dict[str, Keypair]) -> List[Member]:
    """Members a, b and c with public keys."""
    return [Member(member_id=name, public_key=keypairs[name].public_key) for name in ("a", "b", "c")]


@pytest.fixture
def member_without_key() -> Member:
    """Member d, who never completed identity setup."""
    return Member(member_id="d", public_key=None)


@pytest.fixture
def engine(config: EngineConfig) -> ProjectKeyEngine:
    return ProjectKeyEngine(config)


@pytest.fixture
def project_key() -> SecureKey:
    return SecureKey.generate()


@pytest.fixture
def secret_history(engine: ProjectKeyEngine, project_key: SecureKey):
    """
    Environments dev and prod, each with 3 retained versions.

    Returns (bundles, versions, plaintexts) where plaintexts maps version_id
    (or environment for current bundles) to the secret set.
    """
    bundles: Dict[str, SecretBundle] = {}
    versions: List[SecretVersion] = []
    plaintexts: Dict[str, Dict[str, str]] = {}
    for environment in ("dev", "prod"):
        for number in (1, 2, 3):
            secrets = {"ENV": environment, "REVISION": str(number)}
            version = SecretVersion(
                version_id=f"{environment}-v{number}",
                environment=environment,
                version=number,
                bundle=engine.encrypt_secrets(secrets, project_key),
            )
            versions.append(version)
            plaintexts[version.version_id] = secrets
        bundles[environment] = engine.encrypt_secrets(plaintexts[f"{environment}-v3"], project_key)
        plaintexts[environment] = plaintexts[f"{environment}-v3"]
    return bundles, versions, plaintexts


@pytest.fixture
def store() -> InMemorySecretStore:
    """Create an in-memory secret store for testing."""
    return InMemorySecretStore()


@pytest.fixture
def roster() -> InMemoryMemberRoster:
    """Create an in-memory member roster for testing."""
    return InMemoryMemberRoster()


@pytest.fixture
def credentials() -> InMemoryCredentialVault:
    return InMemoryCredentialVault()
