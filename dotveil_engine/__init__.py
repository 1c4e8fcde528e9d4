"""
DotVeil Engine

Zero-knowledge key management and secret encryption for team environment
variables. The storage service only ever sees ciphertexts and wrapped keys.

Overview
--------
- **Identity keypairs** (RSA-4096, OAEP) per user, protected at rest by a
  scrypt-derived passphrase key
- **Project keys** (AES-256-GCM) per project, shared with each member as an
  envelope wrapped under that member's public key
- **Secret bundles** per environment, with a SHA-256 digest over the
  ciphertext for transport integrity
- **Rotation** re-encrypts every bundle and retained version and re-wraps the
  key for every member, staged for an atomic commit

Quick Start
-----------
```python
import asyncio
from dotveil_engine import (
    InMemoryCredentialVault,
    InMemoryMemberRoster,
    InMemorySecretStore,
    Member,
    ProjectSecretsService,
)

async def main():
    service = ProjectSecretsService(
        InMemorySecretStore(), InMemoryMemberRoster(), InMemoryCredentialVault()
    )
    keypair, protected = service.setup_identity("correct-horse-battery")
    alice = Member("alice", keypair.public_key)

    await service.push("proj", "dev", {"API_KEY": "s3cret"}, alice)
    secrets = await service.pull("proj", "dev", alice)

    result = await service.rotate("proj", alice)
    print(result.summary())

asyncio.run(main())
```

Modules
-------
- `crypto`: AES-256-GCM primitives and text encodings
- `kdf`: scrypt passphrase key derivation
- `asymmetric`: RSA-OAEP key wrapping
- `identity`: keypair generation, protection and recovery
- `project_keys`: project key engine and rotation
- `rotation`: rotation against the secret store
- `storage`: secret store and roster interfaces
- `credentials`: local credential vault
- `service`: end-to-end workflows
"""

__version__ = "0.1.0"

# =============================================================================
# Crypto Exports
# =============================================================================

from .crypto import (
    AES_256_KEY_SIZE,
    NONCE_SIZE,
    TAG_SIZE,
    AesGcmCipher,
    EncryptedData,
    SecureKey,
    content_digest,
    generate_random_bytes,
)
from .kdf import KeyDerivation
from .asymmetric import RsaKeyWrap, generate_rsa_keypair

# =============================================================================
# Error Exports
# =============================================================================

from .errors import (
    AuthenticationError,
    ConfigError,
    CredentialError,
    EngineError,
    IntegrityError,
    InvalidStateError,
    KeyDerivationError,
    NotFoundError,
    StaleRotationError,
    PassphrasePolicyError,
    RotationError,
    RotationItemError,
    SerializationError,
    StorageError,
    WrapError,
)

# =============================================================================
# Configuration Exports
# =============================================================================

from .config import EngineConfig, get_config, project_key_from_env, set_config

# =============================================================================
# Model Exports
# =============================================================================

from .models import (
    EnvelopeKey,
    Keypair,
    Member,
    ProtectedPrivateKey,
    SecretBundle,
    SecretVersion,
)
from .secret_set import (
    deserialize_secrets,
    expand_secrets,
    parse_env_text,
    render_env_text,
    serialize_secrets,
)

# =============================================================================
# Engine Exports
# =============================================================================

from .identity import IdentityVault
from .project_keys import (
    EstablishedKey,
    ProjectKeyEngine,
    ProjectLifecycle,
    ProjectState,
    RotationResult,
    ShareResult,
)
from .rotation import RotationCoordinator

# =============================================================================
# Collaborator Exports
# =============================================================================

from .storage import (
    InMemoryMemberRoster,
    InMemorySecretStore,
    MemberRoster,
    SecretStore,
)
from .credentials import (
    CredentialVault,
    EncryptedFileCredentialVault,
    InMemoryCredentialVault,
    KeyringCredentialVault,
    open_credential_vault,
)
from .service import ProjectSecretsService

# =============================================================================
# Public API
# =============================================================================

__all__ = [
    # Version
    "__version__",
    # Crypto
    "AES_256_KEY_SIZE",
    "NONCE_SIZE",
    "TAG_SIZE",
    "AesGcmCipher",
    "EncryptedData",
    "SecureKey",
    "content_digest",
    "generate_random_bytes",
    "KeyDerivation",
    "RsaKeyWrap",
    "generate_rsa_keypair",
    # Errors
    "EngineError",
    "KeyDerivationError",
    "AuthenticationError",
    "IntegrityError",
    "WrapError",
    "RotationItemError",
    "RotationError",
    "PassphrasePolicyError",
    "SerializationError",
    "ConfigError",
    "StorageError",
    "NotFoundError",
    "StaleRotationError",
    "InvalidStateError",
    "CredentialError",
    # Configuration
    "EngineConfig",
    "get_config",
    "set_config",
    "project_key_from_env",
    # Models
    "Keypair",
    "ProtectedPrivateKey",
    "EnvelopeKey",
    "SecretBundle",
    "SecretVersion",
    "Member",
    "serialize_secrets",
    "deserialize_secrets",
    "parse_env_text",
    "render_env_text",
    "expand_secrets",
    # Engine
    "IdentityVault",
    "ProjectKeyEngine",
    "ProjectLifecycle",
    "ProjectState",
    "EstablishedKey",
    "ShareResult",
    "RotationResult",
    "RotationCoordinator",
    # Collaborators
    "SecretStore",
    "MemberRoster",
    "InMemorySecretStore",
    "InMemoryMemberRoster",
    "CredentialVault",
    "InMemoryCredentialVault",
    "EncryptedFileCredentialVault",
    "KeyringCredentialVault",
    "open_credential_vault",
    "ProjectSecretsService",
]
