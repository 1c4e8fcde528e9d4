"""
Local credential vault.

Holds the access token and the unwrapped private key between process
invocations, per user. The keyring implementation stores them in the system
keychain; where no keychain is available, open_credential_vault() falls back
to the file implementation, which encrypts its contents with Fernet and keeps
both the data file and its key file at mode 0600.
"""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

import keyring
from cryptography.fernet import Fernet, InvalidToken
from keyring.backend import KeyringBackend
from keyring.errors import KeyringError, PasswordDeleteError

from .config import EngineConfig, get_config
from .errors import CredentialError

logger = logging.getLogger("dotveil.credentials")

ACCESS_TOKEN = "access_token"
PRIVATE_KEY = "private_key"
SERVICE_NAME = "dotveil"


class CredentialVault(ABC):
    """get/set/delete for opaque credentials, scoped to one user."""

    @abstractmethod
    def get(self, name: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, name: str, value: str) -> None:
        ...

    @abstractmethod
    def delete(self, name: str) -> None:
        ...

    @abstractmethod
    def clear(self) -> None:
        """Remove every stored credential (logout)."""
        ...

    def get_access_token(self) -> Optional[str]:
        return self.get(ACCESS_TOKEN)

    def set_access_token(self, token: str) -> None:
        self.set(ACCESS_TOKEN, token)

    def get_private_key(self) -> Optional[str]:
        return self.get(PRIVATE_KEY)

    def set_private_key(self, private_key: str) -> None:
        self.set(PRIVATE_KEY, private_key)

    def is_logged_in(self) -> bool:
        return self.get_access_token() is not None


class InMemoryCredentialVault(CredentialVault):
    """Process-local vault for tests."""

    def __init__(self) -> None:
        self._values: Dict[str, str] = {}

    def get(self, name: str) -> Optional[str]:
        return self._values.get(name)

    def set(self, name: str, value: str) -> None:
        self._values[name] = value

    def delete(self, name: str) -> None:
        self._values.pop(name, None)

    def clear(self) -> None:
        self._values.clear()


class EncryptedFileCredentialVault(CredentialVault):
    """
    Fernet-encrypted JSON file under a per-user directory.

    Layout:
        <dir>/credentials.key   Fernet key (0600)
        <dir>/credentials.enc   encrypted JSON object (0600)
    """

    def __init__(self, directory: Path, user: str = "default") -> None:
        self._dir = Path(directory) / user
        self._key_path = self._dir / "credentials.key"
        self._data_path = self._dir / "credentials.enc"

    @staticmethod
    def _write_private(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.chmod(path, 0o600)

    def _fernet(self) -> Fernet:
        if not self._key_path.exists():
            self._write_private(self._key_path, Fernet.generate_key())
            logger.debug("Created credential key at %s", self._key_path)
        try:
            return Fernet(self._key_path.read_bytes().strip())
        except (OSError, ValueError) as e:
            raise CredentialError(f"Credential key unreadable: {e}") from None

    def _load(self) -> Dict[str, str]:
        if not self._data_path.exists():
            return {}
        try:
            plaintext = self._fernet().decrypt(self._data_path.read_bytes())
            data = json.loads(plaintext)
        except InvalidToken:
            raise CredentialError("Credential file does not match its key") from None
        except (OSError, ValueError) as e:
            raise CredentialError(f"Credential file unreadable: {e}") from None
        if not isinstance(data, dict):
            raise CredentialError("Credential file is malformed")
        return data

    def _save(self, data: Dict[str, str]) -> None:
        token = self._fernet().encrypt(json.dumps(data).encode("utf-8"))
        self._write_private(self._data_path, token)

    def get(self, name: str) -> Optional[str]:
        return self._load().get(name)

    def set(self, name: str, value: str) -> None:
        data = self._load()
        data[name] = value
        self._save(data)

    def delete(self, name: str) -> None:
        data = self._load()
        if data.pop(name, None) is not None:
            self._save(data)

    def clear(self) -> None:
        for path in (self._data_path, self._key_path):
            if path.exists():
                path.unlink()


class KeyringCredentialVault(CredentialVault):
    """
    Credentials in the system keychain via keyring.

    Entries live under one service name, with usernames "<user>:<name>".
    Values longer than CHUNK_SIZE (an RSA-4096 private key PEM, for one)
    exceed what some keychains accept, so they are split into
    "<name>_0".."<name>_{n-1}" with the count stored in "<name>_count".
    A name without a count entry is read as a single entry.
    """

    CHUNK_SIZE = 2000

    def __init__(
        self,
        service: str = SERVICE_NAME,
        user: str = "default",
        backend: Optional[KeyringBackend] = None,
    ) -> None:
        self._service = service
        self._user = user
        self._backend = backend or keyring.get_keyring()

    def _username(self, entry: str) -> str:
        return f"{self._user}:{entry}"

    def _read(self, entry: str) -> Optional[str]:
        try:
            return self._backend.get_password(self._service, self._username(entry))
        except KeyringError as e:
            raise CredentialError(f"Keychain read failed: {e}") from None

    def _write(self, entry: str, value: str) -> None:
        try:
            self._backend.set_password(self._service, self._username(entry), value)
        except KeyringError as e:
            raise CredentialError(f"Keychain write failed: {e}") from None

    def _remove(self, entry: str) -> None:
        try:
            self._backend.delete_password(self._service, self._username(entry))
        except PasswordDeleteError:
            pass
        except KeyringError as e:
            raise CredentialError(f"Keychain delete failed: {e}") from None

    def _chunk_count(self, name: str) -> Optional[int]:
        raw = self._read(f"{name}_count")
        if raw is None:
            return None
        try:
            count = int(raw)
        except ValueError:
            raise CredentialError(f"Keychain entry {name}_count is malformed") from None
        if count < 0:
            raise CredentialError(f"Keychain entry {name}_count is malformed")
        return count

    def get(self, name: str) -> Optional[str]:
        count = self._chunk_count(name)
        if count is None:
            return self._read(name)
        chunks = []
        for i in range(count):
            chunk = self._read(f"{name}_{i}")
            if chunk is None:
                raise CredentialError(f"Keychain entry {name} is missing chunk {i} of {count}")
            chunks.append(chunk)
        return "".join(chunks)

    def set(self, name: str, value: str) -> None:
        self.delete(name)
        if len(value) <= self.CHUNK_SIZE:
            self._write(name, value)
            return
        chunks = [value[i:i + self.CHUNK_SIZE] for i in range(0, len(value), self.CHUNK_SIZE)]
        for i, chunk in enumerate(chunks):
            self._write(f"{name}_{i}", chunk)
        # count is written last; an interrupted write leaves no count
        self._write(f"{name}_count", str(len(chunks)))
        logger.debug("Stored %s in %d keychain chunks", name, len(chunks))

    def delete(self, name: str) -> None:
        count = self._chunk_count(name)
        if count is not None:
            for i in range(count):
                self._remove(f"{name}_{i}")
            self._remove(f"{name}_count")
        self._remove(name)

    def clear(self) -> None:
        for name in (ACCESS_TOKEN, PRIVATE_KEY):
            self.delete(name)


def open_credential_vault(
    user: str = "default",
    config: Optional[EngineConfig] = None,
    backend: Optional[KeyringBackend] = None,
) -> CredentialVault:
    """
    Open the best available vault for a user.

    Uses the system keychain when a working keyring backend is present, and
    falls back to EncryptedFileCredentialVault under config.credentials_dir
    otherwise.
    """
    backend = backend or keyring.get_keyring()
    try:
        backend.get_password(SERVICE_NAME, f"{user}:{ACCESS_TOKEN}")
    except KeyringError as e:
        cfg = config or get_config()
        logger.info("System keychain unavailable (%s); using %s", e, cfg.credentials_dir)
        return EncryptedFileCredentialVault(cfg.credentials_dir, user)
    return KeyringCredentialVault(SERVICE_NAME, user, backend)
