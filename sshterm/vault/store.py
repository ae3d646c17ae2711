"""
Credential storage.

Secrets are keyed by "username@host". Private keys live in the same
namespace with a "key-" prefix so they never collide with passwords.
One password and one key per (host, username); saving again overwrites.
"""

from __future__ import annotations
import logging
import threading
from enum import Enum
from typing import Optional, Protocol, runtime_checkable

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

logger = logging.getLogger(__name__)

SERVICE_NAME = "sshterm"
KEY_PREFIX = "key-"


class CredentialKind(Enum):
    PASSWORD = "password"
    PRIVATE_KEY = "private_key"


def account_name(kind: CredentialKind, host: str, username: str) -> str:
    """Store account for a secret: 'user@host' or 'key-user@host'."""
    account = f"{username}@{host}"
    if kind is CredentialKind.PRIVATE_KEY:
        return KEY_PREFIX + account
    return account


@runtime_checkable
class CredentialStore(Protocol):
    """The narrow contract the connection layer relies on."""

    def save(self, kind: CredentialKind, host: str, username: str, secret: str) -> bool:
        ...

    def fetch(self, kind: CredentialKind, host: str, username: str) -> Optional[str]:
        ...

    def delete(self, kind: CredentialKind, host: str, username: str) -> bool:
        ...


class KeyringCredentialStore:
    """
    Credential store backed by the system keyring
    (macOS Keychain, Secret Service, Windows Credential Locker).
    """

    def __init__(self, service_name: str = SERVICE_NAME):
        self.service_name = service_name

    @property
    def backend_name(self) -> str:
        try:
            return keyring.get_keyring().__class__.__name__
        except Exception:
            return "unavailable"

    def save(self, kind: CredentialKind, host: str, username: str, secret: str) -> bool:
        account = account_name(kind, host, username)
        try:
            keyring.set_password(self.service_name, account, secret)
        except KeyringError as e:
            logger.error(f"Failed to store {kind.value} for {account}: {e}")
            return False
        logger.info(f"Stored {kind.value} for {account} via {self.backend_name}")
        return True

    def fetch(self, kind: CredentialKind, host: str, username: str) -> Optional[str]:
        account = account_name(kind, host, username)
        try:
            return keyring.get_password(self.service_name, account)
        except KeyringError as e:
            logger.warning(f"Failed to read {kind.value} for {account}: {e}")
            return None

    def delete(self, kind: CredentialKind, host: str, username: str) -> bool:
        account = account_name(kind, host, username)
        try:
            keyring.delete_password(self.service_name, account)
        except PasswordDeleteError:
            return False
        except KeyringError as e:
            logger.error(f"Failed to delete {kind.value} for {account}: {e}")
            return False
        logger.info(f"Deleted {kind.value} for {account}")
        return True


class MemoryCredentialStore:
    """In-process credential store. Nothing is persisted."""

    def __init__(self):
        self._secrets: dict[str, str] = {}
        self._lock = threading.Lock()

    def save(self, kind: CredentialKind, host: str, username: str, secret: str) -> bool:
        with self._lock:
            self._secrets[account_name(kind, host, username)] = secret
        return True

    def fetch(self, kind: CredentialKind, host: str, username: str) -> Optional[str]:
        with self._lock:
            return self._secrets.get(account_name(kind, host, username))

    def delete(self, kind: CredentialKind, host: str, username: str) -> bool:
        with self._lock:
            return self._secrets.pop(account_name(kind, host, username), None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._secrets)
