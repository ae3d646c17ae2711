"""
Credential storage for passwords and private keys.
"""

from .store import (
    CredentialKind,
    CredentialStore,
    KeyringCredentialStore,
    MemoryCredentialStore,
    account_name,
)

__all__ = [
    "CredentialKind",
    "CredentialStore",
    "KeyringCredentialStore",
    "MemoryCredentialStore",
    "account_name",
]
