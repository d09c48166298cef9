"""Tokenvault — Encrypted personal access token storage.

Security Note (Threat Model):
    Tokens are decrypted in process memory while a command runs, and
    briefly on disk when exported through the environment file. A
    compromised host process or a memory dump can expose them.
    This is an accepted limitation; the vault protects data at rest only.
"""

from .crypto import EncryptedRecord, KdfParams, decrypt, derive_key, encrypt
from .store import TokenStore, load, names, remove, save, upsert
from .vault import TokenVault
from .config import VaultConfig
from .migration import migrate_store
from .exceptions import (
    AuthenticationFailure,
    ConcurrentModification,
    ConfigurationError,
    CorruptStore,
    StoreIOError,
    TokenNotFound,
    VaultError,
    VaultLocked,
)
from .version import __version__

__all__ = [
    "EncryptedRecord",
    "KdfParams",
    "derive_key",
    "encrypt",
    "decrypt",
    "TokenStore",
    "load",
    "save",
    "upsert",
    "remove",
    "names",
    "TokenVault",
    "VaultConfig",
    "migrate_store",
    "AuthenticationFailure",
    "ConcurrentModification",
    "ConfigurationError",
    "CorruptStore",
    "StoreIOError",
    "TokenNotFound",
    "VaultError",
    "VaultLocked",
    "__version__",
]
