"""
Store Migration — Upgrade un-salted v1 stores to the salted v2 format.

All tokens are decrypted with the legacy SHA-256 key and re-encrypted
with a Scrypt key under a fresh per-store salt, then written back in a
single atomic save. The master passphrase itself does not change.

The operation is all-or-nothing: if any record fails to decrypt, nothing
is written. Stores already at v2 are left untouched.

Security Note:
    Plaintext exists in memory only during re-encryption.
    Never log plaintext or ciphertext values.
"""
import logging
from pathlib import Path
from typing import Optional, Union

from .config import VaultConfig
from .crypto import decrypt, derive_key, encrypt, new_kdf_params
from . import store as store_ops

logger = logging.getLogger("tokenvault.vault")


def migrate_store(
    passphrase: str,
    path: Union[str, Path, None] = None,
    config: Optional[VaultConfig] = None,
) -> dict:
    """Re-encrypt a v1 store under a salted key.

    Args:
        passphrase: Current master passphrase.
        path: Store file; defaults to the configured store.
        config: Supplies the Scrypt cost parameters.

    Returns:
        Stats dict with keys: total, migrated, skipped.

    Raises:
        AuthenticationFailure: If the passphrase does not open every
            record. The store file is not modified.
    """
    config = config or VaultConfig.from_env()
    path = Path(path) if path is not None else config.store_path
    stats = {"total": 0, "migrated": 0, "skipped": 0}

    current = store_ops.load(path)
    stats["total"] = len(current)
    if current.kdf is not None:
        logger.info("Store %s is already at format v%d", path, current.version)
        stats["skipped"] = len(current)
        return stats
    if current.empty:
        # nothing sealed yet; the next unlock picks the configured format
        logger.info("Store %s has no tokens, nothing to migrate", path)
        return stats

    logger.info(
        "Starting store migration v%d -> v%d for %s (%d token(s))",
        store_ops.LEGACY_VERSION, store_ops.FORMAT_VERSION, path, len(current),
    )
    old_key = derive_key(passphrase)
    params = new_kdf_params(n=config.scrypt_n, r=config.scrypt_r, p=config.scrypt_p)
    new_key = derive_key(passphrase, params)

    upgraded = store_ops.TokenStore(kdf=params, digest=current.digest)
    for name in store_ops.names(current):
        plaintext = decrypt(old_key, current.records[name])
        store_ops.upsert(upgraded, name, encrypt(new_key, plaintext))
        stats["migrated"] += 1

    store_ops.save(upgraded, path)
    logger.info("Store migration complete: %s", stats)
    return stats
