"""
TokenVault — Passphrase-protected token storage on top of one store file.

Provides the public API used by the command line:
- ``names()`` — list token names (no passphrase needed)
- ``unlock(passphrase)`` — derive the master key for this store
- ``add(name, value)`` — encrypt and persist a token
- ``get(name)`` — decrypt and return a token
- ``delete(name)`` — remove a token
- ``decrypt_all()`` — name → value mapping for shell population

Every mutation is flushed to disk before the call returns.

Security Note:
    Never log token values or the passphrase. Only log names and
    operations. Decrypted values exist in process memory during use.
"""
import logging
from pathlib import Path
from typing import Optional, Union

from .config import VaultConfig
from .crypto import decrypt, derive_key, encrypt
from .exceptions import CorruptStore, TokenNotFound, VaultLocked
from . import store as store_ops

logger = logging.getLogger("tokenvault.vault")


class TokenVault:
    """Encrypted token vault bound to one store file.

    The store is loaded when the vault is created; the master key is only
    derived on ``unlock`` since listing names does not need it.
    """

    def __init__(
        self,
        path: Union[str, Path, None] = None,
        config: Optional[VaultConfig] = None,
    ):
        self._config = config or VaultConfig.from_env()
        self._path = Path(path) if path is not None else self._config.store_path
        self._store = store_ops.load(self._path)
        self._key: Optional[bytes] = None

    @classmethod
    def open(
        cls,
        passphrase: str,
        path: Union[str, Path, None] = None,
        config: Optional[VaultConfig] = None,
    ) -> "TokenVault":
        """Load the store at ``path`` and unlock it."""
        vault = cls(path=path, config=config)
        vault.unlock(passphrase)
        return vault

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def path(self) -> Path:
        return self._path

    @property
    def store(self) -> store_ops.TokenStore:
        return self._store

    @property
    def unlocked(self) -> bool:
        return self._key is not None

    # ------------------------------------------------------------------
    # Key handling
    # ------------------------------------------------------------------

    def unlock(self, passphrase: str) -> None:
        """Derive the master key for this store.

        A store without tokens adopts the configured derivation, so new
        stores are created salted unless the legacy one is configured.
        No check is made here: a wrong passphrase surfaces as an
        AuthenticationFailure on the first decryption.
        """
        if self._store.empty and self._store.kdf is None:
            self._store.kdf = self._config.new_kdf_params()
        self._key = derive_key(passphrase, self._store.kdf)
        logger.debug(
            "Vault unlocked: store=%s format=v%d", self._path, self._store.version,
        )

    def _require_key(self) -> bytes:
        if self._key is None:
            raise VaultLocked("vault is locked; unlock it with the master key")
        return self._key

    def verify_key(self, name: Optional[str] = None) -> None:
        """Prove the current key against a stored token.

        Args:
            name: Token to check against; any token when omitted or absent.

        Raises:
            AuthenticationFailure: If the key does not open the record.
        """
        key = self._require_key()
        record = self._store.get(name) if name is not None else None
        if record is None and not self._store.empty:
            record = self._store.get(store_ops.names(self._store)[0])
        if record is not None:
            decrypt(key, record)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def names(self) -> list[str]:
        return store_ops.names(self._store)

    def exists(self, name: str) -> bool:
        return name in self._store

    def add(self, name: str, value: str) -> bool:
        """Encrypt and persist a token, replacing any previous value.

        The key is proven against an existing record first, so a mistyped
        passphrase can neither overwrite a token nor mix keys in one store.

        Args:
            name: Token name (case-sensitive).
            value: Token value.

        Returns:
            True if an existing token was replaced.

        Raises:
            AuthenticationFailure: If the key does not match the store.
        """
        key = self._require_key()
        self.verify_key(name)
        replaced = name in self._store
        store_ops.upsert(self._store, name, encrypt(key, value.encode("utf-8")))
        store_ops.save(self._store, self._path)
        logger.info(
            "Vault %s: name=%s", "replace" if replaced else "add", name,
        )
        return replaced

    def get(self, name: str) -> str:
        """Decrypt and return a token.

        Raises:
            TokenNotFound: If ``name`` is not stored.
            AuthenticationFailure: If the record does not open.
        """
        key = self._require_key()
        record = self._store.get(name)
        if record is None:
            raise TokenNotFound(name)
        plaintext = decrypt(key, record)
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as err:
            raise CorruptStore(
                self._path, f"token '{name}' is not valid UTF-8",
            ) from err

    def delete(self, name: str) -> bool:
        """Remove a token. Deleting an absent name is a no-op.

        Returns:
            True if the token existed.
        """
        removed = store_ops.remove(self._store, name)
        if removed:
            store_ops.save(self._store, self._path)
            logger.info("Vault delete: name=%s", name)
        return removed

    def decrypt_all(self) -> dict[str, str]:
        """Decrypt every token. Fails closed on the first bad record."""
        return {name: self.get(name) for name in self.names()}
