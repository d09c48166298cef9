"""
Token Store — Persistence of encrypted records in a single JSON file.

Provides the store operations:
- ``load(path)`` — parse the store file (absent file → empty store)
- ``save(store, path)`` — atomic replace: temp file, fsync, rename
- ``upsert`` / ``remove`` / ``names`` — in-memory mutations and listing

File formats:
- v1: ``{name: {"nonce": b64, "ciphertext": b64}}`` (un-salted key)
- v2: ``{"version": 2, "kdf": {...}, "tokens": {name: {...}}}``

The store never encrypts or decrypts; it only moves records around.

Security Note:
    Never log record contents. Only log names, counts and paths.
"""
import os
import hashlib
import logging
import tempfile
from pathlib import Path
from typing import Any, Optional, Union

import orjson

from .crypto import EncryptedRecord, KdfParams
from .exceptions import ConcurrentModification, CorruptStore, StoreIOError

logger = logging.getLogger("tokenvault.vault")

FORMAT_VERSION = 2
LEGACY_VERSION = 1

PathLike = Union[str, Path]


class TokenStore:
    """Name → EncryptedRecord mapping loaded from one store file.

    ``digest`` is the SHA-256 of the file bytes the store was loaded from
    (None when the file did not exist); ``save`` uses it to detect writes
    made by other processes in the meantime.
    """

    def __init__(
        self,
        records: Optional[dict[str, EncryptedRecord]] = None,
        kdf: Optional[KdfParams] = None,
        digest: Optional[str] = None,
    ):
        self.records: dict[str, EncryptedRecord] = dict(records or {})
        self.kdf = kdf
        self.digest = digest

    def __repr__(self) -> str:
        return (
            f"<TokenStore v{self.version} names={names(self)!r}>"
        )

    def __len__(self) -> int:
        return len(self.records)

    def __contains__(self, name: object) -> bool:
        return name in self.records

    def get(self, name: str) -> Optional[EncryptedRecord]:
        return self.records.get(name)

    @property
    def version(self) -> int:
        return LEGACY_VERSION if self.kdf is None else FORMAT_VERSION

    @property
    def empty(self) -> bool:
        return not self.records


def _digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _read_digest(path: Path) -> Optional[str]:
    try:
        return _digest(path.read_bytes())
    except FileNotFoundError:
        return None


# ---------------------------------------------------------------------------
# (De)serialization
# ---------------------------------------------------------------------------

def _parse(data: Any, path: Path, digest: str) -> TokenStore:
    if not isinstance(data, dict):
        raise CorruptStore(path, "top level is not an object")
    kdf = None
    tokens = data
    version = data.get("version")
    if isinstance(version, int) and not isinstance(version, bool):
        if version != FORMAT_VERSION:
            raise CorruptStore(path, f"unsupported format version {version}")
        tokens = data.get("tokens")
        if not isinstance(tokens, dict):
            raise CorruptStore(path, "'tokens' is not an object")
        try:
            kdf = KdfParams.from_json_dict(data.get("kdf"))
        except ValueError as err:
            raise CorruptStore(path, f"invalid kdf parameters ({err})") from err
    records: dict[str, EncryptedRecord] = {}
    for name, value in tokens.items():
        try:
            records[name] = EncryptedRecord.from_json_dict(value)
        except ValueError as err:
            raise CorruptStore(path, f"invalid record '{name}' ({err})") from err
    return TokenStore(records=records, kdf=kdf, digest=digest)


def dumps(store: TokenStore) -> bytes:
    """Serialize a store to the bytes written on disk."""
    tokens = {
        name: record.to_json_dict() for name, record in store.records.items()
    }
    if store.kdf is None:
        document: dict[str, Any] = tokens
    else:
        document = {
            "version": FORMAT_VERSION,
            "kdf": store.kdf.to_json_dict(),
            "tokens": tokens,
        }
    return orjson.dumps(
        document, option=orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS,
    )


# ---------------------------------------------------------------------------
# File operations
# ---------------------------------------------------------------------------

def load(path: PathLike) -> TokenStore:
    """Read and parse the store file.

    Args:
        path: Store file location.

    Returns:
        Parsed TokenStore; an empty one when the file does not exist.

    Raises:
        CorruptStore: If the file is not a valid store document.
        StoreIOError: If the file exists but cannot be read.
    """
    path = Path(path)
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        logger.debug("No store at %s, starting empty", path)
        return TokenStore()
    except OSError as err:
        raise StoreIOError(path, err) from err
    try:
        data = orjson.loads(raw)
    except orjson.JSONDecodeError as err:
        raise CorruptStore(path, "not valid JSON") from err
    store = _parse(data, path, _digest(raw))
    logger.debug(
        "Loaded store %s (v%d): %d token(s)", path, store.version, len(store),
    )
    return store


def _fsync_directory(directory: Path) -> None:
    if os.name == "nt":
        return
    fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def save(store: TokenStore, path: PathLike, *, force: bool = False) -> None:
    """Atomically write the store to ``path``.

    The document is written to a temporary file (mode 0600) in the same
    directory, synced, then renamed over ``path``. A crash at any point
    leaves either the old or the new file, never a partial one.

    Args:
        store: Store to persist.
        path: Store file location.
        force: Skip the concurrent modification check.

    Raises:
        ConcurrentModification: If the file changed since ``store`` was
            loaded and ``force`` is not set.
        StoreIOError: If writing fails.
    """
    path = Path(path)
    payload = dumps(store)
    directory = path.parent
    try:
        directory.mkdir(mode=0o700, parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.name}.", suffix=".tmp", dir=directory,
        )
    except OSError as err:
        raise StoreIOError(path, err) from err
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(payload)
            fh.flush()
            os.fsync(fh.fileno())
        if not force and _read_digest(path) != store.digest:
            raise ConcurrentModification(path)
        os.replace(tmp_name, path)
    except BaseException as exc:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        if isinstance(exc, OSError) and not isinstance(exc, StoreIOError):
            raise StoreIOError(path, exc) from exc
        raise
    try:
        _fsync_directory(directory)
    except OSError as err:
        logger.warning("Could not sync directory %s: %s", directory, err)
    store.digest = _digest(payload)
    logger.debug("Saved store %s: %d token(s)", path, len(store))


# ---------------------------------------------------------------------------
# In-memory mutations
# ---------------------------------------------------------------------------

def upsert(store: TokenStore, name: str, record: EncryptedRecord) -> None:
    """Insert or replace the record stored under ``name``.

    Raises:
        ValueError: If ``name`` is empty or not a string.
    """
    if not isinstance(name, str) or not name:
        raise ValueError("Token name must be a non-empty string")
    store.records[name] = record


def remove(store: TokenStore, name: str) -> bool:
    """Delete ``name`` from the store.

    Returns:
        True if the name existed.
    """
    return store.records.pop(name, None) is not None


def names(store: TokenStore) -> list[str]:
    """Stored token names, sorted. Needs no key."""
    return sorted(store.records)
