"""
Vault Crypto Core — Key derivation, token encryption/decryption and records.

Two key derivations are supported:
- Legacy (format v1): SHA-256(passphrase) → 32-byte key, no salt
- Salted (format v2): Scrypt(passphrase, per-store salt) → 32-byte key

Tokens are sealed with AES-256-GCM: [nonce 12B] + [encrypted_payload + tag 16B].

Security Note:
    Never log plaintext, ciphertext or key material.
    Nonces are random 96-bit; collision probability negligible under normal usage.
"""
import os
import base64
import logging
from typing import Any, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from pydantic import BaseModel, field_validator

from .exceptions import AuthenticationFailure

logger = logging.getLogger("tokenvault.vault")

NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16  # GCM tag
KEY_LENGTH = 32  # AES-256
SALT_SIZE = 16

SCRYPT_N = 2 ** 14
SCRYPT_R = 8
SCRYPT_P = 1
SCRYPT_MAX_N = 2 ** 20


def b64encode(data: bytes) -> str:
    """Standard, padded base64 as text."""
    return base64.b64encode(data).decode("ascii")


def b64decode(text: Any) -> bytes:
    """Strict inverse of :func:`b64encode`.

    Raises:
        ValueError: If ``text`` is not a string of valid padded base64.
    """
    if not isinstance(text, str):
        raise ValueError(f"expected base64 string, got {type(text).__name__}")
    return base64.b64decode(text.encode("ascii"), validate=True)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class EncryptedRecord(BaseModel):
    """One sealed token value.

    Records are produced by :func:`encrypt` (or parsed back from a store
    file) and never modified afterwards; an update replaces the record.
    """

    nonce: bytes
    ciphertext: bytes

    model_config = {"frozen": True}

    @field_validator("nonce")
    @classmethod
    def validate_nonce(cls, v: bytes) -> bytes:
        if len(v) != NONCE_SIZE:
            raise ValueError(
                f"nonce must be {NONCE_SIZE} bytes, got {len(v)}"
            )
        return v

    @field_validator("ciphertext")
    @classmethod
    def validate_ciphertext(cls, v: bytes) -> bytes:
        if len(v) < TAG_SIZE:
            raise ValueError(
                f"ciphertext too short: {len(v)} bytes (minimum {TAG_SIZE})"
            )
        return v

    def to_json_dict(self) -> dict[str, str]:
        return {
            "nonce": b64encode(self.nonce),
            "ciphertext": b64encode(self.ciphertext),
        }

    @classmethod
    def from_json_dict(cls, data: Any) -> "EncryptedRecord":
        """Build a record from its stored form.

        Raises:
            ValueError: If fields are missing, not base64 or of wrong length.
        """
        if not isinstance(data, dict):
            raise ValueError("record must be an object")
        try:
            nonce = b64decode(data["nonce"])
            ciphertext = b64decode(data["ciphertext"])
        except KeyError as err:
            raise ValueError(f"record is missing field {err}") from err
        return cls(nonce=nonce, ciphertext=ciphertext)


class KdfParams(BaseModel):
    """Per-store key derivation parameters. Not secret."""

    name: str = "scrypt"
    salt: bytes
    n: int = SCRYPT_N
    r: int = SCRYPT_R
    p: int = SCRYPT_P

    model_config = {"frozen": True}

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if v != "scrypt":
            raise ValueError(f"Unsupported key derivation: {v}")
        return v

    @field_validator("salt")
    @classmethod
    def validate_salt(cls, v: bytes) -> bytes:
        if len(v) < SALT_SIZE:
            raise ValueError(f"salt must be at least {SALT_SIZE} bytes")
        return v

    @field_validator("n")
    @classmethod
    def validate_n(cls, v: int) -> int:
        if v < 2 or v > SCRYPT_MAX_N or v & (v - 1):
            raise ValueError(
                f"scrypt n must be a power of two between 2 and {SCRYPT_MAX_N}"
            )
        return v

    @field_validator("r", "p")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1 or v > 64:
            raise ValueError("scrypt r and p must be between 1 and 64")
        return v

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "salt": b64encode(self.salt),
            "n": self.n,
            "r": self.r,
            "p": self.p,
        }

    @classmethod
    def from_json_dict(cls, data: Any) -> "KdfParams":
        if not isinstance(data, dict):
            raise ValueError("kdf parameters must be an object")
        fields = dict(data)
        fields["salt"] = b64decode(fields.get("salt"))
        return cls(**fields)


def new_kdf_params(
    n: int = SCRYPT_N, r: int = SCRYPT_R, p: int = SCRYPT_P
) -> KdfParams:
    """Generate salted derivation parameters for a new store."""
    return KdfParams(salt=os.urandom(SALT_SIZE), n=n, r=r, p=p)


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(passphrase: str, params: Optional[KdfParams] = None) -> bytes:
    """Derive the 32-byte master key from a passphrase.

    Without ``params`` the legacy derivation is used: a single SHA-256 of
    the UTF-8 passphrase. Stores written in format v1 depend on it, so it
    must not change.

    Args:
        passphrase: Master passphrase as typed by the user.
        params: Salted derivation parameters of a v2 store.

    Returns:
        32-byte key.
    """
    secret = passphrase.encode("utf-8")
    if params is None:
        digest = hashes.Hash(hashes.SHA256())
        digest.update(secret)
        return digest.finalize()
    kdf = Scrypt(
        salt=params.salt,
        length=KEY_LENGTH,
        n=params.n,
        r=params.r,
        p=params.p,
    )
    return kdf.derive(secret)


# ---------------------------------------------------------------------------
# Token encryption
# ---------------------------------------------------------------------------

def _cipher(key: bytes) -> AESGCM:
    if len(key) != KEY_LENGTH:
        raise ValueError(
            f"key must be exactly {KEY_LENGTH} bytes, got {len(key)}"
        )
    return AESGCM(key)


def encrypt(key: bytes, plaintext: bytes) -> EncryptedRecord:
    """Seal a token value under ``key`` with a fresh random nonce.

    Args:
        key: 32-byte master key.
        plaintext: Token value.

    Returns:
        New EncryptedRecord; ciphertext is ``len(plaintext) + 16`` bytes.
    """
    cipher = _cipher(key)
    nonce = os.urandom(NONCE_SIZE)
    ct = cipher.encrypt(nonce, plaintext, None)
    return EncryptedRecord(nonce=nonce, ciphertext=ct)


def decrypt(key: bytes, record: EncryptedRecord) -> bytes:
    """Open a sealed token value.

    Args:
        key: 32-byte master key.
        record: Record previously produced by :func:`encrypt`.

    Returns:
        Decrypted plaintext bytes.

    Raises:
        AuthenticationFailure: If the tag does not verify (wrong key,
            corrupted ciphertext or tampered nonce).
    """
    cipher = _cipher(key)
    try:
        return cipher.decrypt(record.nonce, record.ciphertext, None)
    except InvalidTag as err:
        raise AuthenticationFailure() from err
