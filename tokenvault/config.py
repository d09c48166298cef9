"""
Vault Configuration — File locations and key-derivation settings.

Reads settings from environment variables:
    TOKENVAULT_HOME = <data directory>
    TOKENVAULT_STORE = <store file path>
    TOKENVAULT_ENV_FILE = <environment side-channel file path>
    TOKENVAULT_KDF = scrypt | sha256
    TOKENVAULT_SCRYPT_N = <power of two>

Security Note:
    The master passphrase is never read from configuration.
"""
import os
import sys
import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .crypto import SCRYPT_MAX_N, SCRYPT_N, SCRYPT_P, SCRYPT_R, KdfParams, new_kdf_params
from .exceptions import ConfigurationError

logger = logging.getLogger("tokenvault.vault")

APP_NAME = "tokenvault"
STORE_FILENAME = "tokens.json"
ENV_FILENAME = "env.sh"


def default_data_dir() -> Path:
    """Return the platform data directory for the vault.

    Returns:
        ``$TOKENVAULT_HOME`` if set, otherwise the per-user local data
        directory of the current platform.
    """
    override = os.environ.get("TOKENVAULT_HOME")
    if override:
        return Path(override).expanduser()
    if os.name == "nt":
        base = os.environ.get("LOCALAPPDATA")
        if base:
            return Path(base) / APP_NAME
        return Path.home() / "AppData" / "Local" / APP_NAME
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / APP_NAME
    base = os.environ.get("XDG_DATA_HOME")
    if base:
        return Path(base) / APP_NAME
    return Path.home() / ".local" / "share" / APP_NAME


def default_env_path(home: Path) -> Path:
    """Environment file goes to the per-user runtime dir when there is one."""
    runtime = os.environ.get("XDG_RUNTIME_DIR")
    if runtime:
        return Path(runtime) / APP_NAME / ENV_FILENAME
    return home / ENV_FILENAME


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    home: Path
    store_path: Optional[Path] = None
    env_path: Optional[Path] = None
    kdf: str = Field(default="scrypt")
    scrypt_n: int = Field(default=SCRYPT_N, ge=2, le=SCRYPT_MAX_N)
    scrypt_r: int = Field(default=SCRYPT_R, ge=1, le=64)
    scrypt_p: int = Field(default=SCRYPT_P, ge=1, le=64)

    @field_validator("kdf")
    @classmethod
    def validate_kdf(cls, v: str) -> str:
        """Validate key derivation is supported."""
        v = v.lower()
        if v not in ("scrypt", "sha256"):
            raise ValueError(f"Unsupported key derivation: {v}")
        return v

    @field_validator("scrypt_n")
    @classmethod
    def validate_scrypt_n(cls, v: int) -> int:
        if v & (v - 1):
            raise ValueError(f"scrypt_n must be a power of two, got {v}")
        return v

    @model_validator(mode="after")
    def fill_paths(self) -> "VaultConfig":
        """Derive file locations from ``home`` when not given explicitly."""
        if self.store_path is None:
            self.store_path = self.home / STORE_FILENAME
        if self.env_path is None:
            self.env_path = default_env_path(self.home)
        return self

    def new_kdf_params(self) -> Optional[KdfParams]:
        """Derivation parameters for a store created under this config.

        Returns:
            Fresh salted parameters, or None when the legacy un-salted
            derivation is configured.
        """
        if self.kdf == "sha256":
            return None
        return new_kdf_params(n=self.scrypt_n, r=self.scrypt_r, p=self.scrypt_p)

    @classmethod
    def from_env(cls, home: Optional[Path] = None) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Args:
            home: Data directory override (takes precedence over env).

        Returns:
            Populated VaultConfig instance.

        Raises:
            ConfigurationError: If a TOKENVAULT_* variable is invalid.
        """
        values: dict = {"home": home or default_data_dir()}
        store = os.environ.get("TOKENVAULT_STORE")
        if store:
            values["store_path"] = Path(store).expanduser()
        env_file = os.environ.get("TOKENVAULT_ENV_FILE")
        if env_file:
            values["env_path"] = Path(env_file).expanduser()
        values["kdf"] = os.environ.get("TOKENVAULT_KDF", "scrypt")
        scrypt_n = os.environ.get("TOKENVAULT_SCRYPT_N")
        if scrypt_n:
            values["scrypt_n"] = scrypt_n
        try:
            config = cls(**values)
        except ValidationError as err:
            problems = "; ".join(
                f"{'.'.join(str(loc) for loc in e['loc'])}: {e['msg']}"
                for e in err.errors()
            )
            raise ConfigurationError(f"invalid configuration ({problems})") from err
        logger.debug(
            "Vault config: store=%s env=%s kdf=%s",
            config.store_path, config.env_path, config.kdf,
        )
        return config
