"""
Vault Errors — Typed failures raised by the vault core.

Every error carries an ``exit_code`` so the command line can map failures
to process exit status without inspecting messages.
"""
from pathlib import Path
from typing import Union


class VaultError(Exception):
    """Base class for all vault failures."""

    exit_code: int = 1


class AuthenticationFailure(VaultError):
    """A record did not authenticate under the derived key.

    Raised for a wrong master passphrase and for tampered data alike;
    the two cases are deliberately indistinguishable.
    """

    exit_code = 3

    def __init__(self, message: str = "wrong master key or corrupted data"):
        super().__init__(message)


class CorruptStore(VaultError):
    """The store file exists but cannot be parsed."""

    exit_code = 4

    def __init__(self, path: Union[str, Path], reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"store {self.path} is corrupt: {reason}")


class TokenNotFound(VaultError, KeyError):
    """The requested token name is not in the store."""

    exit_code = 1

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"token '{name}' not found")

    def __str__(self) -> str:
        return self.args[0]


class StoreIOError(VaultError, OSError):
    """Reading or writing a vault file failed at the OS level."""

    exit_code = 5

    def __init__(self, path: Union[str, Path], error: OSError):
        self.path = Path(path)
        self.error = error
        reason = error.strerror or str(error)
        super().__init__(f"{self.path}: {reason}")

    def __str__(self) -> str:
        return self.args[0]


class ConcurrentModification(VaultError):
    """The store file changed on disk between load and save."""

    exit_code = 6

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        super().__init__(
            f"store {self.path} was modified by another process; "
            "re-run the command"
        )


class VaultLocked(VaultError):
    """A key-requiring operation ran before the vault was unlocked."""


class ConfigurationError(VaultError):
    """Vault settings from the environment are invalid."""

    exit_code = 2
