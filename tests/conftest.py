import pytest

from tokenvault.config import VaultConfig


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep tests away from the real data directory and settings."""
    for name in (
        "TOKENVAULT_HOME",
        "TOKENVAULT_STORE",
        "TOKENVAULT_ENV_FILE",
        "TOKENVAULT_KDF",
        "TOKENVAULT_SCRYPT_N",
        "XDG_RUNTIME_DIR",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg"))


@pytest.fixture
def config(tmp_path):
    """Vault config rooted in a temp dir with a cheap scrypt cost."""
    return VaultConfig(home=tmp_path / "vault", scrypt_n=16)


@pytest.fixture
def store_path(config):
    return config.store_path
