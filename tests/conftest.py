"""Shared fixtures: every test gets its own vault, key file and home directory."""

import pytest

from secret_agent.vault import Vault

TEST_PASSPHRASE = "test-passphrase"


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Point HOME, XDG and the vault at tmp_path; never touch the real keychain."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    monkeypatch.setenv("SECRET_AGENT_VAULT_PATH", str(tmp_path / "vault.db"))
    monkeypatch.setenv("SECRET_AGENT_PASSPHRASE", TEST_PASSPHRASE)
    monkeypatch.delenv("SECRET_AGENT_USE_FILE", raising=False)
    monkeypatch.delenv("SECRET_AGENT_CONFIG", raising=False)
    return tmp_path


@pytest.fixture
def vault_path(tmp_path):
    return tmp_path / "vault.db"


@pytest.fixture
def vault(vault_path):
    v = Vault.open(vault_path, master_key=TEST_PASSPHRASE)
    yield v
    v.close()
