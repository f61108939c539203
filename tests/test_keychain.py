"""Tests for master key resolution."""

import os
import stat
from pathlib import Path

import pytest

from secret_agent import keychain
from secret_agent.errors import KeySourceError
from secret_agent.keychain import (
    CredentialStoreError,
    KeyEnvironment,
    KeyTier,
    NullStore,
    read_or_create_key_file,
    resolve_master_key,
    write_key_file,
)

posix_only = pytest.mark.skipif(os.name != "posix", reason="POSIX permission bits")


class FakeStore:
    """In-memory credential store that records every call."""

    def __init__(self, key=None, fail_get=False, fail_set=False):
        self.key = key
        self.fail_get = fail_get
        self.fail_set = fail_set
        self.calls = []

    def get(self, service, key):
        self.calls.append("get")
        if self.fail_get:
            raise CredentialStoreError("locked")
        return self.key

    def set(self, service, key, secret):
        self.calls.append("set")
        if self.fail_set:
            raise CredentialStoreError("read-only")
        self.key = secret

    def delete(self, service, key):
        self.calls.append("delete")
        self.key = None


def no_prompt(message):
    raise AssertionError("prompt should not be reached")


def make_env(tmp_path, passphrase=None, use_file=False, interactive=True, key_file=None):
    return KeyEnvironment(
        passphrase=passphrase,
        use_file=use_file,
        key_file=key_file or tmp_path / "keys" / "master.key",
        interactive=interactive,
    )


class TestEnvironmentTier:
    """SECRET_AGENT_PASSPHRASE short-circuits the chain."""

    def test_passphrase_used_verbatim(self, tmp_path):
        """The override is returned as-is and nothing else is consulted."""
        store = FakeStore(key="from-keychain")
        resolved = resolve_master_key(make_env(tmp_path, passphrase="override"), store, no_prompt)

        assert resolved.key == "override"
        assert resolved.tier is KeyTier.ENV
        assert store.calls == []
        assert not (tmp_path / "keys" / "master.key").exists()

    def test_repr_hides_key(self, tmp_path):
        """repr() shows the tier, never the key."""
        resolved = resolve_master_key(make_env(tmp_path, passphrase="override"), FakeStore(), no_prompt)
        assert "override" not in repr(resolved)


class TestFileTier:
    """Key file storage."""

    @posix_only
    def test_use_file_creates_private_file(self, tmp_path):
        """USE_FILE creates a 32-char key in a mode 600 file."""
        store = FakeStore(key="from-keychain")
        env = make_env(tmp_path, use_file=True)

        resolved = resolve_master_key(env, store, no_prompt)

        assert resolved.tier is KeyTier.FILE
        assert len(resolved.key) == 32
        assert resolved.key.isalnum()
        assert stat.S_IMODE(env.key_file.stat().st_mode) == 0o600
        assert env.key_file.read_text() == resolved.key
        assert store.calls == []

    def test_use_file_is_stable(self, tmp_path):
        """The second resolution reads the key the first one wrote."""
        env = make_env(tmp_path, use_file=True)
        first = resolve_master_key(env, FakeStore(), no_prompt)
        second = resolve_master_key(env, FakeStore(), no_prompt)
        assert first.key == second.key

    def test_headless_keychain_hit(self, tmp_path):
        """A headless session still uses the key stored in the keychain."""
        store = FakeStore(key="from-keychain")
        env = make_env(tmp_path, interactive=False)

        resolved = resolve_master_key(env, store, no_prompt)

        assert resolved.key == "from-keychain"
        assert resolved.tier is KeyTier.KEYCHAIN
        assert not env.key_file.exists()

    def test_headless_unavailable_keychain_uses_file(self, tmp_path):
        """Without a keychain a headless session falls back to the key file."""
        env = make_env(tmp_path, interactive=False)
        resolved = resolve_master_key(env, NullStore(), no_prompt)

        assert resolved.tier is KeyTier.FILE
        assert env.key_file.read_text() == resolved.key

    def test_trailing_newline_stripped(self, tmp_path):
        """A hand-written key file may end with a newline."""
        env = make_env(tmp_path, use_file=True)
        env.key_file.parent.mkdir()
        env.key_file.write_text("file-key\n")
        env.key_file.chmod(0o600)

        assert resolve_master_key(env, FakeStore(), no_prompt).key == "file-key"

    def test_empty_file_rejected(self, tmp_path):
        """An empty key file is an error."""
        env = make_env(tmp_path, use_file=True)
        env.key_file.parent.mkdir()
        env.key_file.write_text("")
        env.key_file.chmod(0o600)

        with pytest.raises(KeySourceError, match="empty"):
            resolve_master_key(env, FakeStore(), no_prompt)

    @posix_only
    @pytest.mark.parametrize("mode", [0o640, 0o604, 0o644, 0o660])
    def test_insecure_permissions_rejected(self, tmp_path, mode):
        """A readable-by-others key file is an error, not a fallthrough."""
        env = make_env(tmp_path, use_file=True)
        env.key_file.parent.mkdir()
        env.key_file.write_text("valid-looking-key")
        env.key_file.chmod(mode)

        with pytest.raises(KeySourceError, match="insecure permissions"):
            resolve_master_key(env, FakeStore(), no_prompt)

    @posix_only
    def test_insecure_permissions_checked_on_every_read(self, tmp_path):
        """Loosening permissions after creation is caught on the next read."""
        env = make_env(tmp_path, use_file=True)
        resolve_master_key(env, FakeStore(), no_prompt)

        env.key_file.chmod(0o644)
        with pytest.raises(KeySourceError):
            resolve_master_key(env, FakeStore(), no_prompt)

    @posix_only
    def test_insecure_file_rejected_on_keychain_fallback(self, tmp_path):
        """The permission check also applies when the keychain is locked."""
        env = make_env(tmp_path)
        env.key_file.parent.mkdir()
        env.key_file.write_text("valid-looking-key")
        env.key_file.chmod(0o644)

        with pytest.raises(KeySourceError):
            resolve_master_key(env, FakeStore(fail_get=True), no_prompt)

    def test_headless_with_unusable_file(self, tmp_path):
        """Headless with no keychain and no usable key file is an error."""
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        env = make_env(tmp_path, interactive=False, key_file=blocker / "master.key")

        with pytest.raises(KeySourceError):
            resolve_master_key(env, NullStore(), no_prompt)


class TestKeyFileCreation:
    """Creating the key file."""

    def test_write_never_overwrites(self, tmp_path):
        """An existing key file is left untouched."""
        path = tmp_path / "master.key"
        write_key_file(path, "first")

        with pytest.raises(FileExistsError):
            write_key_file(path, "second")
        assert path.read_text() == "first"

    def test_no_temp_files_left(self, tmp_path):
        """Only the key file remains after writing."""
        key_dir = tmp_path / "keys"
        key_dir.mkdir()
        write_key_file(key_dir / "master.key", "k")
        assert [p.name for p in key_dir.iterdir()] == ["master.key"]

    def test_never_visible_empty(self, tmp_path, monkeypatch):
        """The key is on disk before the file appears under its name."""
        path = tmp_path / "master.key"
        seen = []
        real_link = os.link

        def link(src, dst):
            seen.append(Path(src).read_text())
            real_link(src, dst)

        monkeypatch.setattr(keychain.os, "link", link)
        write_key_file(path, "full-key")

        assert seen == ["full-key"]
        assert path.read_text() == "full-key"

    def test_lost_race_uses_existing_key(self, tmp_path, monkeypatch):
        """If another process creates the file first, its key wins."""
        path = tmp_path / "master.key"

        def racing_write(target, key):
            real_write(target, "other-process-key")
            raise FileExistsError(target)

        real_write = keychain.write_key_file
        monkeypatch.setattr(keychain, "write_key_file", racing_write)

        assert read_or_create_key_file(path, "my-key") == "other-process-key"


class TestKeychainTier:
    """OS credential store."""

    def test_existing_key(self, tmp_path):
        """A stored key is returned after a single lookup."""
        store = FakeStore(key="from-keychain")
        resolved = resolve_master_key(make_env(tmp_path), store, no_prompt)

        assert resolved.key == "from-keychain"
        assert resolved.tier is KeyTier.KEYCHAIN
        assert store.calls == ["get"]

    def test_first_run_generates_and_stores(self, tmp_path):
        """A miss generates a key and stores it back."""
        store = FakeStore()
        env = make_env(tmp_path)
        resolved = resolve_master_key(env, store, no_prompt)

        assert resolved.tier is KeyTier.KEYCHAIN
        assert len(resolved.key) == 32
        assert resolved.key.isalnum()
        assert store.key == resolved.key
        # Not duplicated into the file tier
        assert not env.key_file.exists()

    def test_store_back_failure_writes_through_to_file(self, tmp_path):
        """A key the keychain refused is saved to the key file instead."""
        store = FakeStore(fail_set=True)
        env = make_env(tmp_path)
        resolved = resolve_master_key(env, store, no_prompt)

        assert resolved.tier is KeyTier.FILE
        assert store.calls == ["get", "set"]
        assert env.key_file.read_text() == resolved.key

    def test_unavailable_keychain_falls_back_to_file(self, tmp_path):
        """Without a keychain the key file gives the same key every time."""
        env = make_env(tmp_path)
        first = resolve_master_key(env, NullStore(), no_prompt)
        second = resolve_master_key(env, NullStore(), no_prompt)

        assert first.tier is KeyTier.FILE
        assert first.key == second.key


class TestPromptTier:
    """Interactive last resort."""

    def _unusable_env(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        return make_env(tmp_path, key_file=blocker / "master.key")

    def test_prompt_when_file_unusable(self, tmp_path):
        """The prompt is asked once when nothing else works."""
        prompts = []

        def prompt(message):
            prompts.append(message)
            return "typed-passphrase"

        resolved = resolve_master_key(self._unusable_env(tmp_path), NullStore(), prompt)

        assert resolved.key == "typed-passphrase"
        assert resolved.tier is KeyTier.PROMPT
        assert len(prompts) == 1

    def test_empty_passphrase_rejected(self, tmp_path):
        """An empty answer is an error."""
        with pytest.raises(KeySourceError, match="empty"):
            resolve_master_key(self._unusable_env(tmp_path), NullStore(), lambda message: "")


class TestKeyEnvironment:
    """Snapshotting the process environment."""

    def test_from_environ(self, monkeypatch, tmp_path):
        """Toggles are read and SSH sessions count as headless."""
        environ = {
            "SECRET_AGENT_PASSPHRASE": "pw",
            "SECRET_AGENT_USE_FILE": "1",
            "SSH_CONNECTION": "10.0.0.1 22 10.0.0.2 50000",
        }
        env = KeyEnvironment.from_environ(environ)

        assert env.passphrase == "pw"
        assert env.use_file is True
        assert env.interactive is False
        assert env.key_file.name == "master.key"

    def test_empty_passphrase_is_unset(self):
        """An empty SECRET_AGENT_PASSPHRASE does not count as an override."""
        env = KeyEnvironment.from_environ({"SECRET_AGENT_PASSPHRASE": ""})
        assert env.passphrase is None

    @pytest.mark.parametrize("value", ["0", "false", "No", ""])
    def test_use_file_false_values(self, value):
        """Falsy toggle values leave file storage off."""
        env = KeyEnvironment.from_environ({"SECRET_AGENT_USE_FILE": value})
        assert env.use_file is False

    def test_get_or_create_master_key_uses_environment(self):
        """The real environment is used by default."""
        # conftest sets SECRET_AGENT_PASSPHRASE
        assert keychain.get_or_create_master_key() == "test-passphrase"

    def test_get_or_create_master_key_file(self, monkeypatch, tmp_path):
        """USE_FILE puts the key under the home directory."""
        monkeypatch.delenv("SECRET_AGENT_PASSPHRASE")
        monkeypatch.setenv("SECRET_AGENT_USE_FILE", "1")

        key = keychain.get_or_create_master_key()

        key_file = tmp_path / "home" / ".secret-agent" / "master.key"
        assert key_file.read_text() == key


class TestDeleteMasterKey:
    """Resetting the keychain entry."""

    def test_delete(self):
        """The stored key is removed."""
        store = FakeStore(key="k")
        keychain.delete_master_key(store)
        assert store.key is None
