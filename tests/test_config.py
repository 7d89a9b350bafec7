"""
Tests for settings loading.
"""

from pathlib import Path

import pytest

from opencore_usb.config import (
    CONFIG_ENV_VAR,
    DEFAULT_MOUNT_ROOT,
    DEFAULT_PAYLOAD_DIR,
    Settings,
    config_path,
    load_settings,
)
from opencore_usb.errors import PreconditionError


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    """Empty working directory with no config env var set."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    return tmp_path


def write_config(path: Path, text: str) -> Path:
    path.write_text(text)
    return path


class TestConfigPath:
    def test_no_config(self, workdir):
        assert config_path() is None
        assert load_settings() == Settings()

    def test_file_in_working_directory(self, workdir):
        write_config(workdir / "opencore-usb.yaml", "settle_timeout: 10\n")
        assert load_settings().settle_timeout == 10.0

    def test_env_var_wins(self, workdir, monkeypatch):
        write_config(workdir / "opencore-usb.yaml", "settle_timeout: 10\n")
        other = write_config(workdir / "other.yaml", "settle_timeout: 60\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(other))

        assert config_path() == other
        assert load_settings().settle_timeout == 60.0

    def test_env_var_pointing_nowhere(self, workdir, monkeypatch):
        monkeypatch.setenv(CONFIG_ENV_VAR, str(workdir / "missing.yaml"))
        with pytest.raises(PreconditionError, match="Config file not found"):
            config_path()


class TestLoadSettings:
    """Test YAML parsing and validation."""

    def test_defaults(self):
        settings = Settings()
        assert settings.payload_dir == DEFAULT_PAYLOAD_DIR
        assert settings.mount_root == DEFAULT_MOUNT_ROOT
        assert settings.backup_root is None

    def test_all_keys(self, tmp_path):
        path = write_config(
            tmp_path / "config.yaml",
            "payload_dir: /srv/opencore/EFI\n"
            "settle_timeout: 45\n"
            "poll_interval: 0.5\n"
            "mount_root: /media\n"
            "backup_root: /var/backups/efi\n",
        )
        assert load_settings(path) == Settings(
            payload_dir=Path("/srv/opencore/EFI"),
            settle_timeout=45.0,
            poll_interval=0.5,
            mount_root=Path("/media"),
            backup_root=Path("/var/backups/efi"),
        )

    def test_empty_file(self, tmp_path):
        path = write_config(tmp_path / "config.yaml", "")
        assert load_settings(path) == Settings()

    def test_null_backup_root(self, tmp_path):
        path = write_config(tmp_path / "config.yaml", "backup_root: null\n")
        assert load_settings(path).backup_root is None

    def test_unknown_key(self, tmp_path):
        path = write_config(tmp_path / "config.yaml", "label: MYUSB\n")
        with pytest.raises(PreconditionError, match="Unknown config keys.*label"):
            load_settings(path)

    def test_not_a_mapping(self, tmp_path):
        path = write_config(tmp_path / "config.yaml", "- settle_timeout\n")
        with pytest.raises(PreconditionError, match="mapping"):
            load_settings(path)

    @pytest.mark.parametrize(
        "text",
        ["settle_timeout: soon\n", "poll_interval: 0\n", "settle_timeout: -5\n", "poll_interval: true\n"],
    )
    def test_bad_number(self, tmp_path, text):
        path = write_config(tmp_path / "config.yaml", text)
        with pytest.raises(PreconditionError, match="positive number"):
            load_settings(path)

    def test_bad_path(self, tmp_path):
        path = write_config(tmp_path / "config.yaml", "mount_root: 5\n")
        with pytest.raises(PreconditionError, match="path string"):
            load_settings(path)

    def test_invalid_yaml(self, tmp_path):
        path = write_config(tmp_path / "config.yaml", "settle_timeout: [1,\n")
        with pytest.raises(PreconditionError, match="Could not read config file"):
            load_settings(path)
