"""Tests for the global config store."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from cpx.config.store import ConfigStore, GlobalConfig, default_config_dir
from cpx.exceptions import ConfigError


class TestConfigStore:
    def test_load_creates_default_file(self, tmp_path: Path):
        store = ConfigStore(tmp_path / "cfg")
        config = store.load()
        assert config == GlobalConfig()
        assert store.path.exists()
        assert yaml.safe_load(store.path.read_text()) == {"vcpkg_root": "", "bcr_root": ""}

    def test_set_then_get(self, tmp_path: Path):
        store = ConfigStore(tmp_path)
        store.set("vcpkg_root", "/opt/vcpkg")
        assert store.get("vcpkg_root") == "/opt/vcpkg"
        assert ConfigStore(tmp_path).load().vcpkg_root == "/opt/vcpkg"

    def test_unknown_key(self, tmp_path: Path):
        store = ConfigStore(tmp_path)
        with pytest.raises(ConfigError, match="unknown config key"):
            store.get("compiler")
        with pytest.raises(ConfigError):
            store.set("compiler", "gcc")

    def test_null_values_become_empty(self, tmp_path: Path):
        store = ConfigStore(tmp_path)
        store.path.write_text("vcpkg_root: null\nbcr_root: /bcr\n")
        config = store.load()
        assert config.vcpkg_root == ""
        assert config.bcr_root == "/bcr"

    def test_malformed_yaml(self, tmp_path: Path):
        store = ConfigStore(tmp_path)
        store.path.write_text("vcpkg_root: [unclosed\n")
        with pytest.raises(ConfigError, match="failed to parse"):
            store.load()

    def test_non_mapping(self, tmp_path: Path):
        store = ConfigStore(tmp_path)
        store.path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError):
            store.load()

    def test_dockerfiles_dir(self, tmp_path: Path):
        assert ConfigStore(tmp_path).dockerfiles_dir == tmp_path / "dockerfiles"


class TestDefaultConfigDir:
    def test_env_override(self, tmp_path: Path):
        with patch.dict("os.environ", {"CPX_CONFIG_DIR": str(tmp_path)}):
            assert default_config_dir() == tmp_path

    def test_unix_default(self, monkeypatch, tmp_path: Path):
        monkeypatch.delenv("CPX_CONFIG_DIR", raising=False)
        monkeypatch.setattr("sys.platform", "linux")
        monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_path))
        assert default_config_dir() == tmp_path / ".config" / "cpx"

    def test_windows_appdata(self, monkeypatch, tmp_path: Path):
        monkeypatch.delenv("CPX_CONFIG_DIR", raising=False)
        monkeypatch.setattr("sys.platform", "win32")
        monkeypatch.setenv("APPDATA", str(tmp_path))
        assert default_config_dir() == tmp_path / "cpx"
