"""Per-user global configuration (external tool roots), persisted as YAML."""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

import yaml
from pydantic import BaseModel, ValidationError, field_validator

from cpx.exceptions import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "config.yaml"


class GlobalConfig(BaseModel):
    vcpkg_root: str = ""
    bcr_root: str = ""  # Bazel Central Registry checkout

    @field_validator("vcpkg_root", "bcr_root", mode="before")
    @classmethod
    def _none_to_empty(cls, v: object) -> object:
        return "" if v is None else v


CONFIG_KEYS: tuple[str, ...] = tuple(GlobalConfig.model_fields)


def default_config_dir() -> Path:
    """~/.config/cpx on Unix, %APPDATA%/cpx on Windows; CPX_CONFIG_DIR overrides both."""
    override = os.environ.get("CPX_CONFIG_DIR")
    if override:
        return Path(override)
    if sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata) / "cpx"
        return Path.home() / "AppData" / "Roaming" / "cpx"
    return Path.home() / ".config" / "cpx"


class ConfigStore:
    """Read/write access to the global config file.

    The file is created with empty values on first read.
    """

    def __init__(self, config_dir: str | Path | None = None) -> None:
        self.config_dir = Path(config_dir) if config_dir else default_config_dir()

    @property
    def path(self) -> Path:
        return self.config_dir / CONFIG_FILE_NAME

    @property
    def dockerfiles_dir(self) -> Path:
        return self.config_dir / "dockerfiles"

    def load(self) -> GlobalConfig:
        if not self.path.exists():
            logger.info("Creating default config at %s", self.path)
            config = GlobalConfig()
            self.save(config)
            return config

        try:
            data = yaml.safe_load(self.path.read_text()) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"failed to parse {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"failed to parse {self.path}: expected a mapping")
        try:
            return GlobalConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"invalid config in {self.path}: {e}") from e

    def save(self, config: GlobalConfig) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.path.write_text(yaml.safe_dump(config.model_dump(), sort_keys=False))

    def get(self, key: str) -> str:
        self._check_key(key)
        return getattr(self.load(), key)

    def set(self, key: str, value: str) -> None:
        self._check_key(key)
        config = self.load()
        setattr(config, key, value)
        self.save(config)
        logger.info("Set %s=%s", key, value)

    @staticmethod
    def _check_key(key: str) -> None:
        if key not in CONFIG_KEYS:
            raise ConfigError(
                f"unknown config key: {key} (known keys: {', '.join(CONFIG_KEYS)})"
            )
