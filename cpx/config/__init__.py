from cpx.config.store import ConfigStore, GlobalConfig

__all__ = ["ConfigStore", "GlobalConfig"]
