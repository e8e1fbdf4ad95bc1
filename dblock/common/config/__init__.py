from .models import AppConfig, LockConfig, LoggingConfig
from pathlib import Path
from typing import Optional
import tomllib

from dblock.errors import ConfigError


def _deep_update(base: dict, updates: dict) -> dict:
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _deep_update(base[key], value)
        else:
            base[key] = value
    return base


def _map_toml_config(data: dict) -> dict:
    mapped: dict = {}

    for key in ["name", "node_id"]:
        if key in data:
            mapped[key] = data[key]

    lock_cfg = data.get("lock", {})
    for key in ["uri", "key", "ttl_ms", "token", "meta", "table", "token_size", "debug"]:
        if key in lock_cfg:
            mapped.setdefault("lock", {})
            mapped["lock"][key] = lock_cfg[key]

    logging_cfg = data.get("logging", {})
    if "level" in logging_cfg:
        mapped.setdefault("logging", {})
        mapped["logging"]["level"] = str(logging_cfg["level"]).upper()
    if "format" in logging_cfg:
        mapped.setdefault("logging", {})
        mapped["logging"]["format"] = str(logging_cfg["format"]).lower()

    return mapped


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Build the config from env defaults, overlaid with a TOML file if present."""
    if config_path is None:
        candidate = Path.cwd() / "dblock.toml"
        config_path = candidate if candidate.exists() else None
    if not config_path:
        return AppConfig()

    try:
        with open(config_path, "rb") as f:
            raw = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Failed to load {config_path}", e)

    base = AppConfig().model_dump()
    merged = _deep_update(base, _map_toml_config(raw))
    return AppConfig.model_validate(merged)


settings = load_config()

def get_settings() -> AppConfig:
    return settings

def update_settings(new_settings: AppConfig):
    global settings
    settings = new_settings
