import os
import socket
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


def default_node_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


class LockConfig(BaseSettings):
    uri: str = "redis://localhost:6379/0"
    key: str = "testkey"
    ttl_ms: int = 3600 * 1000
    token: Optional[str] = None
    meta: str = ""
    table: str = "shedlock"
    token_size: int = 16
    debug: bool = False

    model_config = SettingsConfigDict(env_prefix="DBLOCK_")

class LoggingConfig(BaseSettings):
    level: str = "INFO"
    format: str = "text"

    model_config = SettingsConfigDict(env_prefix="LOG_")

class AppConfig(BaseSettings):
    name: str = "dblock"
    node_id: str = default_node_id()

    lock: LockConfig = LockConfig()
    logging: LoggingConfig = LoggingConfig()

    model_config = SettingsConfigDict(env_file=".env", env_nested_delimiter="__")
