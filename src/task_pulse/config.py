"""Configuration loading from environment variables."""

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class Config:
    db_path: Path = field(default_factory=lambda: Path.home() / ".task_pulse" / "tp.db")
    log_level: str = "INFO"
    blocked_after_days: int = 7
    host: str = "127.0.0.1"
    port: int = 8788

    @classmethod
    def from_env(cls) -> "Config":
        config = cls()

        if db := os.environ.get("TP_DB_PATH"):
            config.db_path = Path(db)

        if level := os.environ.get("TP_LOG_LEVEL"):
            config.log_level = level.upper()

        if days := os.environ.get("TP_BLOCKED_AFTER_DAYS"):
            config.blocked_after_days = int(days)

        if host := os.environ.get("TP_HOST"):
            config.host = host

        if port := os.environ.get("TP_PORT"):
            config.port = int(port)

        return config


def get_config() -> Config:
    return Config.from_env()
