"""Daemon configuration: CLI flags, EMSG_* environment variables or a .env file."""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

from dotenv import dotenv_values

from .errors import ConfigError

logger = logging.getLogger(__name__)

ENV_PREFIX = "EMSG_"


@dataclass
class DaemonConfig:
    domain: str = "localhost.localdomain"
    port: int = 8765
    host: str = "0.0.0.0"
    data_dir: str = "./emsg_data"
    database_url: str = ""  # sqlite path; defaults to <data_dir>/emsg.db
    public_url: str = ""  # e.g. "https://emsg.example.com"
    local_domains: list[str] = field(default_factory=list)
    log_level: str = "info"
    dns_timeout: float = 5.0
    dns_nameservers: list[str] = field(default_factory=list)
    auth_max_past: int = 300
    auth_max_future: int = 60
    nonce_cache_size: int = 10000
    broadcast_system_events: bool = True

    @property
    def db_path(self) -> str:
        return self.database_url or os.path.join(self.data_dir, "emsg.db")

    @property
    def keys_dir(self) -> str:
        return os.path.join(self.data_dir, "keys")

    @property
    def node_key_path(self) -> str:
        return os.path.join(self.keys_dir, "node.json")

    @property
    def server_url(self) -> str:
        return self.public_url or f"http://{self.domain}:{self.port}"

    @property
    def served_domains(self) -> set[str]:
        return {self.domain, *self.local_domains}

    def ensure_dirs(self):
        Path(self.data_dir).mkdir(parents=True, exist_ok=True)
        Path(self.keys_dir).mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_mapping(cls, values: dict, base: Optional["DaemonConfig"] = None) -> "DaemonConfig":
        """Build a config from EMSG_* keys, layered over `base`."""
        config = base or cls()
        for f in fields(cls):
            key = ENV_PREFIX + f.name.upper()
            raw = values.get(key)
            if raw is None or raw == "":
                continue
            setattr(config, f.name, _coerce(key, raw, getattr(config, f.name)))
        return config

    @classmethod
    def from_env(cls, base: Optional["DaemonConfig"] = None) -> "DaemonConfig":
        return cls.from_mapping(os.environ, base)

    @classmethod
    def from_file(cls, path: str, base: Optional["DaemonConfig"] = None) -> "DaemonConfig":
        """Load EMSG_* settings from a .env file, without touching os.environ."""
        if not Path(path).is_file():
            raise ConfigError(f"config file not found: {path}")
        logger.info(f"Loading .env from {Path(path).resolve()}")
        return cls.from_mapping(dotenv_values(path), base)


def _coerce(key: str, raw: str, current):
    if isinstance(current, bool):
        return raw.lower() in ("1", "true", "yes", "on")
    if isinstance(current, int):
        try:
            return int(raw)
        except ValueError:
            raise ConfigError(f"{key} must be an integer, got {raw!r}")
    if isinstance(current, float):
        try:
            return float(raw)
        except ValueError:
            raise ConfigError(f"{key} must be a number, got {raw!r}")
    if isinstance(current, list):
        return [item.strip() for item in raw.split(",") if item.strip()]
    return raw
