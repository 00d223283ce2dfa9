"""Tests for configuration loading."""

import os

import pytest

from emsgd.config import DaemonConfig
from emsgd.errors import ConfigError


def test_defaults():
    config = DaemonConfig()
    assert config.port == 8765
    assert config.auth_max_past == 300
    assert config.auth_max_future == 60
    assert config.db_path == os.path.join("./emsg_data", "emsg.db")


def test_from_env(monkeypatch):
    monkeypatch.setenv("EMSG_DATABASE_URL", "/tmp/test.db")
    monkeypatch.setenv("EMSG_DOMAIN", "testdomain.com")
    monkeypatch.setenv("EMSG_PORT", "9000")
    monkeypatch.setenv("EMSG_LOCAL_DOMAINS", "a.com, b.com")
    monkeypatch.setenv("EMSG_DNS_TIMEOUT", "2.5")
    monkeypatch.setenv("EMSG_BROADCAST_SYSTEM_EVENTS", "false")
    config = DaemonConfig.from_env()
    assert config.db_path == "/tmp/test.db"
    assert config.domain == "testdomain.com"
    assert config.port == 9000
    assert config.local_domains == ["a.com", "b.com"]
    assert config.served_domains == {"testdomain.com", "a.com", "b.com"}
    assert config.dns_timeout == 2.5
    assert config.broadcast_system_events is False


def test_bad_integer(monkeypatch):
    monkeypatch.setenv("EMSG_PORT", "eighty")
    with pytest.raises(ConfigError):
        DaemonConfig.from_env()


def test_from_file(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "# EMSG settings\n"
        "EMSG_DOMAIN=emsg.dev\n"
        "\n"
        "EMSG_PUBLIC_URL=\"https://emsg.dev\"\n"
        "EMSG_LOG_LEVEL = debug\n"
        "not a setting\n"
    )
    config = DaemonConfig.from_file(str(env_file))
    assert config.domain == "emsg.dev"
    assert config.server_url == "https://emsg.dev"
    assert config.log_level == "debug"


def test_file_layers_over_base(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("EMSG_PORT=8080\n")
    base = DaemonConfig(domain="keep.me")
    config = DaemonConfig.from_file(str(env_file), base=base)
    assert (config.domain, config.port) == ("keep.me", 8080)


def test_server_url_fallback():
    assert DaemonConfig(domain="emsg.dev", port=8080).server_url == "http://emsg.dev:8080"


def test_from_file_dotenv_syntax(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "export EMSG_PORT=9001  # inline comment\n"
        "EMSG_DATA_DIR=/srv/emsg\n"
        "EMSG_DATABASE_URL=${EMSG_DATA_DIR}/main.db\n"
        "EMSG_LOCAL_DOMAINS='a.com,b.com'\n"
    )
    config = DaemonConfig.from_file(str(env_file))
    assert config.port == 9001
    assert config.db_path == "/srv/emsg/main.db"
    assert config.local_domains == ["a.com", "b.com"]


def test_from_file_leaves_environment_alone(tmp_path, monkeypatch):
    monkeypatch.delenv("EMSG_DOMAIN", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("EMSG_DOMAIN=emsg.dev\n")
    DaemonConfig.from_file(str(env_file))
    assert "EMSG_DOMAIN" not in os.environ


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        DaemonConfig.from_file(str(tmp_path / "absent.env"))
