"""Tests for servers file loading."""

import os
from pathlib import Path

import pytest

from logscout.config import Config, Settings, load_servers, parse_config, parse_duration
from logscout.services.errors import ConfigError


def _server(**overrides):
    raw = {"host": "web1", "user": "deploy", "log_path": "/var/log/app"}
    raw.update(overrides)
    return raw


def test_load_servers_reads_yaml(tmp_path: Path) -> None:
    """Servers and defaults are read from the YAML file."""
    config_file = tmp_path / "servers.yaml"
    config_file.write_text("""
defaults:
  ssh_port: 2200
  tail_lines: 50
  poll_interval: 250ms
servers:
  - name: web1
    host: web1.example.com
    user: deploy
    log_path: /var/log/app
    file_patterns: ["*.log*"]
  - host: db1.example.com
    user: postgres
    port: 22
    sudo: true
    log_folders:
      - name: Postgres
        path: /var/log/postgresql
        file_patterns: ["*.log"]
      - name: System
        path: /var/log
""")

    defaults, servers = load_servers(config_file)

    assert defaults.ssh_port == 2200
    assert defaults.tail_lines == 50
    assert defaults.poll_interval == pytest.approx(0.25)
    assert len(servers) == 2

    web = servers[0]
    assert web.name == "web1"
    assert web.port == 2200  # from defaults
    assert web.file_patterns == ("*.log*",)
    assert web.auth.method == "agent"

    db = servers[1]
    assert db.name == "postgres@db1.example.com"
    assert db.port == 22
    assert db.sudo is True
    assert [f.name for f in db.log_folders] == ["Postgres", "System"]
    assert db.log_folders[1].file_patterns == ()


def test_missing_auth_method_uses_default_key() -> None:
    """Servers inherit the default key when no auth method is set."""
    defaults, servers = parse_config(
        {"defaults": {"ssh_key": "/keys/id_ed25519"}, "servers": [_server()]}
    )

    assert defaults.ssh_key == "/keys/id_ed25519"
    assert servers[0].auth.method == "key"
    assert servers[0].auth.key_path == "/keys/id_ed25519"


def test_key_path_tilde_is_expanded() -> None:
    """A leading ~/ in key_path expands to the home directory."""
    _, servers = parse_config(
        {"servers": [_server(auth={"method": "key", "key_path": "~/.ssh/id_rsa"})]}
    )

    assert servers[0].auth.key_path == os.path.expanduser("~/.ssh/id_rsa")


@pytest.mark.parametrize(
    ("servers", "message"),
    [
        ([], "no servers defined"),
        ([{"user": "u", "log_path": "/l"}], "host is required"),
        ([{"host": "h", "log_path": "/l"}], "user is required"),
        ([{"host": "h", "user": "u"}], "log_path or log_folders is required"),
        (
            [_server(log_folders=[{"name": "A", "path": "/a"}])],
            "cannot set both log_path and log_folders",
        ),
        (
            [{"host": "h", "user": "u", "log_folders": [{"path": "/a"}]}],
            "name is required",
        ),
        (
            [{"host": "h", "user": "u", "log_folders": [{"name": "A"}]}],
            "path is required",
        ),
        ([_server(auth={"method": "kerberos"})], "unknown auth method"),
    ],
)
def test_invalid_config_raises(servers, message) -> None:
    """Validation failures raise ConfigError with a useful message."""
    with pytest.raises(ConfigError, match=message):
        parse_config({"servers": servers})


def test_load_servers_missing_file(tmp_path: Path) -> None:
    """An unreadable file raises ConfigError."""
    with pytest.raises(ConfigError, match="reading config"):
        load_servers(tmp_path / "missing.yaml")


def test_load_servers_invalid_yaml(tmp_path: Path) -> None:
    """Malformed YAML raises ConfigError."""
    config_file = tmp_path / "servers.yaml"
    config_file.write_text("servers: [unclosed\n")

    with pytest.raises(ConfigError, match="parsing config"):
        load_servers(config_file)


@pytest.mark.parametrize(
    ("value", "expected"),
    [(None, 5.0), (3, 3.0), ("5s", 5.0), ("250ms", 0.25), ("1m", 60.0), ("2", 2.0)],
)
def test_parse_duration(value, expected) -> None:
    """Durations accept plain numbers and unit suffixes."""
    assert parse_duration(value, 5.0) == pytest.approx(expected)


def test_parse_duration_rejects_garbage() -> None:
    """Unparseable durations raise ConfigError."""
    with pytest.raises(ConfigError):
        parse_duration("soon", 5.0)


def test_config_get_server_is_case_insensitive(tmp_path: Path) -> None:
    """Config.get_server matches names regardless of case."""
    config_file = tmp_path / "servers.yaml"
    config_file.write_text(
        "servers:\n  - {name: Web1, host: h, user: u, log_path: /var/log}\n"
    )

    config = Config.load(config_file, settings=Settings())

    assert config.get_server("web1") is config.servers[0]
    assert config.get_server("nope") is None
