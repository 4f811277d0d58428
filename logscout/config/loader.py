"""Servers file loading.

Reads the YAML servers file, applies defaults and validates each server.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

from logscout.models import AuthConfig, Defaults, LogFolder, Target
from logscout.services.errors import ConfigError

logger = logging.getLogger(__name__)

AUTH_METHODS = ("key", "password", "agent")

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0, None: 1.0}


def expand_tilde(path: str) -> str:
    """Expand a leading ``~/`` to the user's home directory."""
    if path.startswith("~/"):
        return os.path.expanduser(path)
    return path


def parse_duration(value: Any, default: float) -> float:
    """Parse seconds from a number or a string like ``5s``, ``250ms``, ``1m``."""
    if value is None or value == "":
        return default
    if isinstance(value, (int, float)):
        return float(value)
    match = _DURATION_RE.match(str(value))
    if not match:
        raise ConfigError(f"invalid duration: {value!r}")
    return float(match.group(1)) * _DURATION_UNITS[match.group(2)]


def _patterns(value: Any) -> tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(p) for p in value)


def _parse_defaults(raw: dict[str, Any]) -> Defaults:
    return Defaults(
        ssh_key=expand_tilde(str(raw.get("ssh_key") or "")),
        ssh_port=int(raw.get("ssh_port") or 22),
        tail_lines=int(raw.get("tail_lines") or 100),
        poll_interval=parse_duration(raw.get("poll_interval"), 5.0),
    )


def _parse_server(index: int, raw: dict[str, Any], defaults: Defaults) -> Target:
    host = str(raw.get("host") or "")
    user = str(raw.get("user") or "")
    if not host:
        raise ConfigError(f"server {index}: host is required")
    if not user:
        raise ConfigError(f"server {index} ({host}): user is required")

    log_path = str(raw.get("log_path") or "")
    raw_folders = raw.get("log_folders") or []
    if log_path and raw_folders:
        raise ConfigError(
            f"server {index} ({host}): cannot set both log_path and log_folders"
        )
    if not log_path and not raw_folders:
        raise ConfigError(
            f"server {index} ({host}): log_path or log_folders is required"
        )

    folders = []
    for j, folder in enumerate(raw_folders):
        name = str(folder.get("name") or "")
        path = str(folder.get("path") or "")
        if not name:
            raise ConfigError(
                f"server {index} ({host}): log_folders[{j}]: name is required"
            )
        if not path:
            raise ConfigError(
                f"server {index} ({host}): log_folders[{j}]: path is required"
            )
        folders.append(
            LogFolder(
                path=path,
                name=name,
                file_patterns=_patterns(folder.get("file_patterns")),
            )
        )

    raw_auth = raw.get("auth") or {}
    method = str(raw_auth.get("method") or "")
    if not method:
        method = "key" if defaults.ssh_key else "agent"
    if method not in AUTH_METHODS:
        raise ConfigError(
            f"server {index} ({host}): unknown auth method {method!r}"
        )
    key_path = str(raw_auth.get("key_path") or "")
    if method == "key" and not key_path:
        key_path = defaults.ssh_key

    return Target(
        name=str(raw.get("name") or f"{user}@{host}"),
        host=host,
        user=user,
        port=int(raw.get("port") or defaults.ssh_port),
        auth=AuthConfig(method=method, key_path=expand_tilde(key_path)),
        sudo=bool(raw.get("sudo", False)),
        log_path=log_path,
        file_patterns=_patterns(raw.get("file_patterns")),
        log_folders=tuple(folders),
    )


def parse_config(data: dict[str, Any] | None) -> tuple[Defaults, list[Target]]:
    """Build defaults and targets from an already-parsed YAML document.

    Raises:
        ConfigError: If the document is invalid
    """
    data = data or {}
    if not isinstance(data, dict):
        raise ConfigError("config must be a mapping")

    try:
        defaults = _parse_defaults(data.get("defaults") or {})
    except (TypeError, ValueError) as e:
        raise ConfigError(f"defaults: {e}") from e

    raw_servers = data.get("servers") or []
    if not raw_servers:
        raise ConfigError("no servers defined")

    servers = []
    for i, raw in enumerate(raw_servers):
        if not isinstance(raw, dict):
            raise ConfigError(f"server {i}: expected a mapping")
        try:
            servers.append(_parse_server(i, raw, defaults))
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigError(f"server {i}: {e}") from e
    return defaults, servers


def load_servers(path: Path | str) -> tuple[Defaults, list[Target]]:
    """Read and validate the servers file.

    Args:
        path: Path to the YAML file

    Returns:
        Tuple of (defaults, targets)

    Raises:
        ConfigError: If the file can't be read, parsed or validated
    """
    path = Path(path)
    try:
        content = path.read_text()
    except OSError as e:
        raise ConfigError(f"reading config: {e}") from e

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(f"parsing config: {e}") from e

    defaults, servers = parse_config(data)
    logger.debug("Loaded %d server(s) from %s", len(servers), path)
    return defaults, servers
