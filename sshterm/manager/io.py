"""
Host import/export.

Supports JSON (default) and YAML for portability, plus one-way import
from an OpenSSH client config (~/.ssh/config).
"""

from __future__ import annotations
import getpass
import json
import logging
import os
import re
import uuid
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional, Union

import yaml

from ..connection.profile import HostProfile
from .store import HostStore

logger = logging.getLogger(__name__)

# Export format version for future compatibility
EXPORT_VERSION = 1

DEFAULT_SSH_CONFIG = Path("~/.ssh/config")

YAML_SUFFIXES = (".yaml", ".yml")

CONFIG_LINE = re.compile(r"^([A-Za-z]+)\s*(?:=|\s)\s*(.*)$")


def _is_yaml(path: Path) -> bool:
    return path.suffix.lower() in YAML_SUFFIXES


def export_hosts(
    hosts: Iterable[HostProfile],
    path: Path,
    include_secrets: bool = False,
) -> int:
    """
    Export hosts to a JSON or YAML file (by suffix).

    Args:
        hosts: Profiles to export
        path: Output file path
        include_secrets: Also write passwords, keys and passphrases

    Returns:
        Number of hosts exported
    """
    path = Path(path)
    export_data = {
        "version": EXPORT_VERSION,
        "exported_at": datetime.now().isoformat(),
        "hosts": [h.to_dict(include_secrets=include_secrets) for h in hosts],
    }

    with open(path, "w") as f:
        if _is_yaml(path):
            yaml.safe_dump(export_data, f, default_flow_style=False, sort_keys=False)
        else:
            json.dump(export_data, f, indent=2)

    logger.info(f"Exported {len(export_data['hosts'])} hosts to {path}")
    return len(export_data["hosts"])


def _read_host_records(path: Path) -> list[dict]:
    with open(path) as f:
        data = yaml.safe_load(f) if _is_yaml(path) else json.load(f)

    # Bare lists are accepted too
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get("hosts"), list):
        return data["hosts"]
    raise ValueError(f"Unrecognized host file format: {path}")


def _add_unless_duplicate(store: HostStore, profile: HostProfile) -> bool:
    if store.contains_identity(profile):
        logger.debug(f"Skipping duplicate {profile.username}@{profile.address}")
        return False
    store.add(profile, save=False)
    return True


def import_hosts(store: HostStore, path: Path) -> tuple[int, int]:
    """
    Import hosts from a JSON or YAML export.

    Hosts whose (hostname, port, username) is already in the store, or
    appeared earlier in the same file, are counted as failed.

    Returns:
        Tuple of (imported, failed)
    """
    records = _read_host_records(Path(path))

    imported = 0
    failed = 0

    for record in records:
        if not isinstance(record, dict):
            logger.warning(f"Skipping host record that is not a mapping: {record!r}")
            failed += 1
            continue
        try:
            profile = HostProfile.from_dict(record)
        except (TypeError, ValueError, KeyError) as e:
            logger.warning(f"Skipping invalid host record: {e}")
            failed += 1
            continue

        if not profile.hostname:
            failed += 1
            continue

        profile.id = uuid.uuid4().hex
        if _add_unless_duplicate(store, profile):
            imported += 1
        else:
            failed += 1

    if imported:
        store.save()

    logger.info(f"Imported {imported} hosts from {path} ({failed} failed)")
    return imported, failed


def _parse_proxy_jump(value: str, default_user: str) -> Optional[HostProfile]:
    """ProxyJump [user@]host[:port] - only the first hop of a list is used."""
    first = value.split(",")[0].strip()
    if not first or first.lower() == "none":
        return None

    user = default_user
    if "@" in first:
        user, first = first.rsplit("@", 1)

    port = 22
    if first.startswith("[") and "]" in first:
        host, _, rest = first[1:].partition("]")
        if rest.startswith(":") and rest[1:].isdigit():
            port = int(rest[1:])
    elif first.count(":") == 1:
        host, _, port_str = first.partition(":")
        if port_str.isdigit():
            port = int(port_str)
    else:
        host = first

    return HostProfile(hostname=host, port=port, username=user, use_agent=True)


def _read_identity_file(value: str) -> Optional[str]:
    key_path = Path(value.strip('"')).expanduser()
    try:
        return key_path.read_text(encoding="utf-8")
    except OSError as e:
        logger.warning(f"Error reading identity file {key_path}: {e}")
        return None


def parse_ssh_config(text: str, default_user: Optional[str] = None) -> list[HostProfile]:
    """
    Parse OpenSSH client config text into profiles.

    Recognized: Host, HostName, User/Username, Port, IdentityFile,
    ServerAliveInterval, ProxyJump. Everything else is ignored. Wildcard
    Host blocks with no HostName are dropped. A Match line ends the
    current Host block and its own directives are skipped.
    """
    default_user = default_user or getpass.getuser()
    profiles: list[HostProfile] = []

    current: Optional[HostProfile] = None
    current_hostname: Optional[str] = None

    def finish():
        if current is None:
            return
        hostname = current_hostname
        if not hostname:
            alias = current.name
            if any(c in alias for c in "*?!"):
                logger.debug(f"Skipping wildcard Host block '{alias}'")
                return
            hostname = alias
        current.hostname = hostname
        profiles.append(current)

    for line in text.splitlines():
        stripped = line.strip()

        # Skip blank lines and comments
        if not stripped or stripped.startswith("#"):
            continue

        # "Key value" or "Key=value"
        match = CONFIG_LINE.match(stripped)
        if not match:
            continue
        key = match.group(1).lower()
        value = match.group(2).strip()
        if not value:
            continue

        if key in ("host", "match"):
            finish()
            if key == "host":
                current = HostProfile(hostname="", username=default_user, name=value.split()[0])
            else:
                current = None
            current_hostname = None
        elif current is not None:
            if key == "hostname":
                current_hostname = value
            elif key in ("user", "username"):
                current.username = value
            elif key == "port":
                if value.isdigit():
                    current.port = int(value)
            elif key == "identityfile":
                key_text = _read_identity_file(value)
                if key_text:
                    current.private_key = key_text
            elif key == "serveraliveinterval":
                if value.isdigit():
                    current.keepalive_interval = int(value)
            elif key == "proxyjump":
                current.jump_host = _parse_proxy_jump(value, default_user)

    finish()
    return profiles


def import_ssh_config(
    store: HostStore,
    path: Union[str, os.PathLike, None] = None,
    text: Optional[str] = None,
) -> tuple[int, int]:
    """
    Import hosts from an OpenSSH client config.

    Args:
        store: Host store to add to
        path: Config file path, "~" is expanded. Defaults to ~/.ssh/config.
        text: Config text to parse instead of reading a file

    Returns:
        Tuple of (imported, failed). A missing config file yields (0, 0).
    """
    if text is None:
        config_path = Path(path or DEFAULT_SSH_CONFIG).expanduser()
        if not config_path.exists():
            logger.debug(f"No SSH config at {config_path}")
            return 0, 0
        try:
            text = config_path.read_text(encoding="utf-8")
        except OSError as e:
            logger.error(f"Error reading SSH config {config_path}: {e}")
            return 0, 0

    imported = 0
    failed = 0
    for profile in parse_ssh_config(text):
        if _add_unless_duplicate(store, profile):
            imported += 1
        else:
            failed += 1

    if imported:
        store.save()

    logger.info(f"Imported {imported} hosts from SSH config ({failed} duplicates)")
    return imported, failed
