"""
Saved host profiles, persisted as a JSON list.
"""

from __future__ import annotations
import json
import logging
import threading
from pathlib import Path
from typing import Optional

from ..connection.profile import HostProfile

logger = logging.getLogger(__name__)

# Hosts without a group
UNGROUPED = "Ungrouped"


class HostStore:
    """
    Host profiles kept in memory and written through to a JSON file.

    Secrets are never written; they belong in the credential store.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path).expanduser() if path else None
        self._hosts: list[HostProfile] = []
        self._lock = threading.RLock()
        if self.path:
            self.load()

    @property
    def hosts(self) -> list[HostProfile]:
        with self._lock:
            return list(self._hosts)

    def load(self) -> None:
        """Load hosts from disk. A missing or unreadable file leaves the store empty."""
        if not self.path or not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text())
            hosts = [HostProfile.from_dict(d) for d in data]
        except (json.JSONDecodeError, TypeError, ValueError, KeyError) as e:
            logger.error(f"Error loading hosts from {self.path}: {e}")
            return
        with self._lock:
            self._hosts = hosts
        logger.debug(f"Loaded {len(hosts)} hosts from {self.path}")

    def save(self) -> None:
        """Write hosts to disk (no secrets)."""
        if not self.path:
            return
        with self._lock:
            data = [h.to_dict() for h in self._hosts]
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data, indent=2))
        except OSError as e:
            logger.error(f"Error saving hosts to {self.path}: {e}")

    def contains_identity(self, profile: HostProfile) -> bool:
        """Is there already a host with the same (hostname, port, username)?"""
        with self._lock:
            return any(h.identity == profile.identity for h in self._hosts)

    def add(self, profile: HostProfile, save: bool = True) -> None:
        with self._lock:
            self._hosts.append(profile)
        if save:
            self.save()

    def update(self, profile: HostProfile) -> bool:
        with self._lock:
            for i, host in enumerate(self._hosts):
                if host.id == profile.id:
                    self._hosts[i] = profile
                    break
            else:
                return False
        self.save()
        return True

    def delete(self, profile_id: str) -> bool:
        with self._lock:
            before = len(self._hosts)
            self._hosts = [h for h in self._hosts if h.id != profile_id]
            if len(self._hosts) == before:
                return False
        self.save()
        return True

    def get(self, profile_id: str) -> Optional[HostProfile]:
        with self._lock:
            return next((h for h in self._hosts if h.id == profile_id), None)

    def find(self, name: str) -> Optional[HostProfile]:
        """Look up by name, then id, then hostname."""
        with self._lock:
            for attr in ("name", "id", "hostname"):
                match = next((h for h in self._hosts if getattr(h, attr) == name), None)
                if match:
                    return match
        return None

    def grouped(self) -> dict[str, list[HostProfile]]:
        groups: dict[str, list[HostProfile]] = {}
        with self._lock:
            for host in self._hosts:
                groups.setdefault(host.group or UNGROUPED, []).append(host)
        return groups

    def __len__(self) -> int:
        with self._lock:
            return len(self._hosts)
