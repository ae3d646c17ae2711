"""
Host profiles - everything needed to establish a connection.
"""

from __future__ import annotations
import copy
import json
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import yaml

from ..errors import ProfileError, JumpChainError

# Hard ceiling on jump host nesting, settings may lower it
MAX_JUMP_DEPTH = 8


class ForwardType(Enum):
    """Port forward direction."""
    LOCAL = "local"
    REMOTE = "remote"
    DYNAMIC = "dynamic"     # SOCKS


class AuthStrategy(Enum):
    """Authentication strategies, in precedence order."""
    KEY = "key"
    PASSWORD = "password"
    AGENT = "agent"


@dataclass
class PortForwardRule:
    """A declared port forward. Pure data, owned by a HostProfile."""
    type: ForwardType
    local_port: int
    remote_host: str
    remote_port: int

    def to_dict(self) -> dict:
        return {
            'type': self.type.value,
            'local_port': self.local_port,
            'remote_host': self.remote_host,
            'remote_port': self.remote_port,
        }

    @classmethod
    def from_dict(cls, data: dict) -> PortForwardRule:
        data = data.copy()
        data['type'] = ForwardType(data.get('type', 'local'))
        return cls(**data)


# Never written to disk unless explicitly asked for
SECRET_FIELDS = ('password', 'private_key', 'passphrase')


@dataclass
class HostProfile:
    """
    Connection target and policy.

    Only one authentication strategy is ever used; see auth_strategy
    for the precedence. A profile may name another profile as its
    jump host, which may in turn name another.
    """
    hostname: str
    port: int = 22
    username: str = ""

    # Auth - key wins over password, password over agent
    password: Optional[str] = None
    private_key: Optional[str] = None      # PEM text, not a path
    passphrase: Optional[str] = None
    use_agent: bool = False

    # Connection behavior
    connect_timeout: float = 30.0
    keepalive_interval: int = 30

    jump_host: Optional[HostProfile] = None

    # Terminal settings
    term_type: str = "xterm-256color"
    term_cols: int = 120
    term_rows: int = 40
    encoding: str = "UTF-8"

    forwards: list[PortForwardRule] = field(default_factory=list)

    # Metadata
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    name: str = ""
    group: str = ""

    @property
    def identity(self) -> tuple[str, int, str]:
        """(hostname, port, username) - what makes two profiles duplicates."""
        return (self.hostname, self.port, self.username)

    @property
    def address(self) -> str:
        return f"{self.hostname}:{self.port}"

    @property
    def display_name(self) -> str:
        """User-friendly display string."""
        target = self.name or (f"{self.username}@{self.hostname}" if self.username else self.hostname)
        if self.jump_host:
            chain = " → ".join(hop.hostname for hop in self.jump_chain())
            return f"{chain} → {target}"
        return target

    @property
    def auth_strategy(self) -> Optional[AuthStrategy]:
        """The single strategy this profile authenticates with, or None."""
        if self.private_key:
            return AuthStrategy.KEY
        if self.password:
            return AuthStrategy.PASSWORD
        if self.use_agent:
            return AuthStrategy.AGENT
        return None

    def validate(self) -> None:
        """Raise ProfileError if the profile cannot be connected to."""
        if not self.hostname or not self.hostname.strip():
            raise ProfileError("Profile hostname must be non-empty")
        if not 1 <= int(self.port) <= 65535:
            raise ProfileError(f"Port must be 1-65535, got {self.port}", host=self.hostname)
        if not self.username:
            raise ProfileError("Profile username must be non-empty", host=self.address)

    def jump_chain(self, max_depth: int = MAX_JUMP_DEPTH) -> list[HostProfile]:
        """
        Jump hosts in connection order, outermost first.

        Raises JumpChainError if a (hostname, port) pair appears twice,
        the target included, or if the chain is deeper than max_depth.
        """
        hops: list[HostProfile] = []
        seen = {(self.hostname.lower(), self.port)}
        current = self.jump_host

        while current is not None:
            if len(hops) >= max_depth:
                raise JumpChainError(
                    f"Jump host chain deeper than {max_depth} hops", host=self.address
                )
            key = (current.hostname.lower(), current.port)
            if key in seen:
                raise JumpChainError(
                    f"Jump host chain revisits {current.address}", host=self.address
                )
            seen.add(key)
            hops.append(current)
            current = current.jump_host

        hops.reverse()
        return hops

    def snapshot(self) -> HostProfile:
        """Deep copy, so later edits to this profile don't leak into a session."""
        return copy.deepcopy(self)

    def to_dict(self, include_secrets: bool = False) -> dict:
        """Serialize to dict (for saving). Secrets are dropped by default."""
        d = {
            'id': self.id,
            'name': self.name,
            'group': self.group,
            'hostname': self.hostname,
            'port': self.port,
            'username': self.username,
            'password': self.password,
            'private_key': self.private_key,
            'passphrase': self.passphrase,
            'use_agent': self.use_agent,
            'connect_timeout': self.connect_timeout,
            'keepalive_interval': self.keepalive_interval,
            'jump_host': self.jump_host.to_dict(include_secrets) if self.jump_host else None,
            'term_type': self.term_type,
            'term_cols': self.term_cols,
            'term_rows': self.term_rows,
            'encoding': self.encoding,
            'forwards': [f.to_dict() for f in self.forwards],
        }
        if not include_secrets:
            for key in SECRET_FIELDS:
                d.pop(key)
        return d

    @classmethod
    def from_dict(cls, data: dict) -> HostProfile:
        """Deserialize from dict, ignoring unknown keys."""
        valid_fields = {f.name for f in cls.__dataclass_fields__.values()}
        data = {k: v for k, v in data.items() if k in valid_fields}
        if isinstance(data.get('jump_host'), dict):
            data['jump_host'] = cls.from_dict(data['jump_host'])
        data['forwards'] = [
            PortForwardRule.from_dict(f) if isinstance(f, dict) else f
            for f in data.get('forwards') or []
        ]
        if 'port' in data:
            data['port'] = int(data['port'])
        return cls(**data)

    def to_yaml(self, include_secrets: bool = False) -> str:
        """Serialize to YAML string."""
        return yaml.safe_dump(self.to_dict(include_secrets), default_flow_style=False, sort_keys=False)

    @classmethod
    def from_yaml(cls, yaml_str: str) -> HostProfile:
        """Deserialize from YAML string."""
        return cls.from_dict(yaml.safe_load(yaml_str))

    def to_json(self, indent: int = 2, include_secrets: bool = False) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(include_secrets), indent=indent)

    @classmethod
    def from_json(cls, json_str: str) -> HostProfile:
        """Deserialize from JSON string."""
        return cls.from_dict(json.loads(json_str))

    def clone(self, **overrides) -> HostProfile:
        """Create a copy (secrets included) with optional overrides."""
        data = self.to_dict(include_secrets=True)
        data.update(overrides)
        return HostProfile.from_dict(data)
