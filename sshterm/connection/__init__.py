"""
Connection profiles.
"""

from .profile import (
    HostProfile,
    PortForwardRule,
    ForwardType,
    AuthStrategy,
    MAX_JUMP_DEPTH,
)

__all__ = [
    "HostProfile",
    "PortForwardRule",
    "ForwardType",
    "AuthStrategy",
    "MAX_JUMP_DEPTH",
]
