"""
Host profile persistence and import/export.
"""

from .store import HostStore
from .io import (
    export_hosts,
    import_hosts,
    import_ssh_config,
    parse_ssh_config,
)

__all__ = [
    "HostStore",
    "export_hosts",
    "import_hosts",
    "import_ssh_config",
    "parse_ssh_config",
]
