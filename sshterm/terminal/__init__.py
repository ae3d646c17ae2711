"""
Terminal-facing adapters: inline banners and the Qt bridge.

ShellBridge is the event sink for Qt front ends: pass it to
SessionManager.open_shell and connect its signals to the terminal
widget. It needs PyQt6 and is imported on first access, so banners
stay usable without Qt.
"""

from .banner import format_banner, error_banner, closed_banner

__all__ = [
    "ShellBridge",
    "format_banner",
    "error_banner",
    "closed_banner",
]


def __getattr__(name):
    if name == "ShellBridge":
        from .bridge import ShellBridge
        return ShellBridge
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
