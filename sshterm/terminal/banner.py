"""
Inline status banners written into the terminal feed.
"""

from __future__ import annotations
from typing import Optional

from ..session.base import SessionEvent, EndOfStream, StreamError

RED = "\x1b[31m"
DIM = "\x1b[2m"
RESET = "\x1b[0m"


def error_banner(message: str) -> bytes:
    """Red [ERROR] line, on its own row."""
    return f"\r\n{RED}[ERROR] {message}{RESET}\r\n".encode("utf-8")


def closed_banner(message: str = "Connection closed") -> bytes:
    return f"\r\n{DIM}[{message}]{RESET}\r\n".encode("utf-8")


def format_banner(event: SessionEvent) -> Optional[bytes]:
    """Banner for a terminating event, None for anything else."""
    if isinstance(event, StreamError):
        return error_banner(event.message)
    if isinstance(event, EndOfStream):
        return closed_banner(event.message)
    return None
