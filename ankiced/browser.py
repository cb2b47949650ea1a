"""Open a URL in the system's default browser."""

from __future__ import annotations

import subprocess
import sys

_PLATFORM_ALIASES = {"win32": "windows", "cygwin": "windows"}


def command_for(platform: str, url: str) -> tuple[str, list[str]]:
    """Return the program and arguments that open ``url`` on ``platform``."""
    name = _PLATFORM_ALIASES.get(platform, platform)
    if name == "windows":
        return "rundll32", ["url.dll,FileProtocolHandler", url]
    if name == "darwin":
        return "open", [url]
    if name == "linux":
        return "xdg-open", [url]
    raise ValueError(f"unsupported platform for browser open: {platform}")


def open_url(url: str) -> None:
    """Start the platform's URL handler for ``url`` without waiting for it."""
    program, args = command_for(sys.platform, url)
    subprocess.Popen(
        [program, *args],
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    )