"""Desktop notifications and URL opening via the platform's command line tools."""

from __future__ import annotations

import json
import platform
import shutil
import subprocess
from typing import Protocol

from .log import get_logger

_log = get_logger("notifier")


class Notifier(Protocol):
    def show(self, title: str, url: str) -> bool:
        """Display a notification. Returns whether it was shown."""
        ...


class DesktopNotifier:
    """Shows notifications with whatever tool the system has.

    terminal-notifier is preferred because it supports click-through
    (-open); notify-send and osascript just show the link in the body.
    """

    def __init__(self, app_name: str = "tattler") -> None:
        self.app_name = app_name

    def build_command(self, title: str, url: str) -> list[str] | None:
        if shutil.which("terminal-notifier"):
            return [
                "terminal-notifier",
                "-title",
                self.app_name,
                "-message",
                title,
                "-open",
                url,
                "-group",
                url,
            ]
        if shutil.which("notify-send"):
            return ["notify-send", "--app-name", self.app_name, title, url]
        if platform.system() == "Darwin":
            # JSON string quoting is valid AppleScript string quoting
            script = f"display notification {json.dumps(url)} with title {json.dumps(title)}"
            return ["osascript", "-e", script]
        return None

    def show(self, title: str, url: str) -> bool:
        argv = self.build_command(title, url)
        if argv is None:
            _log.info("no notification tool available: %s (%s)", title, url)
            return False
        try:
            subprocess.run(argv, capture_output=True, text=True, check=True, timeout=10)
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
            _log.warning("%s failed: %s", argv[0], e)
            return False
        return True


def open_url(url: str) -> bool:
    """Open a URL (or file path) in the default application."""
    if platform.system() == "Darwin":
        argv = ["open", url]
    elif shutil.which("xdg-open"):
        argv = ["xdg-open", url]
    else:
        _log.warning("don't know how to open %s on this system", url)
        return False
    try:
        subprocess.run(argv, check=True, capture_output=True)
    except (subprocess.CalledProcessError, OSError) as e:
        _log.warning("opening %s failed: %s", url, e)
        return False
    return True
