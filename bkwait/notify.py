"""Desktop notifications and browser launching."""

from __future__ import annotations

import logging
import shutil
import subprocess
import sys
import webbrowser

from bkwait.config import Organization

log = logging.getLogger(__name__)


def _run(cmd: list[str]) -> subprocess.CompletedProcess:
    return subprocess.run(cmd, capture_output=True, text=True, timeout=10)


def _applescript_quote(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def notification_command(title: str, message: str, platform: str = sys.platform) -> list[str] | None:
    if platform == "darwin":
        script = f"display notification {_applescript_quote(message)} with title {_applescript_quote(title)}"
        return ["osascript", "-e", script]
    if shutil.which("notify-send"):
        return ["notify-send", title, message]
    return None


def display(title: str, message: str) -> bool:
    """Best effort desktop notification; returns True if one was shown."""
    cmd = notification_command(title, message)
    if cmd is None:
        log.debug("no notifier available for %r", message)
        return False
    try:
        result = _run(cmd)
    except (subprocess.TimeoutExpired, FileNotFoundError, OSError) as e:
        log.debug("notification failed: %s", e)
        return False
    if result.returncode != 0:
        log.debug("notification failed: %s", result.stderr.strip())
        return False
    return True


def open_command(org: Organization, url: str) -> list[str]:
    """Build the macOS ``open`` invocation honouring the org's browser settings."""
    args = ["open"]
    app = org.browser_application
    if app:
        if "firefox" in app.lower() and org.browser_profile:
            args += ["-n", "-a", app, "--args", "-no-remote", "-P", org.browser_profile, "-new-tab"]
        elif org.browser_profile:
            args += ["-na", app, "--args", f"--profile-directory={org.browser_profile}", "--new-tab"]
        else:
            args += ["-a", app]
    args.append(url)
    return args


def open_url(org: Organization, url: str, platform: str = sys.platform) -> None:
    """Open *url* in a browser; raises OSError if nothing could open it."""
    if platform == "darwin":
        result = subprocess.run(open_command(org, url))
        if result.returncode != 0:
            raise OSError(f"open exited with code {result.returncode}")
        return
    if not webbrowser.open(url):
        raise OSError(f"could not find a browser to open {url}")
