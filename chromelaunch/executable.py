"""Find an installed Chrome, Chromium or Edge executable."""

from __future__ import annotations

import os
import shutil
import sys
from collections.abc import Iterator
from pathlib import Path, PureWindowsPath

_CHROME_CHANNELS = ("stable", "beta", "dev", "unstable")
_EDGE_CHANNELS = ("stable", "beta", "dev")
_MAC_CHANNELS = ("", "Beta", "Dev", "Canary")
_MAC_APPLICATIONS = Path("/Applications")
_WINDOWS_EDGE = PureWindowsPath(
    "C:/", "Program Files (x86)", "Microsoft", "Edge", "Application", "msedge.exe"
)
_REGISTRY_KEY = "\\".join(
    ("SOFTWARE", "Microsoft", "Windows", "CurrentVersion", "App Paths", "chrome.exe")
)


def _candidate_names() -> Iterator[str]:
    """Executable names to look up on PATH, most preferred first."""
    yield from (f"google-chrome-{channel}" for channel in _CHROME_CHANNELS)
    yield "chromium"
    yield "chromium-browser"
    yield from (f"microsoft-edge-{channel}" for channel in _EDGE_CHANNELS)
    yield "chrome"
    yield "chrome-browser"
    yield "msedge"
    yield "microsoft-edge"


def _mac_app(name: str) -> Path:
    return _MAC_APPLICATIONS / f"{name}.app" / "Contents" / "MacOS" / name


def _mac_candidates() -> Iterator[Path]:
    """Standard application bundle locations on macOS."""
    for channel in _MAC_CHANNELS:
        yield _mac_app(" ".join(filter(None, ("Google Chrome", channel))))
    yield _mac_app("Chromium")
    for channel in _MAC_CHANNELS:
        yield _mac_app(" ".join(filter(None, ("Microsoft Edge", channel))))


def _chrome_path_from_registry() -> Path | None:
    try:
        import winreg
    except ImportError:
        return None
    try:
        with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, _REGISTRY_KEY) as key:
            value, _ = winreg.QueryValueEx(key, "")
    except OSError:
        return None
    return Path(value)


def default_executable() -> Path:
    """Return the path to a Chrome executable.

    The ``CHROME`` environment variable is used first if it names an existing
    path; then well-known executable names are searched on ``PATH``; then
    standard install locations on macOS, or the registry on Windows.
    Raises ``FileNotFoundError`` if nothing is found.
    """
    env_path = os.environ.get("CHROME")
    if env_path and Path(env_path).exists():
        return Path(env_path)

    for name in _candidate_names():
        found = shutil.which(name)
        if found:
            return Path(found)

    if sys.platform == "darwin":
        for candidate in _mac_candidates():
            if candidate.exists():
                return candidate

    if sys.platform == "win32":
        registry_path = _chrome_path_from_registry()
        if registry_path is not None:
            if registry_path.exists():
                return registry_path
            edge = Path(_WINDOWS_EDGE)
            if edge.exists():
                return edge

    raise FileNotFoundError("Could not auto detect a chrome executable")