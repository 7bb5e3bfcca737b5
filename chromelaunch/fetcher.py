"""Locate, download and unpack Chromium snapshot builds."""

from __future__ import annotations

import logging
import os
import platform as _platform
import shutil
import subprocess
import sys
import zipfile
from collections.abc import Iterator
from dataclasses import dataclass, field, replace
from pathlib import Path

import platformdirs
import requests

log = logging.getLogger(__name__)

CUR_REV = "1095492"

APP_NAME = "headless-chrome"
DEFAULT_HOST = "https://storage.googleapis.com"

_SNAPSHOT_FOLDERS = {
    "linux": "Linux_x64",
    "mac": "Mac",
    "mac_arm": "Mac_Arm",
    "win": "Win_x64",
}

_CHUNK_SIZE = 64 * 1024
_TIMEOUT = 60


class FetchError(Exception):
    """Raised when a Chromium build cannot be found or installed."""


def detect_platform() -> str:
    """Return the snapshot platform name for the running system."""
    if sys.platform.startswith("linux"):
        return "linux"
    if sys.platform == "darwin":
        machine = _platform.machine().lower()
        return "mac_arm" if machine in ("arm64", "aarch64") else "mac"
    if sys.platform in ("win32", "cygwin"):
        return "win"
    raise FetchError(f"Unsupported platform: {sys.platform}")


def _check_platform(platform: str) -> None:
    if platform not in _SNAPSHOT_FOLDERS:
        raise FetchError(f"Unsupported platform: {platform}")


@dataclass(frozen=True)
class Revision:
    """A Chromium revision: a specific number, or the latest one available."""

    value: str | None = None

    @classmethod
    def specific(cls, value: str) -> Revision:
        return cls(str(value))

    @classmethod
    def latest(cls) -> Revision:
        return cls(None)

    @property
    def is_latest(self) -> bool:
        return self.value is None


@dataclass(frozen=True)
class FetcherOptions:
    """Where to look for Chromium and whether it may be downloaded."""

    revision: Revision = field(default_factory=lambda: Revision.specific(CUR_REV))
    install_dir: Path | None = None
    allow_download: bool = True
    allow_standard_dirs: bool = True

    def with_revision(self, revision: Revision) -> FetcherOptions:
        return replace(self, revision=revision)

    def with_install_dir(self, install_dir: str | os.PathLike | None) -> FetcherOptions:
        return replace(self, install_dir=Path(install_dir) if install_dir is not None else None)

    def with_allow_download(self, allow_download: bool) -> FetcherOptions:
        return replace(self, allow_download=allow_download)

    def with_allow_standard_dirs(self, allow_standard_dirs: bool) -> FetcherOptions:
        return replace(self, allow_standard_dirs=allow_standard_dirs)


def _walk(root: Path) -> Iterator[Path]:
    """Yield ``root`` and everything below it, directories before their contents."""
    if not root.exists():
        return
    yield root
    for dirpath, dirnames, filenames in os.walk(root):
        base = Path(dirpath)
        for name in dirnames + filenames:
            yield base / name


class Fetcher:
    """Finds an installed Chromium revision, downloading it if allowed."""

    def __init__(self, options: FetcherOptions | None = None, platform: str | None = None):
        self.options = options if options is not None else FetcherOptions()
        self.platform = platform if platform is not None else detect_platform()
        _check_platform(self.platform)

    def fetch(self) -> Path:
        """Return the path to the Chrome executable, installing it if needed."""
        revision = self.options.revision
        rev = latest_revision(self.platform) if revision.is_latest else revision.value

        try:
            return self.chrome_path(rev)
        except FetchError:
            pass

        if self.options.allow_download:
            zip_path = self.download(rev)
            self.unzip(zip_path)
            return self.chrome_path(rev)

        raise FetchError("Could not fetch")

    def _search_dirs(self) -> list[Path]:
        dirs = []
        if self.options.install_dir is not None:
            dirs.append(Path(self.options.install_dir))
        if self.options.allow_standard_dirs:
            dirs.append(project_data_dir())
        return dirs

    def base_path(self, revision: str) -> Path:
        """Find the installation directory named ``{platform}-{revision}``."""
        for root in self._search_dirs():
            for entry in _walk(root):
                parts = entry.name.split("-")
                if len(parts) == 2 and parts[0] == self.platform and parts[1] == revision:
                    return entry
        raise FetchError("Could not find an existing revision")

    def chrome_path(self, revision: str) -> Path:
        """Full path of the Chrome executable inside an installed revision."""
        path = self.base_path(revision) / archive_name(revision, self.platform)
        if self.platform == "linux":
            return path / "chrome"
        if self.platform in ("mac", "mac_arm"):
            return path / "Chromium.app" / "Contents" / "MacOS" / "Chromium"
        return path / "chrome.exe"

    def download(self, revision: str) -> Path:
        """Download the zip archive of ``revision`` and return where it was saved."""
        url = dl_url(revision, self.platform)
        log.info("Chrome download url: %s", url)
        total = get_size(url)
        log.info("Total size of download: %s MiB", total)

        folder = f"{self.platform}-{revision}"
        if self.options.install_dir is not None:
            path = Path(self.options.install_dir) / folder
        elif self.options.allow_standard_dirs:
            path = project_data_dir() / folder
        else:
            raise FetchError("No allowed installation directory")
        path = path.with_name(path.name + ".zip")

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FetchError(f"Could not create directory at {path.parent}") from exc

        log.info("Creating file for download: %s", path)
        with requests.get(url, stream=True, timeout=_TIMEOUT) as response:
            response.raise_for_status()
            with open(path, "wb") as out:
                for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                    out.write(chunk)
        return path

    def _unzip_with_command(self, zip_path: Path, extract_path: Path) -> None:
        result = subprocess.run(
            ["unzip", os.fspath(zip_path)],
            cwd=extract_path,
            capture_output=True,
            check=False,
        )
        if result.returncode != 0:
            log.error(
                "Unable to extract zip using unzip command: \n---- stdout:\n%s\n---- stderr:\n%s",
                result.stdout.decode(errors="replace"),
                result.stderr.decode(errors="replace"),
            )

    def _unzip_with_zipfile(self, zip_path: Path, extract_path: Path) -> None:
        with zipfile.ZipFile(zip_path) as archive:
            for index, info in enumerate(archive.infolist()):
                if info.comment:
                    log.debug("File %d comment: %s", index, info.comment.decode(errors="replace"))
                out_path = Path(archive.extract(info, extract_path))
                if info.is_dir():
                    log.debug('File %d extracted to "%s"', index, out_path)
                else:
                    log.debug('File %d extracted to "%s" (%d bytes)', index, out_path, info.file_size)
                mode = (info.external_attr >> 16) & 0o7777
                if os.name == "posix" and info.create_system == 3 and mode:
                    os.chmod(out_path, mode)

    def unzip(self, zip_path: str | os.PathLike) -> Path:
        """Extract the archive next to itself, remove it, and return the folder."""
        zip_path = Path(zip_path)
        if not zip_path.stem:
            raise FetchError("zip_path does not have a file stem")
        extract_path = zip_path.parent / zip_path.stem
        extract_path.mkdir(parents=True, exist_ok=True)

        log.info("Extracting (this can take a while): %s", extract_path)
        if self.platform in ("mac", "mac_arm") and shutil.which("unzip"):
            self._unzip_with_command(zip_path, extract_path)
        else:
            self._unzip_with_zipfile(zip_path, extract_path)

        log.info("Cleaning up")
        try:
            zip_path.unlink()
        except OSError:
            log.info("Failed to delete zip")
        return extract_path


def get_size(url: str) -> int:
    """Size of the resource at ``url`` in whole MiB."""
    with requests.get(url, stream=True, timeout=_TIMEOUT) as response:
        length = response.headers.get("Content-Length")
    if length is None:
        raise FetchError("response doesn't include the content length")
    return int(length) // 2**20


def project_data_dir() -> Path:
    """The standard per-user data directory for downloaded builds."""
    return Path(platformdirs.user_data_dir(APP_NAME, appauthor=False))


def archive_name(revision: str, platform: str) -> str:
    """Name of the top-level folder inside the snapshot archive."""
    _check_platform(platform)
    if platform == "linux":
        return "chrome-linux"
    if platform in ("mac", "mac_arm"):
        return "chrome-mac"
    # The Windows archive name changed at r591479.
    return "chrome-win" if int(revision) > 591_479 else "chrome-win32"


def dl_url(revision: str, platform: str) -> str:
    """Download URL of the snapshot archive for ``revision``."""
    _check_platform(platform)
    folder = _SNAPSHOT_FOLDERS[platform]
    name = archive_name(revision, platform)
    return f"{DEFAULT_HOST}/chromium-browser-snapshots/{folder}/{revision}/{name}.zip"


def latest_revision(platform: str) -> str:
    """Ask the snapshot server for the latest revision of ``platform``."""
    _check_platform(platform)
    url = f"{DEFAULT_HOST}/chromium-browser-snapshots/{_SNAPSHOT_FOLDERS[platform]}/LAST_CHANGE"
    with requests.get(url, timeout=_TIMEOUT) as response:
        response.raise_for_status()
        return response.text