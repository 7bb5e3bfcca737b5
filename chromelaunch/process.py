"""Launch a Chrome process with remote debugging and find its WebSocket URL."""

from __future__ import annotations

import logging
import os
import queue
import random
import re
import shutil
import socket
import subprocess
import tempfile
import threading
import weakref
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlsplit

from .executable import default_executable
from .fetcher import Fetcher, FetcherOptions

log = logging.getLogger(__name__)

DEFAULT_ARGS: tuple[str, ...] = (
    "--disable-background-networking",
    "--enable-features=NetworkService,NetworkServiceInProcess",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-breakpad",
    "--disable-client-side-phishing-detection",
    "--disable-component-extensions-with-background-pages",
    "--disable-default-apps",
    "--disable-dev-shm-usage",
    "--disable-extensions",
    # BlinkGenPropertyTrees disabled due to crbug.com/937609
    "--disable-features=TranslateUI,BlinkGenPropertyTrees",
    "--disable-hang-monitor",
    "--disable-ipc-flooding-protection",
    "--disable-popup-blocking",
    "--disable-prompt-on-repost",
    "--disable-renderer-backgrounding",
    "--disable-sync",
    "--force-color-profile=srgb",
    "--metrics-recording-only",
    "--no-first-run",
    "--enable-automation",
    "--password-store=basic",
    "--use-mock-keychain",
)

_PORT_RANGE = range(8000, 9000)
_MAX_ATTEMPTS = 10
_WS_URL_TIMEOUT = 30.0
_PROFILE_PREFIX = "chromelaunch-profile"

_PORT_TAKEN_RE = re.compile(r"ERROR.*bind\(\)")
_LISTENING_RE = re.compile(r"listening on (.*/devtools/browser/.*)$")


class ChromeLaunchError(Exception):
    """Base class for errors while starting Chrome."""

    default_message = "Chrome could not be launched"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)


class PortOpenTimeout(ChromeLaunchError):
    """Chrome started but gave no WebSocket URL in time."""

    default_message = "Chrome launched, but didn't give us a WebSocket URL before we timed out"


class NoAvailablePorts(ChromeLaunchError):
    """No free debugging port could be found."""

    default_message = "There are no available ports between 8000 and 9000 for debugging"


class DebugPortInUse(ChromeLaunchError):
    """The chosen debugging port is already taken."""

    default_message = "The chosen debugging port is already in use"


@dataclass
class LaunchOptions:
    """How Chrome is run.

    When ``path`` is None, the executable is taken from ``fetcher_options``
    through a :class:`Fetcher` if those are given, otherwise from
    :func:`default_executable`.
    """

    headless: bool = True
    sandbox: bool = True
    enable_gpu: bool = False
    enable_logging: bool = False
    window_size: tuple[int, int] | None = None
    port: int | None = None
    ignore_certificate_errors: bool = True
    path: Path | None = None
    user_data_dir: Path | None = None
    extensions: Sequence[str] = field(default_factory=list)
    args: Sequence[str] = field(default_factory=list)
    disable_default_args: bool = False
    fetcher_options: FetcherOptions | None = None
    idle_browser_timeout: float = 30.0
    process_envs: Mapping[str, str] | None = None
    proxy_server: str | None = None


def build_args(
    launch_options: LaunchOptions, port: int, user_data_dir: str | os.PathLike
) -> list[str]:
    """Command-line arguments passed to Chrome for these options."""
    args = [
        f"--remote-debugging-port={port}",
        "--verbose",
        "--log-level=0",
        "--no-first-run",
        "--disable-audio-output",
        f"--user-data-dir={os.fspath(user_data_dir)}",
    ]
    if not launch_options.disable_default_args:
        args.extend(DEFAULT_ARGS)
    args.extend(os.fspath(arg) for arg in launch_options.args)
    if launch_options.window_size is not None:
        width, height = launch_options.window_size
        args.append(f"--window-size={width},{height}")
    if launch_options.headless:
        args.append("--headless")
    if launch_options.ignore_certificate_errors:
        args.append("--ignore-certificate-errors")
    if launch_options.enable_logging:
        args.append("--enable-logging")
    if not launch_options.enable_gpu:
        args.append("--disable-gpu")
    if launch_options.proxy_server:
        args.append(f"--proxy-server={launch_options.proxy_server}")
    if not launch_options.sandbox:
        args.extend(["--no-sandbox", "--disable-setuid-sandbox"])
    args.extend(f"--load-extension={os.fspath(ext)}" for ext in launch_options.extensions)
    return args


def ws_url_from_lines(lines: Iterable[str]) -> str | None:
    """Scan Chrome's output for the DevTools WebSocket URL.

    Returns None if the lines run out first; raises :class:`DebugPortInUse`
    if Chrome reports that it could not bind its port.
    """
    for line in lines:
        line = line.rstrip("\r\n")
        log.debug("Chrome output: %s", line)
        if _PORT_TAKEN_RE.search(line):
            raise DebugPortInUse()
        match = _LISTENING_RE.search(line)
        if match:
            return match.group(1)
    return None


def port_is_available(port: int) -> bool:
    """Whether a TCP listener can be bound to ``port`` on 127.0.0.1."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind(("127.0.0.1", port))
        except OSError:
            return False
    return True


def get_available_port() -> int | None:
    """A random free port between 8000 and 8999, or None if there is none."""
    ports = list(_PORT_RANGE)
    random.shuffle(ports)
    return next((port for port in ports if port_is_available(port)), None)


def _terminate(popen: subprocess.Popen, temp_dir: str | None) -> None:
    log.info("Killing Chrome. PID: %s", popen.pid)
    try:
        popen.kill()
        popen.wait()
    except OSError:
        pass
    if temp_dir is not None:
        try:
            shutil.rmtree(temp_dir)
        except OSError as exc:
            log.warning("Failed to close temporary directory: %s", exc)


def _watch_stderr(stream, results: queue.Queue) -> None:
    try:
        results.put(ws_url_from_lines(stream))
    except Exception as exc:  # handed over to the launching thread
        results.put(exc)
    # Keep draining so Chrome never blocks on a full pipe.
    try:
        for _ in stream:
            pass
    except (OSError, ValueError):
        pass


class _TemporaryProcess:
    """A running Chrome child, killed (and its temporary profile removed) on close."""

    def __init__(self, popen: subprocess.Popen, temp_dir: str | None):
        self.popen = popen
        self._results: queue.Queue = queue.Queue()
        self._finalizer = weakref.finalize(self, _terminate, popen, temp_dir)
        threading.Thread(
            target=_watch_stderr, args=(popen.stderr, self._results), daemon=True
        ).start()

    def ws_url(self, timeout: float) -> str:
        try:
            result = self._results.get(timeout=timeout)
        except queue.Empty:
            raise PortOpenTimeout() from None
        if isinstance(result, Exception):
            raise result
        if result is None:
            raise PortOpenTimeout()
        parts = urlsplit(result)
        if not parts.scheme or not parts.netloc:
            raise ChromeLaunchError(f"Invalid debugging URL: {result}")
        return result

    def close(self) -> None:
        self._finalizer()


def _resolve_path(launch_options: LaunchOptions) -> Path:
    if launch_options.path is not None:
        return Path(launch_options.path)
    if launch_options.fetcher_options is not None:
        return Fetcher(launch_options.fetcher_options).fetch()
    return default_executable()


def _start_process(launch_options: LaunchOptions, path: Path) -> _TemporaryProcess:
    port = launch_options.port
    if port is None:
        port = get_available_port()
        if port is None:
            raise NoAvailablePorts()

    temp_dir = None
    if launch_options.user_data_dir is not None:
        user_data_dir = os.fspath(launch_options.user_data_dir)
    else:
        temp_dir = tempfile.mkdtemp(prefix=_PROFILE_PREFIX)
        user_data_dir = temp_dir

    args = build_args(launch_options, port, user_data_dir)
    log.info("Launching Chrome binary at %s", path)
    log.debug("with CLI arguments: %s", args)

    env = None
    if launch_options.process_envs is not None:
        env = {**os.environ, **launch_options.process_envs}

    try:
        popen = subprocess.Popen(
            [os.fspath(path), *args],
            stderr=subprocess.PIPE,
            env=env,
            text=True,
            errors="replace",
        )
    except OSError:
        if temp_dir is not None:
            shutil.rmtree(temp_dir, ignore_errors=True)
        raise
    return _TemporaryProcess(popen, temp_dir)


class Process:
    """A Chrome process started with remote debugging enabled."""

    def __init__(self, launch_options: LaunchOptions | None = None):
        options = launch_options if launch_options is not None else LaunchOptions()
        path = _resolve_path(options)

        child = _start_process(options, path)
        log.info("Started Chrome. PID: %s", child.popen.pid)

        attempts = 0
        while True:
            if attempts > _MAX_ATTEMPTS:
                child.close()
                raise NoAvailablePorts()
            try:
                url = child.ws_url(_WS_URL_TIMEOUT)
                log.debug("Found debugging WS URL: %s", url)
                break
            except ChromeLaunchError as error:
                log.debug("Problem getting WebSocket URL from Chrome: %s", error)
                child.close()
                if options.port is not None:
                    raise
                child = _start_process(options, path)
            log.debug("Trying again to find available debugging port. Attempts: %d", attempts)
            attempts += 1

        self._child = child
        self.debug_ws_url: str = url

    def get_id(self) -> int:
        """The operating-system process id of Chrome."""
        return self._child.popen.pid

    def close(self) -> None:
        """Kill Chrome and remove its temporary profile directory."""
        self._child.close()

    def __enter__(self) -> Process:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()