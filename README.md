# chromelaunch

Find, download and start a Chrome or Chromium browser with its remote
debugging port open, and get back the DevTools WebSocket URL to drive it.

## Installation

```
pip install chromelaunch
```

## Finding a browser

`chromelaunch.executable.default_executable()` returns the path to an
installed browser. It uses the `CHROME` environment variable first, if it
names an existing path; then searches `PATH` for common Chrome, Chromium and
Edge executable names; then, on macOS, the standard application bundles in
`/Applications`, and on Windows the registry. If nothing is found it raises
`FileNotFoundError`.

```python
from chromelaunch.executable import default_executable

print(default_executable())
```

## Downloading a Chromium snapshot

`chromelaunch.fetcher.Fetcher` looks for an installed revision in a folder
named `{platform}-{revision}` under the chosen install directory and/or the
per-user data directory (`project_data_dir()`). When none is found and
downloading is allowed, it downloads the snapshot archive, unpacks it and
returns the path to the executable. The default revision is `CUR_REV`;
`Revision.latest()` asks the snapshot server for the newest one.

`FetcherOptions` is immutable; each `with_*` method returns a new copy.

```python
from chromelaunch.fetcher import Fetcher, FetcherOptions, Revision

options = (
    FetcherOptions()
    .with_revision(Revision.latest())
    .with_install_dir("/tmp/chromium")
    .with_allow_download(True)
)
chrome = Fetcher(options).fetch()
print(chrome)
```

Helpers for the snapshot layout are available on their own:
`detect_platform()`, `archive_name(revision, platform)`,
`dl_url(revision, platform)`, `latest_revision(platform)` and `get_size(url)`
(size in whole MiB). Failures raise `FetchError`.

## Launching

`chromelaunch.process.Process` starts the browser and reads the DevTools
WebSocket URL from its output into `debug_ws_url`. Unless `port` is given, it
picks a random free port from 8000 to 8999 and retries with a new one if the
browser reports that the port is taken. Unless `user_data_dir` is given, the
profile lives in a temporary directory that is removed when the process is
closed.

If `LaunchOptions.path` is not set, the executable comes from a `Fetcher`
when `fetcher_options` is given, and from `default_executable()` otherwise.

Use `Process` as a context manager so the browser is killed afterwards:

```python
from chromelaunch.process import LaunchOptions, Process

with Process(LaunchOptions(headless=True, window_size=(1280, 800))) as chrome:
    print(chrome.get_id(), chrome.debug_ws_url)
```

Launch failures raise a subclass of `ChromeLaunchError`: `PortOpenTimeout`,
`NoAvailablePorts` or `DebugPortInUse`.

The command line the browser receives can be inspected without starting it:

```python
from chromelaunch.process import LaunchOptions, build_args

print(build_args(LaunchOptions(sandbox=False), 9222, "/tmp/profile"))
```

`DEFAULT_ARGS` holds the flags added unless `disable_default_args` is set,
and `ws_url_from_lines(lines)` scans any iterable of output lines for the
DevTools URL.

## What this package does not do

It starts the browser and hands back the DevTools WebSocket URL, nothing
more. It does not speak the DevTools protocol: there is no connection to the
browser, no tabs, navigation, screenshots or page scripting. It has no
command-line tool.

## Running the tests

```
pip install -e ".[test]"
pytest
```