import io
import os
import stat
import zipfile
from unittest import mock

import pytest

from chromelaunch.fetcher import (
    CUR_REV,
    DEFAULT_HOST,
    Fetcher,
    FetcherOptions,
    FetchError,
    Revision,
    archive_name,
    detect_platform,
    dl_url,
    get_size,
    latest_revision,
    project_data_dir,
)


class FakeResponse:
    def __init__(self, body=b"", headers=None):
        self.body = body
        self.headers = headers or {}

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def raise_for_status(self):
        return None

    def iter_content(self, chunk_size=1):
        for start in range(0, len(self.body), chunk_size):
            yield self.body[start : start + chunk_size]

    @property
    def text(self):
        return self.body.decode()


def make_zip(entries):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, data, mode in entries:
            info = zipfile.ZipInfo(name)
            info.create_system = 3
            info.external_attr = mode << 16
            archive.writestr(info, data)
    return buffer.getvalue()


def local_options(tmp_path):
    return FetcherOptions().with_install_dir(tmp_path).with_allow_standard_dirs(False)


def test_revision_constructors():
    assert Revision.specific("12").value == "12"
    assert not Revision.specific("12").is_latest
    assert Revision.latest().is_latest
    assert Revision.latest() == Revision.latest()


def test_default_options():
    options = FetcherOptions()
    assert options.revision == Revision.specific(CUR_REV)
    assert options.install_dir is None
    assert options.allow_download is True
    assert options.allow_standard_dirs is True


def test_with_methods_return_changed_copies(tmp_path):
    base = FetcherOptions()
    changed = (
        base.with_revision(Revision.latest())
        .with_install_dir(str(tmp_path))
        .with_allow_download(False)
        .with_allow_standard_dirs(False)
    )
    assert changed.revision.is_latest
    assert changed.install_dir == tmp_path
    assert changed.allow_download is False
    assert changed.allow_standard_dirs is False
    assert base == FetcherOptions()
    assert changed.with_install_dir(None).install_dir is None


def test_detect_platform_is_known():
    assert detect_platform() in {"linux", "mac", "mac_arm", "win"}


def test_archive_names():
    assert archive_name("1", "linux") == "chrome-linux"
    assert archive_name("1", "mac") == "chrome-mac"
    assert archive_name("1", "mac_arm") == "chrome-mac"
    assert archive_name("591480", "win") == "chrome-win"
    assert archive_name("591479", "win") == "chrome-win32"


def test_archive_name_windows_needs_numeric_revision():
    with pytest.raises(ValueError):
        archive_name("abc", "win")


def test_unknown_platform_rejected():
    with pytest.raises(FetchError):
        dl_url("1", "amiga")
    with pytest.raises(FetchError):
        Fetcher(platform="amiga")


def test_dl_url_linux():
    assert dl_url(CUR_REV, "linux") == (
        "https://storage.googleapis.com/chromium-browser-snapshots/Linux_x64/1095492/chrome-linux.zip"
    )


@pytest.mark.parametrize(
    "platform, folder, name",
    [("mac", "Mac", "chrome-mac"), ("mac_arm", "Mac_Arm", "chrome-mac"), ("win", "Win_x64", "chrome-win")],
)
def test_dl_url_shape(platform, folder, name):
    url = dl_url(CUR_REV, platform)
    assert url.startswith(DEFAULT_HOST + "/chromium-browser-snapshots/" + folder + "/")
    assert url.endswith(f"/{CUR_REV}/{name}.zip")


def test_project_data_dir_named_for_app():
    assert project_data_dir().name == "headless-chrome"


def test_base_path_finds_nested_install(tmp_path):
    install = tmp_path / "nested" / "linux-77"
    install.mkdir(parents=True)
    (tmp_path / "linux-78").mkdir()
    fetcher = Fetcher(local_options(tmp_path), platform="linux")
    assert fetcher.base_path("77") == install


def test_base_path_ignores_other_platforms(tmp_path):
    (tmp_path / "win-77").mkdir()
    (tmp_path / "linux-77.zip").write_bytes(b"")
    fetcher = Fetcher(local_options(tmp_path), platform="linux")
    with pytest.raises(FetchError):
        fetcher.base_path("77")


def test_chrome_path_per_platform(tmp_path):
    (tmp_path / "linux-5").mkdir()
    (tmp_path / "mac-5").mkdir()
    linux = Fetcher(local_options(tmp_path), platform="linux").chrome_path("5")
    assert linux == tmp_path / "linux-5" / "chrome-linux" / "chrome"
    mac = Fetcher(local_options(tmp_path), platform="mac").chrome_path("5")
    assert mac.parts[-5:] == ("chrome-mac", "Chromium.app", "Contents", "MacOS", "Chromium")


def test_fetch_returns_existing_install_without_download(tmp_path):
    (tmp_path / f"linux-{CUR_REV}").mkdir()
    options = local_options(tmp_path).with_allow_download(False)
    with mock.patch("chromelaunch.fetcher.requests.get") as get:
        path = Fetcher(options, platform="linux").fetch()
    assert path == tmp_path / f"linux-{CUR_REV}" / "chrome-linux" / "chrome"
    assert get.call_count == 0


def test_fetch_without_download_permission_fails(tmp_path):
    options = local_options(tmp_path).with_allow_download(False)
    with pytest.raises(FetchError, match="Could not fetch"):
        Fetcher(options, platform="linux").fetch()


def test_get_size_in_mebibytes():
    response = FakeResponse(headers={"Content-Length": str(5 * 2**20 + 10)})
    with mock.patch("chromelaunch.fetcher.requests.get", return_value=response):
        assert get_size("http://localhost/file.zip") == 5


def test_get_size_without_length_fails():
    with mock.patch("chromelaunch.fetcher.requests.get", return_value=FakeResponse()):
        with pytest.raises(FetchError, match="content length"):
            get_size("http://localhost/file.zip")


def test_latest_revision_reads_last_change():
    with mock.patch(
        "chromelaunch.fetcher.requests.get", return_value=FakeResponse(b"123456")
    ) as get:
        assert latest_revision("linux") == "123456"
    assert get.call_args.args[0].endswith("/Linux_x64/LAST_CHANGE")


def test_download_writes_zip_to_install_dir(tmp_path):
    payload = b"zip-bytes" * 100
    response = FakeResponse(payload, {"Content-Length": str(len(payload))})
    fetcher = Fetcher(local_options(tmp_path / "inst"), platform="linux")
    with mock.patch("chromelaunch.fetcher.requests.get", return_value=response):
        path = fetcher.download("42")
    assert path == tmp_path / "inst" / "linux-42.zip"
    assert path.read_bytes() == payload


def test_download_without_allowed_dir_fails():
    options = FetcherOptions().with_allow_standard_dirs(False)
    response = FakeResponse(headers={"Content-Length": "0"})
    with mock.patch("chromelaunch.fetcher.requests.get", return_value=response):
        with pytest.raises(FetchError, match="No allowed installation directory"):
            Fetcher(options, platform="linux").download("42")


def test_unzip_extracts_and_removes_archive(tmp_path):
    zip_path = tmp_path / "linux-9.zip"
    zip_path.write_bytes(
        make_zip(
            [
                ("chrome-linux/", b"", 0o755 | stat.S_IFDIR),
                ("chrome-linux/chrome", b"binary", 0o755),
                ("chrome-linux/data.txt", b"text", 0o644),
            ]
        )
    )
    fetcher = Fetcher(local_options(tmp_path), platform="linux")
    extracted = fetcher.unzip(zip_path)
    assert extracted == tmp_path / "linux-9"
    assert (extracted / "chrome-linux" / "chrome").read_bytes() == b"binary"
    assert (extracted / "chrome-linux" / "data.txt").read_bytes() == b"text"
    assert not zip_path.exists()
    assert os.stat(extracted / "chrome-linux" / "chrome").st_mode & 0o777 == 0o755


def test_fetch_downloads_and_installs(tmp_path):
    payload = make_zip([("chrome-linux/chrome", b"exe", 0o755)])

    def fake_get(url, **kwargs):
        return FakeResponse(payload, {"Content-Length": str(len(payload))})

    fetcher = Fetcher(local_options(tmp_path).with_revision(Revision.specific("31")), platform="linux")
    with mock.patch("chromelaunch.fetcher.requests.get", side_effect=fake_get):
        path = fetcher.fetch()
    assert path == tmp_path / "linux-31" / "chrome-linux" / "chrome"
    assert path.read_bytes() == b"exe"
    assert not (tmp_path / "linux-31.zip").exists()