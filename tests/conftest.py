"""
Shared fixtures for the tinypkg test suite.

Provides temporary destination roots, package lists written in control
format, a fake fetch collaborator and an installer that only records
what it was asked to do.
"""

from pathlib import Path

import pytest

from tinypkg.core.config import EngineConfig
from tinypkg.core.downloader import DownloadError
from tinypkg.engine import Engine

FEED_URL = "http://feed.example/packages"


def control_text(records: list[dict]) -> str:
    """Render records as control-format paragraphs."""
    paragraphs = ["\n".join(f"{key}: {value}" for key, value in record.items()) for record in records]
    return "\n\n".join(paragraphs) + "\n"


def pkg_record(name: str, version: str, arch: str = "x86_64", **fields) -> dict:
    """A package list record; extra fields are passed with their control names."""
    record = {
        "Package": name,
        "Version": version,
        "Architecture": arch,
        "Filename": f"{name}_{version}_{arch}.ipk",
    }
    record.update(fields)
    return record


def installed_record(name: str, version: str, arch: str = "x86_64", flags: str = "ok", **fields) -> dict:
    record = {
        "Package": name,
        "Version": version,
        "Architecture": arch,
        "Status": f"install {flags} installed",
    }
    record.update(fields)
    return record


class FakeFetcher:
    """Serves bytes from a URL map; anything else fails."""

    def __init__(self):
        self.files: dict[str, bytes] = {}
        self.failures: set[str] = set()
        self.unreachable: set[str] = set()
        self.calls: list[str] = []
        self.probes: list[str] = []

    def fetch(self, url, dest, progress=None):
        self.calls.append(url)
        if url in self.failures or url not in self.files:
            raise DownloadError(f"Failed to download {url}: HTTP 404")
        dest.parent.mkdir(parents=True, exist_ok=True)
        data = self.files[url]
        dest.write_bytes(data)
        if progress is not None:
            progress(len(data), len(data))
        return dest

    def is_reachable(self, url):
        self.probes.append(url)
        return url not in self.unreachable


class RecordingInstaller:
    """Unpack/configure collaborator that touches nothing on disk."""

    def __init__(self):
        self.unpacked: list[tuple[str, str]] = []
        self.configured: list[str] = []
        self.removed: list[str] = []
        self.replaced: list[tuple[str, str]] = []
        self.fail_unpack: set[str] = set()
        self.fail_configure: set[str] = set()
        self.fail_remove: set[str] = set()

    def install_unpacked(self, package, flags):
        if package.name in self.fail_unpack:
            return 1
        self.unpacked.append((package.name, package.version_string))
        package.files = [f"/usr/bin/{package.name}"]
        package.files_changed = True
        return 0

    def run_configure_script(self, package):
        if package.name in self.fail_configure:
            return 1
        self.configured.append(package.name)
        return 0

    def remove_package(self, package):
        if package.name in self.fail_remove:
            return 1
        self.removed.append(package.name)
        package.files = []
        return 0

    def remove_obsolete_files(self, old, new):
        self.replaced.append((old.version_string, new.version_string))


class Workspace:
    """A throwaway root holding configuration, lists and one destination."""

    def __init__(self, root: Path):
        self.root = root
        self.conf_dir = root / "etc"
        self.dest_root = root / "target"
        self.lists_dir = root / "lists"
        self.tmp_dir = root / "tmp"
        self.fetcher = FakeFetcher()
        self.installer = RecordingInstaller()
        self.sources = [("src", "main", FEED_URL)]
        self.engines: list[Engine] = []

    @property
    def status_file(self) -> Path:
        return self.dest_root / "usr/lib/tinypkg/status"

    def write_conf(self, *extra: str, lock_file: Path | None = None) -> None:
        self.conf_dir.mkdir(parents=True, exist_ok=True)
        lines = [f"{kind} {name} {url}" for kind, name, url in self.sources]
        lines += [
            f"dest root {self.dest_root}",
            f"lists_dir {self.lists_dir}",
            "arch all 1",
            "arch x86_64 10",
            f"option tmp_dir {self.tmp_dir}",
            f"option lock_file {lock_file or self.root / 'tinypkg.lock'}",
            *extra,
        ]
        (self.conf_dir / "tinypkg.conf").write_text("\n".join(lines) + "\n")

    def write_list(self, records: list[dict], source: str = "main") -> None:
        self.lists_dir.mkdir(parents=True, exist_ok=True)
        (self.lists_dir / source).write_text(control_text(records))

    def write_status(self, records: list[dict]) -> None:
        self.status_file.parent.mkdir(parents=True, exist_ok=True)
        self.status_file.write_text(control_text(records))

    def serve(self, *records: dict) -> None:
        """Make the archives of list records downloadable."""
        for record in records:
            url = f"{FEED_URL}/{record['Filename']}"
            self.fetcher.files[url] = f"archive of {record['Package']}".encode()

    def package_url(self, record: dict) -> str:
        return f"{FEED_URL}/{record['Filename']}"

    def engine(self, **kwargs) -> Engine:
        if not (self.conf_dir / "tinypkg.conf").exists():
            self.write_conf()
        config = EngineConfig.load(conf_dir=self.conf_dir)
        kwargs.setdefault("fetcher", self.fetcher)
        kwargs.setdefault("installer", self.installer)
        engine = Engine(config, **kwargs)
        self.engines.append(engine)
        return engine

    def close(self) -> None:
        for engine in self.engines:
            engine.close()


@pytest.fixture
def workspace(tmp_path):
    """Temporary root with its own configuration, lists and destination."""
    ws = Workspace(tmp_path)
    yield ws
    ws.close()
