"""Repository sources and install destinations."""

from dataclasses import dataclass
from pathlib import Path


STATE_DIR = Path("usr/lib/tinypkg")


@dataclass
class PackageSource:
    """A configured repository that package lists are fetched from."""

    name: str
    url: str
    subpath: str | None = None
    gzip: bool = False

    @property
    def list_name(self) -> str:
        return "Packages.gz" if self.gzip else "Packages"

    @property
    def base_url(self) -> str:
        base = self.url.rstrip("/")
        if self.subpath:
            base = f"{base}/{self.subpath.strip('/')}"
        return base

    @property
    def list_url(self) -> str:
        return f"{self.base_url}/{self.list_name}"

    @property
    def signature_url(self) -> str:
        return f"{self.base_url}/Packages.sig"

    def package_url(self, filename: str) -> str:
        """URL of a package archive; filenames are relative to the feed URL."""
        return f"{self.url.rstrip('/')}/{filename.lstrip('/')}"


@dataclass
class PackageDestination:
    """An install root plus its status-file location."""

    name: str
    root_dir: Path
    lists_dir: Path

    @property
    def state_dir(self) -> Path:
        return self.root_dir / STATE_DIR

    @property
    def status_file(self) -> Path:
        return self.state_dir / "status"

    @property
    def info_dir(self) -> Path:
        return self.state_dir / "info"
