"""Status file management for tracking installed packages."""

import logging
import os
import tempfile
from collections.abc import Iterable
from pathlib import Path

from tinypkg.core.control import iter_packages, write_status_records
from tinypkg.core.database import PackageDatabase
from tinypkg.models.package import Package, Status, Want
from tinypkg.models.source import PackageDestination

logger = logging.getLogger(__name__)


class StatusError(Exception):
    """Error reading or writing a status file."""

    pass


def _persistable(package: Package) -> bool:
    """Most uninstalled packages have nothing worth recording."""
    return not (
        package.status == Status.NOT_INSTALLED
        and package.want in (Want.UNKNOWN, Want.DEINSTALL, Want.PURGE)
    )


def _atomic_write_text(path: Path, writer) -> None:
    """Write through a temporary file so a crash leaves the old file intact."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            writer(f)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def filelist_path(package: Package) -> Path:
    return package.dest.info_dir / f"{package.name}.list"


class StatusStore:
    """Loads and persists the installed state of every destination."""

    def __init__(self, destinations: Iterable[PackageDestination], noaction: bool = False):
        self.destinations = list(destinations)
        self.noaction = noaction

    def load(self, dest: PackageDestination) -> list[Package]:
        """Read one destination's status file.

        A missing status file means nothing is installed there yet.
        """
        if not dest.status_file.exists():
            return []

        try:
            with open(dest.status_file, encoding="utf-8") as f:
                packages = list(iter_packages(f))
        except OSError as e:
            raise StatusError(f"Failed to read {dest.status_file}: {e}") from e

        for package in packages:
            package.dest = dest
            self._load_filelist(package)
        logger.debug(f"Loaded {len(packages)} status records from {dest.status_file}")
        return packages

    def load_into(self, database: PackageDatabase) -> None:
        """Merge every destination's status records into the database."""
        for dest in self.destinations:
            try:
                packages = self.load(dest)
            except StatusError as e:
                logger.error(str(e))
                continue
            database.add_all(packages, dest)

    def _load_filelist(self, package: Package) -> None:
        path = filelist_path(package)
        if not path.exists():
            return
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
            package.files = [line for line in lines if line.strip()]
        except OSError as e:
            logger.warning(f"Could not read file list {path}: {e}")

    def write_all(self, database: PackageDatabase) -> bool:
        """Regenerate every destination's status file from memory.

        Each file is fully rewritten. A failure on one destination is
        logged and does not prevent writing the others. Returns True when
        every file was written.
        """
        if self.noaction:
            return True

        records: dict[str, list[Package]] = {dest.name: [] for dest in self.destinations}
        for package in database.fetch_available():
            if not _persistable(package):
                continue
            if package.dest is None:
                logger.error(f"Internal error: package {package.name} has no destination")
                continue
            if package.dest.name not in records:
                logger.error(
                    f"Internal error: package {package.name} belongs to "
                    f"unknown destination {package.dest.name}"
                )
                continue
            records[package.dest.name].append(package)

        ok = True
        for dest in self.destinations:
            packages = records[dest.name]
            try:
                _atomic_write_text(
                    dest.status_file,
                    lambda f, packages=packages: write_status_records(packages, f),
                )
            except OSError as e:
                logger.error(f"Can't write status file {dest.status_file}: {e}")
                ok = False

        if not self.write_changed_filelists(database):
            ok = False
        return ok

    def write_changed_filelists(self, database: PackageDatabase) -> bool:
        ok = True
        for package in database.fetch_available():
            if not package.files_changed or package.dest is None or not package.is_present:
                continue
            path = filelist_path(package)
            try:
                _atomic_write_text(
                    path,
                    lambda f, files=package.files: f.writelines(f"{name}\n" for name in files),
                )
                package.files_changed = False
            except OSError as e:
                logger.error(f"Can't write file list {path}: {e}")
                ok = False
        return ok
