"""Package archive extraction, maintainer scripts and file removal."""

import io
import logging
import os
import stat
import subprocess
import tarfile
from collections.abc import Iterator
from enum import Flag
from pathlib import Path

from debian import arfile

from tinypkg.core.checksum import calculate_md5
from tinypkg.models.package import Conffile, Package

logger = logging.getLogger(__name__)

AR_MAGIC = b"!<arch>\n"

INFO_SUFFIXES = ("list", "control", "conffiles", "preinst", "postinst", "prerm", "postrm")
SCRIPTS = {"preinst", "postinst", "prerm", "postrm"}


class ExtractionError(Exception):
    """Error during extraction."""

    pass


class InstallFlags(Flag):
    NONE = 0
    UPGRADE = 1
    REINSTALL = 2


def make_executable(path: Path) -> None:
    """Make a file executable."""
    current = path.stat().st_mode
    path.chmod(current | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def _iter_ar_members(archive_path: Path) -> Iterator[tuple[str, bytes]]:
    try:
        archive = arfile.ArFile(str(archive_path))
    except arfile.ArError as e:
        raise ExtractionError(f"{archive_path} is not a valid ar archive: {e}")
    for member in archive.getmembers():
        yield member.name.rstrip("/"), member.read()


def read_package_archive(archive_path: Path) -> tuple[bytes, bytes]:
    """Return the (control, data) tarballs of an .ipk archive.

    Both the ar and the gzip-tar outer formats are accepted.
    """
    members: dict[str, bytes] = {}
    try:
        with open(archive_path, "rb") as f:
            is_ar = f.read(len(AR_MAGIC)) == AR_MAGIC

        if is_ar:
            members = dict(_iter_ar_members(archive_path))
        else:
            with tarfile.open(archive_path, "r:*") as outer:
                for member in outer.getmembers():
                    if not member.isfile():
                        continue
                    extracted = outer.extractfile(member)
                    if extracted is not None:
                        members[Path(member.name).name] = extracted.read()
    except (tarfile.TarError, OSError) as e:
        raise ExtractionError(f"Failed to read {archive_path}: {e}")

    control = next((data for name, data in members.items() if name.startswith("control.tar")), None)
    payload = next((data for name, data in members.items() if name.startswith("data.tar")), None)
    if control is None or payload is None:
        raise ExtractionError(f"{archive_path} is missing its control or data member")
    return control, payload


def _member_path(name: str) -> str:
    if name.startswith("./"):
        name = name[2:]
    return "/" + name.strip("/")


class PackageInstaller:
    """Default unpack/configure collaborator for .ipk archives.

    Every public method returns 0 on success and a non-zero status code
    otherwise.
    """

    def __init__(self, run_scripts: bool = True):
        self.run_scripts = run_scripts

    def _info_file(self, package: Package, suffix: str) -> Path:
        return package.dest.info_dir / f"{package.name}.{suffix}"

    def _run_script(self, package: Package, script: str, *args: str) -> int:
        path = self._info_file(package, script)
        if not self.run_scripts or not path.exists():
            return 0

        env = dict(os.environ, PKG_ROOT=str(package.dest.root_dir))
        logger.info(f"Running {script} {' '.join(args)} for {package.name}")
        try:
            result = subprocess.run(
                [str(path), *args],
                cwd=package.dest.root_dir,
                env=env,
                capture_output=True,
                text=True,
            )
        except OSError as e:
            logger.error(f"Failed to run {script} for {package.name}: {e}")
            return 1

        if result.returncode != 0:
            logger.error(
                f"{package.name} {script} returned status {result.returncode}: "
                f"{result.stderr.strip()}"
            )
        return result.returncode

    def install_unpacked(self, package: Package, flags: InstallFlags = InstallFlags.NONE) -> int:
        """Unpack a downloaded archive into its destination root."""
        if package.dest is None or not package.local_filename:
            logger.error(f"Internal error: {package.name} has no destination or archive")
            return 1

        try:
            control, payload = read_package_archive(Path(package.local_filename))
            self._unpack_control(package, control)
        except ExtractionError as e:
            logger.error(str(e))
            return 1

        status = self._run_script(
            package, "preinst", "upgrade" if InstallFlags.UPGRADE in flags else "install"
        )
        if status:
            return status

        try:
            package.files = self._unpack_data(package, payload)
        except ExtractionError as e:
            logger.error(str(e))
            return 1

        package.files_changed = True
        package.conffiles = self._read_conffiles(package)
        return 0

    def _unpack_control(self, package: Package, control: bytes) -> None:
        info_dir = package.dest.info_dir
        info_dir.mkdir(parents=True, exist_ok=True)
        try:
            with tarfile.open(fileobj=io.BytesIO(control), mode="r:*") as tar:
                for member in tar.getmembers():
                    if not member.isfile():
                        continue
                    name = Path(member.name).name
                    extracted = tar.extractfile(member)
                    if extracted is None:
                        continue
                    target = self._info_file(package, name)
                    target.write_bytes(extracted.read())
                    if name in SCRIPTS:
                        make_executable(target)
        except (tarfile.TarError, OSError) as e:
            raise ExtractionError(f"Failed to unpack control data of {package.name}: {e}")

    def _unpack_data(self, package: Package, payload: bytes) -> list[str]:
        root = package.dest.root_dir
        root.mkdir(parents=True, exist_ok=True)
        try:
            with tarfile.open(fileobj=io.BytesIO(payload), mode="r:*") as tar:
                members = tar.getmembers()
                tar.extractall(root, filter="data")
        except (tarfile.TarError, OSError) as e:
            raise ExtractionError(f"Failed to unpack {package.name}: {e}")

        return [_member_path(m.name) for m in members if not m.isdir()]

    def _read_conffiles(self, package: Package) -> list[Conffile]:
        listing = self._info_file(package, "conffiles")
        if not listing.exists():
            return []
        conffiles = []
        for line in listing.read_text(encoding="utf-8").splitlines():
            path = line.strip()
            if not path:
                continue
            on_disk = package.dest.root_dir / path.lstrip("/")
            md5 = calculate_md5(on_disk) if on_disk.is_file() else ""
            conffiles.append(Conffile(path=path, md5sum=md5))
        return conffiles

    def run_configure_script(self, package: Package) -> int:
        return self._run_script(package, "postinst", "configure")

    def _is_modified_conffile(self, package: Package, path: Path, name: str) -> bool:
        for conffile in package.conffiles:
            if conffile.path == name:
                return path.is_file() and calculate_md5(path) != conffile.md5sum
        return False

    def _delete_files(self, package: Package, names: list[str]) -> None:
        root = package.dest.root_dir
        parents: set[Path] = set()
        for name in sorted(names, reverse=True):
            path = root / name.lstrip("/")
            if self._is_modified_conffile(package, path, name):
                logger.info(f"Keeping modified conffile {name}")
                continue
            if path.is_file() or path.is_symlink():
                path.unlink()
                parents.update(p for p in path.parents if p != root and root in p.parents)

        # Deepest first, so nested empty directories collapse
        for directory in sorted(parents, key=lambda p: len(p.parts), reverse=True):
            try:
                directory.rmdir()
            except OSError:
                pass  # not empty, still in use by another package

    def remove_obsolete_files(self, old: Package, new: Package) -> None:
        """Delete files the previous version owned that the new one does not."""
        if old.dest is None:
            return
        obsolete = sorted(set(old.files) - set(new.files))
        if obsolete:
            self._delete_files(old, obsolete)

    def remove_package(self, package: Package) -> int:
        """Run removal scripts and delete everything the package owns."""
        if package.dest is None:
            logger.error(f"Internal error: {package.name} has no destination")
            return 1

        status = self._run_script(package, "prerm", "remove")
        if status:
            return status

        try:
            self._delete_files(package, package.files)
        except OSError as e:
            logger.error(f"Failed to remove files of {package.name}: {e}")
            return 1

        if self._run_script(package, "postrm", "remove"):
            logger.warning(f"postrm of {package.name} failed, continuing")

        for suffix in INFO_SUFFIXES:
            self._info_file(package, suffix).unlink(missing_ok=True)
        package.files = []
        return 0
