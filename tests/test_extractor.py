"""Unpacking .ipk archives and removing installed files."""

import io
import tarfile

import pytest

from tinypkg.core.extractor import (
    AR_MAGIC,
    ExtractionError,
    InstallFlags,
    PackageInstaller,
    read_package_archive,
)
from tinypkg.models.package import Package
from tinypkg.models.source import PackageDestination


def tarball(files: dict[str, tuple[bytes, int]], directories=()) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        for name in directories:
            info = tarfile.TarInfo(name)
            info.type = tarfile.DIRTYPE
            info.mode = 0o755
            tar.addfile(info)
        for name, (data, mode) in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = mode
            tar.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def ar_archive(members: dict[str, bytes]) -> bytes:
    out = io.BytesIO()
    out.write(AR_MAGIC)
    for name, data in members.items():
        header = f"{name + '/':<16}{0:<12}{0:<6}{0:<6}{'100644':<8}{len(data):<10}`\n"
        out.write(header.encode("ascii"))
        out.write(data)
        if len(data) % 2:
            out.write(b"\n")
    return out.getvalue()


def build_ipk(path, control_files, data_files, outer="tar", directories=("./usr", "./usr/bin", "./etc")):
    members = {
        "debian-binary": b"2.0\n",
        "control.tar.gz": tarball(control_files),
        "data.tar.gz": tarball(data_files, directories),
    }
    if outer == "ar":
        path.write_bytes(ar_archive(members))
    else:
        path.write_bytes(tarball({f"./{name}": (data, 0o644) for name, data in members.items()}))
    return path


CONTROL = {
    "./control": (b"Package: hello\nVersion: 1.0\n", 0o644),
    "./conffiles": (b"/etc/hello.conf\n", 0o644),
}

DATA = {
    "./usr/bin/hello": (b"#!/bin/sh\necho hello\n", 0o755),
    "./etc/hello.conf": (b"greeting=hello\n", 0o644),
}


@pytest.fixture
def dest(tmp_path):
    return PackageDestination("root", tmp_path / "root", tmp_path / "lists")


def package_for(dest, archive):
    package = Package(name="hello", architecture="all", upstream_version="1.0")
    package.dest = dest
    package.local_filename = str(archive)
    return package


class TestReadArchive:
    """Outer archive formats"""

    @pytest.mark.parametrize("outer", ["tar", "ar"])
    def test_members(self, tmp_path, outer):
        archive = build_ipk(tmp_path / "hello.ipk", CONTROL, DATA, outer=outer)
        control, data = read_package_archive(archive)
        with tarfile.open(fileobj=io.BytesIO(control)) as tar:
            assert "./control" in tar.getnames()
        with tarfile.open(fileobj=io.BytesIO(data)) as tar:
            assert "./usr/bin/hello" in tar.getnames()

    def test_garbage(self, tmp_path):
        archive = tmp_path / "junk.ipk"
        archive.write_bytes(b"definitely not an archive")
        with pytest.raises(ExtractionError):
            read_package_archive(archive)


class TestPackageInstaller:
    """Unpack, configure and remove"""

    def test_install_unpacked(self, tmp_path, dest):
        archive = build_ipk(tmp_path / "hello.ipk", CONTROL, DATA)
        package = package_for(dest, archive)

        assert PackageInstaller().install_unpacked(package, InstallFlags.NONE) == 0
        assert (dest.root_dir / "usr/bin/hello").read_bytes() == DATA["./usr/bin/hello"][0]
        assert (dest.info_dir / "hello.control").exists()
        assert sorted(package.files) == ["/etc/hello.conf", "/usr/bin/hello"]
        assert package.files_changed
        assert [c.path for c in package.conffiles] == ["/etc/hello.conf"]
        assert package.conffiles[0].md5sum

    def test_missing_archive(self, dest):
        package = Package(name="hello")
        package.dest = dest
        assert PackageInstaller().install_unpacked(package, InstallFlags.NONE) != 0

    def test_configure_runs_postinst(self, tmp_path, dest):
        marker = tmp_path / "configured"
        control = dict(CONTROL)
        control["./postinst"] = (f'#!/bin/sh\necho "$1" > {marker}\n'.encode(), 0o755)
        archive = build_ipk(tmp_path / "hello.ipk", control, DATA)
        package = package_for(dest, archive)
        installer = PackageInstaller()

        assert installer.install_unpacked(package, InstallFlags.NONE) == 0
        assert installer.run_configure_script(package) == 0
        assert marker.read_text().strip() == "configure"

    def test_failing_preinst_aborts(self, tmp_path, dest):
        control = dict(CONTROL)
        control["./preinst"] = (b"#!/bin/sh\nexit 3\n", 0o755)
        archive = build_ipk(tmp_path / "hello.ipk", control, DATA)
        package = package_for(dest, archive)

        assert PackageInstaller().install_unpacked(package, InstallFlags.NONE) == 3
        assert not (dest.root_dir / "usr/bin/hello").exists()

    def test_scripts_can_be_disabled(self, tmp_path, dest):
        control = dict(CONTROL)
        control["./preinst"] = (b"#!/bin/sh\nexit 3\n", 0o755)
        archive = build_ipk(tmp_path / "hello.ipk", control, DATA)
        package = package_for(dest, archive)

        assert PackageInstaller(run_scripts=False).install_unpacked(package, InstallFlags.NONE) == 0

    def test_remove_package(self, tmp_path, dest):
        archive = build_ipk(tmp_path / "hello.ipk", CONTROL, DATA)
        package = package_for(dest, archive)
        installer = PackageInstaller()
        installer.install_unpacked(package, InstallFlags.NONE)

        assert installer.remove_package(package) == 0
        assert not (dest.root_dir / "usr/bin/hello").exists()
        assert not (dest.root_dir / "usr").exists()
        assert not (dest.info_dir / "hello.control").exists()
        assert package.files == []

    def test_modified_conffile_is_kept(self, tmp_path, dest):
        archive = build_ipk(tmp_path / "hello.ipk", CONTROL, DATA)
        package = package_for(dest, archive)
        installer = PackageInstaller()
        installer.install_unpacked(package, InstallFlags.NONE)
        (dest.root_dir / "etc/hello.conf").write_text("greeting=howdy\n")

        assert installer.remove_package(package) == 0
        assert (dest.root_dir / "etc/hello.conf").read_text() == "greeting=howdy\n"

    def test_remove_obsolete_files(self, tmp_path, dest):
        installer = PackageInstaller()
        old = package_for(dest, build_ipk(tmp_path / "old.ipk", CONTROL, DATA))
        installer.install_unpacked(old, InstallFlags.NONE)

        new_data = {"./usr/bin/hello2": (b"#!/bin/sh\n", 0o755)}
        new = package_for(dest, build_ipk(tmp_path / "new.ipk", CONTROL, new_data))
        installer.install_unpacked(new, InstallFlags.UPGRADE)

        installer.remove_obsolete_files(old, new)
        assert not (dest.root_dir / "usr/bin/hello").exists()
        assert (dest.root_dir / "usr/bin/hello2").exists()
