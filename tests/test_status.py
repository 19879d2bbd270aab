"""Status store persistence."""

from tinypkg.core.database import PackageDatabase
from tinypkg.core.status import StatusStore
from tinypkg.models.package import Package, StateFlag, Status, Want
from tinypkg.models.source import PackageDestination


def make(name, version="1.0", status=Status.INSTALLED, want=Want.INSTALL):
    package = Package(name=name, architecture="all")
    package.set_version(version)
    package.status = status
    package.want = want
    return package


def dest_at(root, name="root"):
    return PackageDestination(name, root, root / "lists")


class TestStatusStore:
    """Loading and writing per-destination status files"""

    def test_missing_status_file_means_nothing_installed(self, tmp_path):
        store = StatusStore([dest_at(tmp_path)])
        assert store.load(store.destinations[0]) == []

    def test_round_trip(self, tmp_path):
        dest = dest_at(tmp_path)
        database = PackageDatabase()
        held = make("dropbear", "2022.83-1")
        held.flags = StateFlag.USER | StateFlag.HOLD
        database.add(held, dest)
        database.add(make("zlib", "1.3", status=Status.UNPACKED), dest)
        database.add(make("pending", status=Status.NOT_INSTALLED, want=Want.INSTALL), dest)

        store = StatusStore([dest])
        assert store.write_all(database)

        reloaded = PackageDatabase()
        store.load_into(reloaded)

        def key(p):
            return (p.name, p.version_string, p.architecture, p.want, p.flags, p.status)

        assert sorted(key(p) for p in reloaded.fetch_available()) == sorted(
            key(p) for p in database.fetch_available()
        )
        assert all(p.dest is dest for p in reloaded.fetch_available())

    def test_uninteresting_packages_are_skipped(self, tmp_path):
        dest = dest_at(tmp_path)
        database = PackageDatabase()
        database.add(make("kept"), dest)
        database.add(make("gone", status=Status.NOT_INSTALLED, want=Want.DEINSTALL), dest)
        database.add(make("purged", status=Status.NOT_INSTALLED, want=Want.PURGE), dest)
        database.add(make("unknown", status=Status.NOT_INSTALLED, want=Want.UNKNOWN), dest)

        StatusStore([dest]).write_all(database)
        text = dest.status_file.read_text()
        assert "Package: kept" in text
        for name in ("gone", "purged", "unknown"):
            assert f"Package: {name}" not in text

    def test_package_without_destination_is_reported(self, tmp_path, caplog):
        dest = dest_at(tmp_path)
        database = PackageDatabase()
        database.add(make("orphan"))
        database.add(make("kept"), dest)

        assert StatusStore([dest]).write_all(database)
        assert "orphan has no destination" in caplog.text
        assert "Package: orphan" not in dest.status_file.read_text()

    def test_one_failing_destination_does_not_block_others(self, tmp_path):
        broken_root = tmp_path / "broken"
        broken_root.mkdir()
        (broken_root / "usr").write_text("not a directory")
        broken = dest_at(broken_root, "broken")
        good = dest_at(tmp_path / "good", "good")

        database = PackageDatabase()
        database.add(make("a"), broken)
        database.add(make("b"), good)

        assert not StatusStore([broken, good]).write_all(database)
        assert "Package: b" in good.status_file.read_text()

    def test_rewrite_replaces_previous_file(self, tmp_path):
        dest = dest_at(tmp_path)
        database = PackageDatabase()
        foo = database.add(make("foo"), dest)
        store = StatusStore([dest])
        store.write_all(database)

        foo.status = Status.NOT_INSTALLED
        foo.want = Want.DEINSTALL
        store.write_all(database)
        assert dest.status_file.read_text() == ""

    def test_file_lists(self, tmp_path):
        dest = dest_at(tmp_path)
        database = PackageDatabase()
        foo = database.add(make("foo"), dest)
        foo.files = ["/usr/bin/foo", "/etc/foo.conf"]
        foo.files_changed = True

        store = StatusStore([dest])
        store.write_all(database)
        assert (dest.info_dir / "foo.list").read_text() == "/usr/bin/foo\n/etc/foo.conf\n"
        assert not foo.files_changed

        reloaded = store.load(dest)
        assert reloaded[0].files == ["/usr/bin/foo", "/etc/foo.conf"]

    def test_noaction_writes_nothing(self, tmp_path):
        dest = dest_at(tmp_path)
        database = PackageDatabase()
        database.add(make("foo"), dest)
        assert StatusStore([dest], noaction=True).write_all(database)
        assert not dest.status_file.exists()
