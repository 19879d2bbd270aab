"""Package database indexing and candidate selection."""

from pathlib import Path

import pytest

from tinypkg.core.database import DuplicatePackageError, PackageDatabase
from tinypkg.models.package import Package, Status
from tinypkg.models.source import PackageDestination, PackageSource

ARCHES = {"all": 1, "x86_64": 10}


def make(name, version, arch="x86_64", status=Status.NOT_INSTALLED):
    package = Package(name=name, architecture=arch)
    package.set_version(version)
    package.status = status
    return package


@pytest.fixture
def sources():
    return [PackageSource("first", "http://a.example"), PackageSource("second", "http://b.example")]


@pytest.fixture
def dest(tmp_path):
    return PackageDestination("root", tmp_path, tmp_path / "lists")


@pytest.fixture
def database(sources):
    return PackageDatabase(ARCHES, sources)


class TestAdd:
    """Insertion and duplicate handling"""

    def test_duplicate_is_rejected(self, database, sources):
        database.add(make("foo", "1.0"), sources[0])
        with pytest.raises(DuplicatePackageError):
            database.add(make("foo", "1.0"), sources[0])

    def test_same_version_from_other_origin_is_kept(self, database, sources, dest):
        database.add(make("foo", "1.0"), sources[0])
        database.add(make("foo", "1.0"), sources[1])
        database.add(make("foo", "1.0", status=Status.INSTALLED), dest)
        assert len(list(database.variants("foo"))) == 3

    def test_add_all_skips_duplicates(self, database, sources):
        added = database.add_all([make("foo", "1.0"), make("foo", "1.0"), make("bar", "1.0")], sources[0])
        assert added == 2
        assert len(database) == 2

    def test_indices_are_stable(self, database, sources):
        foo = database.add(make("foo", "1.0"), sources[0])
        bar = database.add(make("bar", "1.0"), sources[0])
        assert database.get(foo.index) is foo
        assert database.get(bar.index) is bar
        assert foo.group.name == "foo"


class TestQueries:
    """Installed lookups and best-candidate selection"""

    def test_best_candidate_skips_installed(self, database, sources, dest):
        database.add(make("foo", "2.0", status=Status.INSTALLED), dest)
        older = database.add(make("foo", "1.0"), sources[0])
        assert database.fetch_best_candidate("foo") is older

    def test_best_candidate_is_highest_version(self, database, sources):
        database.add(make("foo", "1.0"), sources[0])
        newest = database.add(make("foo", "1:0.1"), sources[1])
        database.add(make("foo", "2.0~rc1"), sources[1])
        assert database.fetch_best_candidate("foo") is newest

    def test_architecture_priority_wins_over_version(self, database, sources):
        native = database.add(make("foo", "1.0", arch="x86_64"), sources[0])
        database.add(make("foo", "2.0", arch="all"), sources[0])
        assert database.fetch_best_candidate("foo") is native

    def test_unsupported_architecture_is_ineligible(self, database, sources):
        database.add(make("foo", "9.0", arch="mips"), sources[0])
        assert database.fetch_best_candidate("foo") is None

    def test_earlier_source_wins_ties(self, database, sources):
        database.add(make("foo", "1.0"), sources[1])
        first = database.add(make("foo", "1.0"), sources[0])
        assert database.fetch_best_candidate("foo") is first

    def test_unknown_name(self, database):
        assert database.fetch_best_candidate("nope") is None
        assert database.fetch_installed_by_name("nope") is None

    def test_installed_by_name_and_destination(self, database, tmp_path):
        root = PackageDestination("root", tmp_path / "a", tmp_path / "lists")
        ram = PackageDestination("ram", tmp_path / "b", tmp_path / "lists")
        in_root = database.add(make("foo", "1.0", status=Status.INSTALLED), root)
        in_ram = database.add(make("foo", "2.0", status=Status.INSTALLED), ram)

        assert database.fetch_installed_by_name("foo", root) is in_root
        assert database.fetch_installed_by_name("foo", ram) is in_ram
        assert database.fetch_installed_by_name("foo") is not None

    def test_fetch_by_name_version(self, database, sources):
        database.add(make("foo", "1.0"), sources[0])
        wanted = database.add(make("foo", "1.0", arch="all"), sources[1])
        assert database.fetch_by_name_version("foo", "1.0", architecture="all") is wanted
        assert database.fetch_by_name_version("foo", "1.0", repository="second") is wanted
        assert database.fetch_by_name_version("foo", "2.0") is None

    def test_mark_installed_and_removed(self, database, sources):
        foo = database.add(make("foo", "1.0"), sources[0])
        foo.status = Status.INSTALLED
        database.mark_installed(foo)
        assert database.fetch_installed_by_name("foo") is foo
        foo.status = Status.NOT_INSTALLED
        database.mark_removed(foo)
        assert database.fetch_installed_by_name("foo") is None


class TestDiscardSource:
    """Dropping one source's generation of variants"""

    def test_discard_keeps_other_sources_and_installed(self, database, sources, dest):
        gone = database.add(make("foo", "2.0"), sources[0])
        kept = database.add(make("foo", "1.5"), sources[1])
        installed = database.add(make("foo", "1.0", status=Status.INSTALLED), dest)

        assert database.discard_source(sources[0]) == 1
        assert database.get(gone.index) is None
        assert database.get(installed.index) is installed
        assert database.fetch_best_candidate("foo") is kept
        assert database.generation == 1

        # Same key may be added again after the discard
        database.add(make("foo", "2.0"), sources[0])
