"""Active lists: ordered, non-owning selections of packages."""

from collections.abc import Iterator

from tinypkg.core.database import PackageDatabase
from tinypkg.models.package import Package
from tinypkg.models.source import PackageDestination


class ActiveList:
    """Packages selected for a pass, stored as database arena indices.

    Membership is independent of the database: adding or removing an entry
    never touches the package itself. Entries whose package was discarded
    by a list reload are skipped during traversal.
    """

    def __init__(self, database: PackageDatabase):
        self.database = database
        self._indices: list[int] = []

    def __len__(self) -> int:
        return sum(1 for _ in self)

    def __contains__(self, package: Package) -> bool:
        return self._owns(package) and package.index in self._indices

    def __iter__(self) -> Iterator[Package]:
        for index in list(self._indices):
            package = self.database.get(index)
            if package is not None:
                yield package

    def _owns(self, package: Package) -> bool:
        return self.database.get(package.index) is package

    def add(self, package: Package) -> None:
        if not self._owns(package):
            raise ValueError(f"{package} does not belong to this database")
        if package.index not in self._indices:
            self._indices.append(package.index)

    def remove(self, package: Package) -> bool:
        if package not in self:
            return False
        self._indices.remove(package.index)
        return True

    def toggle(self, package: Package) -> bool:
        """Remove the package if listed, add it otherwise.

        Returns True when the package is listed afterwards.
        """
        if self.remove(package):
            return False
        self.add(package)
        return True

    def delete(self) -> None:
        """Drop the list structure; packages are left as they are."""
        self._indices.clear()


def prepare_upgrade_list(
    database: PackageDatabase,
    dest: PackageDestination | None = None,
) -> ActiveList:
    """Every installed package, in database order.

    Whether a newer candidate exists is decided per entry by the caller.
    """
    active = ActiveList(database)
    for package in database.fetch_all_installed(dest):
        active.add(package)
    return active
