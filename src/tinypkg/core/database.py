"""In-memory index of every known package variant."""

import logging
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field

from tinypkg.core.version import compare
from tinypkg.models.package import Package
from tinypkg.models.source import PackageDestination, PackageSource

logger = logging.getLogger(__name__)


class DuplicatePackageError(Exception):
    """A variant with the same name, version, architecture and origin exists."""

    pass


@dataclass(eq=False)
class PackageGroup:
    """All variants sharing one name and architecture."""

    name: str
    architecture: str
    variants: list[int] = field(default_factory=list)
    installed: int | None = None


class PackageDatabase:
    """Name-keyed index over a stable-indexed arena of packages.

    Packages are addressed by their arena index, which never changes for
    the lifetime of the database. Discarding a source leaves a hole in the
    arena rather than shifting later entries.
    """

    def __init__(
        self,
        arch_priorities: dict[str, int] | None = None,
        sources: Iterable[PackageSource] = (),
    ):
        self.arch_priorities = dict(arch_priorities or {})
        self._arena: list[Package | None] = []
        self._index: dict[str, dict[str, PackageGroup]] = {}
        self._keys: set[tuple[str, str, str, str]] = set()
        self._source_order: dict[str, int] = {}
        self.generation = 0
        for source in sources:
            self.register_source(source)

    def __len__(self) -> int:
        return sum(1 for pkg in self._arena if pkg is not None)

    def register_source(self, source: PackageSource) -> None:
        """Record declaration order, used to break candidate ties."""
        self._source_order.setdefault(source.name, len(self._source_order))

    def get(self, index: int) -> Package | None:
        if 0 <= index < len(self._arena):
            return self._arena[index]
        return None

    def add(
        self,
        package: Package,
        origin: PackageSource | PackageDestination | None = None,
    ) -> Package:
        """Insert a variant, attaching it to its source or destination.

        Raises DuplicatePackageError when the (name, version, architecture,
        origin) key is already present.
        """
        if isinstance(origin, PackageSource):
            package.source = origin
            self.register_source(origin)
        elif isinstance(origin, PackageDestination):
            package.dest = origin

        key = (package.name, package.version_string, package.architecture, package.origin)
        if key in self._keys:
            raise DuplicatePackageError(
                f"Duplicate package {package} from {package.origin or 'nowhere'}"
            )

        group = self._group_for(package.name, package.architecture)
        package.index = len(self._arena)
        package.group = group
        self._arena.append(package)
        self._keys.add(key)
        group.variants.append(package.index)

        if package.is_installed:
            current = self.get(group.installed) if group.installed is not None else None
            if current is not None and current.dest is package.dest:
                logger.error(
                    f"Package {package.name} installed twice in {package.dest.name}, "
                    f"keeping {current.version_string}"
                )
            else:
                group.installed = package.index

        return package

    def add_all(
        self,
        packages: Iterable[Package],
        origin: PackageSource | PackageDestination | None = None,
    ) -> int:
        """Insert many variants; duplicates are logged and skipped."""
        added = 0
        for package in packages:
            try:
                self.add(package, origin)
                added += 1
            except DuplicatePackageError as e:
                logger.info(str(e))
        return added

    def _group_for(self, name: str, architecture: str) -> PackageGroup:
        by_arch = self._index.setdefault(name, {})
        group = by_arch.get(architecture)
        if group is None:
            group = PackageGroup(name=name, architecture=architecture)
            by_arch[architecture] = group
        return group

    def groups(self, name: str) -> list[PackageGroup]:
        return list(self._index.get(name, {}).values())

    def variants(self, name: str) -> Iterator[Package]:
        """Every live variant of a name, across architectures."""
        for group in self._index.get(name, {}).values():
            for index in group.variants:
                package = self._arena[index]
                if package is not None:
                    yield package

    def fetch_available(self) -> list[Package]:
        """All known variants, in insertion order."""
        return [pkg for pkg in self._arena if pkg is not None]

    def fetch_all_installed(self, dest: PackageDestination | None = None) -> list[Package]:
        return [
            pkg
            for pkg in self.fetch_available()
            if pkg.is_installed and (dest is None or pkg.dest is dest)
        ]

    def fetch_installed_by_name(
        self, name: str, dest: PackageDestination | None = None
    ) -> Package | None:
        """The variant of `name` currently installed, optionally in one destination."""
        for group in self.groups(name):
            if group.installed is None:
                continue
            package = self._arena[group.installed]
            if package is None or not package.is_installed:
                continue
            if dest is None or package.dest is dest:
                return package
        if dest is not None:
            # Groups only remember one installed variant; fall back to a scan
            for package in self.variants(name):
                if package.is_installed and package.dest is dest:
                    return package
        return None

    def fetch_present_by_name(self, name: str) -> Package | None:
        """Installed, or unpacked earlier in the current transaction."""
        installed = self.fetch_installed_by_name(name)
        if installed is not None:
            return installed
        for package in self.variants(name):
            if package.is_present:
                return package
        return None

    def fetch_providers(self, name: str) -> list[Package]:
        """Variants whose Provides field names `name`."""
        providers = []
        for package in self.fetch_available():
            for entry in package.provides:
                if entry.split("(", 1)[0].strip() == name:
                    providers.append(package)
                    break
        return providers

    def arch_priority(self, package: Package) -> int | None:
        """Priority of a package's architecture, None if unsupported."""
        if not self.arch_priorities or not package.architecture:
            return 0
        return self.arch_priorities.get(package.architecture)

    def _candidate_cmp(self, a: Package, b: Package) -> int:
        """Positive when `a` is the better installation candidate."""
        pa = self.arch_priority(a) or 0
        pb = self.arch_priority(b) or 0
        if pa != pb:
            return pa - pb
        result = int(compare(a.version, b.version))
        if result:
            return result
        # Earlier declared source wins; installed-only records come last
        return self._source_rank(b) - self._source_rank(a)

    def _source_rank(self, package: Package) -> int:
        last = len(self._source_order)
        if package.source is None:
            return last
        return self._source_order.get(package.source.name, last)

    def best_of(self, candidates: Iterable[Package]) -> Package | None:
        best = None
        for package in candidates:
            if package.is_present or self.arch_priority(package) is None:
                continue
            if best is None or self._candidate_cmp(package, best) > 0:
                best = package
        return best

    def fetch_best_candidate(
        self,
        name: str,
        accept: Callable[[Package], bool] | None = None,
    ) -> Package | None:
        """Best non-installed variant of `name`.

        Ranked by architecture priority, then version, then source
        declaration order. `accept` narrows the eligible variants.
        """
        candidates = self.variants(name)
        if accept is not None:
            candidates = (pkg for pkg in candidates if accept(pkg))
        return self.best_of(candidates)

    def fetch_by_name_version(
        self,
        name: str,
        version: str,
        architecture: str | None = None,
        repository: str | None = None,
    ) -> Package | None:
        """Exact lookup of a previously displayed selection."""
        for package in self.variants(name):
            if package.version_string != version:
                continue
            if architecture is not None and package.architecture != architecture:
                continue
            if repository is not None and (
                package.source is None or package.source.name != repository
            ):
                continue
            return package
        return None

    def mark_installed(self, package: Package) -> None:
        """Make `package` the installed variant of its group."""
        if package.group is not None:
            package.group.installed = package.index

    def mark_removed(self, package: Package) -> None:
        group = package.group
        if group is not None and group.installed == package.index:
            group.installed = None

    def discard_source(self, source: PackageSource) -> int:
        """Drop every variant that came from `source`.

        Variants loaded from status files are untouched.
        """
        removed = 0
        for index, package in enumerate(self._arena):
            if package is None or package.source is not source:
                continue
            if package.is_present:
                # Keep what is on disk; only the list generation goes away
                continue
            group = package.group
            group.variants.remove(index)
            if group.installed == index:
                group.installed = None
            self._keys.discard(
                (package.name, package.version_string, package.architecture, package.origin)
            )
            self._arena[index] = None
            removed += 1
        self.generation += 1
        return removed
