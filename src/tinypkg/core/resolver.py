"""Dependency resolution.

Greedy, breadth-first expansion of Depends/Pre-Depends: each clause is
satisfied by what is already on the system, by something already chosen
in this pass, or else by the best installation candidate. The first
match wins and choices are never revisited.
"""

import logging
import re
from collections import deque
from dataclasses import dataclass, field

from tinypkg.core.database import PackageDatabase
from tinypkg.core.version import Version, VersionError, compare
from tinypkg.models.package import Package

logger = logging.getLogger(__name__)


class ClauseError(ValueError):
    """A dependency clause could not be parsed."""

    pass


_RELATION_PATTERN = re.compile(
    r"^\s*(?P<name>[^\s(|]+)\s*"
    r"(?:\(\s*(?P<op><<|<=|>=|>>|=|<|>)\s*(?P<version>[^\s)]+)\s*\))?\s*$"
)

# Legacy single-character operators mean "or equal"
_OPERATORS = {
    "<<": lambda c: c < 0,
    "<=": lambda c: c <= 0,
    "<": lambda c: c <= 0,
    "=": lambda c: c == 0,
    ">=": lambda c: c >= 0,
    ">": lambda c: c >= 0,
    ">>": lambda c: c > 0,
}


@dataclass(frozen=True)
class Relation:
    """A package name with an optional version constraint."""

    name: str
    op: str | None = None
    version: Version | None = None

    @classmethod
    def parse(cls, text: str) -> "Relation":
        match = _RELATION_PATTERN.match(text)
        if match is None:
            raise ClauseError(f"Invalid relation: {text!r}")
        name = match.group("name").split(":", 1)[0]
        if match.group("op") is None:
            return cls(name=name)
        try:
            version = Version.parse(match.group("version"))
        except VersionError as e:
            raise ClauseError(f"Invalid version in {text!r}: {e}") from e
        return cls(name=name, op=match.group("op"), version=version)

    def matches_version(self, version: Version) -> bool:
        if self.op is None:
            return True
        return _OPERATORS[self.op](int(compare(version, self.version)))

    def satisfied_by(self, package: Package) -> bool:
        """True when the package itself, or one of its Provides, fits."""
        if package.name == self.name and self.matches_version(package.version):
            return True
        return any(self._provided_by(entry) for entry in package.provides)

    def _provided_by(self, entry: str) -> bool:
        try:
            provided = Relation.parse(entry)
        except ClauseError:
            return False
        if provided.name != self.name:
            return False
        if self.op is None:
            return True
        # An unversioned Provides never satisfies a versioned clause
        if provided.op != "=" or provided.version is None:
            return False
        return self.matches_version(provided.version)


@dataclass(frozen=True)
class Clause:
    """One dependency expression, possibly with '|' alternatives."""

    text: str
    alternatives: tuple[Relation, ...]

    @classmethod
    def parse(cls, text: str) -> "Clause":
        parts = text.split("|")
        if not text.strip() or any(not part.strip() for part in parts):
            raise ClauseError(f"Invalid clause: {text!r}")
        return cls(text=text.strip(), alternatives=tuple(Relation.parse(p) for p in parts))

    def satisfied_by(self, package: Package) -> bool:
        return any(rel.satisfied_by(package) for rel in self.alternatives)


@dataclass
class Resolution:
    """Packages to fetch, in discovery order, and clauses left unsatisfied."""

    packages: list[Package] = field(default_factory=list)
    unresolved: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.unresolved


class DependencyResolver:
    """Expands a target into the packages it still needs."""

    def __init__(self, database: PackageDatabase):
        self.database = database

    def resolve(self, target: Package) -> Resolution:
        """Transitive closure of the target's unsatisfied dependencies.

        The target itself is not part of the result. Visited state lives
        only for the duration of this call.
        """
        providers = self._provides_index()
        visited: set[tuple[str, str]] = {target.group_key}
        chosen: list[Package] = [target]
        result = Resolution()

        queue = deque([target])
        while queue:
            package = queue.popleft()
            for text in package.pre_depends + package.depends:
                try:
                    clause = Clause.parse(text)
                except ClauseError as e:
                    logger.error(f"{package.name}: {e}")
                    result.unresolved.append(text)
                    continue

                if self._satisfied(clause, chosen, providers):
                    continue

                candidate = self._candidate(clause, providers)
                if candidate is None or candidate.group_key in visited:
                    logger.error(f"Cannot satisfy dependency {clause.text!r} of {package.name}")
                    result.unresolved.append(text)
                    continue

                visited.add(candidate.group_key)
                chosen.append(candidate)
                result.packages.append(candidate)
                queue.append(candidate)

        return result

    def _provides_index(self) -> dict[str, list[Package]]:
        index: dict[str, list[Package]] = {}
        for package in self.database.fetch_available():
            for entry in package.provides:
                try:
                    name = Relation.parse(entry).name
                except ClauseError:
                    continue
                index.setdefault(name, []).append(package)
        return index

    def _satisfied(
        self,
        clause: Clause,
        chosen: list[Package],
        providers: dict[str, list[Package]],
    ) -> bool:
        for relation in clause.alternatives:
            present = self.database.fetch_present_by_name(relation.name)
            if present is not None and relation.satisfied_by(present):
                return True
            for provider in providers.get(relation.name, []):
                if provider.is_present and relation.satisfied_by(provider):
                    return True
            if any(relation.satisfied_by(pkg) for pkg in chosen):
                return True
        return False

    def _candidate(
        self,
        clause: Clause,
        providers: dict[str, list[Package]],
    ) -> Package | None:
        for relation in clause.alternatives:
            candidate = self.database.fetch_best_candidate(
                relation.name,
                accept=relation.satisfied_by,
            )
            if candidate is not None:
                return candidate
        for relation in clause.alternatives:
            candidate = self.database.best_of(
                pkg for pkg in providers.get(relation.name, []) if relation.satisfied_by(pkg)
            )
            if candidate is not None:
                return candidate
        return None
