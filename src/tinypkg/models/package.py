"""Package data model."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, Flag
from typing import TYPE_CHECKING

from tinypkg.core.version import Version

if TYPE_CHECKING:
    from tinypkg.core.database import PackageGroup
    from tinypkg.models.source import PackageDestination, PackageSource


class Want(str, Enum):
    """What the administrator wants done with a package."""

    UNKNOWN = "unknown"
    INSTALL = "install"
    DEINSTALL = "deinstall"
    PURGE = "purge"

    @classmethod
    def from_str(cls, value: str) -> "Want":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class Status(str, Enum):
    """Where a package is in its install lifecycle."""

    NOT_INSTALLED = "not-installed"
    UNPACKED = "unpacked"
    INSTALLED = "installed"
    HALF_INSTALLED = "half-installed"
    CONFIG_FILES = "config-files"

    @classmethod
    def from_str(cls, value: str) -> "Status":
        try:
            return cls(value)
        except ValueError:
            return cls.NOT_INSTALLED


class StateFlag(Flag):
    """Flags persisted in the middle token of a Status line."""

    NONE = 0
    USER = 1  # explicitly requested by the user
    PREFER = 2
    HOLD = 4

    @classmethod
    def from_str(cls, value: str) -> "StateFlag":
        flags = cls.NONE
        for token in value.split(","):
            token = token.strip().upper()
            if token in cls.__members__ and token != "NONE":
                flags |= cls[token]
        return flags

    def to_str(self) -> str:
        names = [m.name.lower() for m in (StateFlag.USER, StateFlag.PREFER, StateFlag.HOLD) if m in self]
        return ",".join(names) if names else "ok"


@dataclass
class Conffile:
    """A configuration file owned by a package, with its pristine md5."""

    path: str
    md5sum: str


@dataclass(frozen=True)
class PackageSnapshot:
    """Immutable copy of the public fields of a package."""

    name: str
    version: str
    architecture: str
    repository: str | None
    description: str
    tags: str
    size_kb: int
    installed: bool


@dataclass(eq=False)
class Package:
    """One known variant of a package (name x version x architecture)."""

    name: str
    architecture: str = ""
    epoch: int = 0
    upstream_version: str = ""
    revision: str = ""

    description: str = ""
    tags: str = ""
    section: str = ""
    priority: str = ""
    maintainer: str = ""
    source_name: str = ""  # the Source: field, not the repository
    size_kb: int = 0
    installed_size_kb: int = 0
    installed_time: int = 0
    md5sum: str = ""
    sha256sum: str = ""
    filename: str = ""
    local_filename: str = ""

    depends: list[str] = field(default_factory=list)
    pre_depends: list[str] = field(default_factory=list)
    recommends: list[str] = field(default_factory=list)
    suggests: list[str] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)
    provides: list[str] = field(default_factory=list)
    replaces: list[str] = field(default_factory=list)

    want: Want = Want.UNKNOWN
    status: Status = Status.NOT_INSTALLED
    flags: StateFlag = StateFlag.NONE
    essential: bool = False
    auto_installed: bool = False

    conffiles: list[Conffile] = field(default_factory=list)
    files: list[str] = field(default_factory=list)
    files_changed: bool = False

    # Non-owning references, assigned when the package is added to a database
    source: PackageSource | None = field(default=None, repr=False)
    dest: PackageDestination | None = field(default=None, repr=False)
    group: PackageGroup | None = field(default=None, repr=False)
    index: int = -1

    @property
    def version(self) -> Version:
        return Version(
            upstream=self.upstream_version,
            revision=self.revision,
            epoch=self.epoch,
        )

    @property
    def version_string(self) -> str:
        return str(self.version)

    def set_version(self, text: str) -> None:
        """Set epoch/upstream/revision from a version string."""
        version = Version.parse(text)
        self.epoch = version.epoch
        self.upstream_version = version.upstream
        self.revision = version.revision

    @property
    def is_installed(self) -> bool:
        return self.status == Status.INSTALLED

    @property
    def is_present(self) -> bool:
        """Installed, or unpacked and waiting for its configure step."""
        return self.status in (Status.INSTALLED, Status.UNPACKED)

    @property
    def user_requested(self) -> bool:
        return StateFlag.USER in self.flags

    @property
    def group_key(self) -> tuple[str, str]:
        return (self.name, self.architecture)

    @property
    def origin(self) -> str:
        """Name of the repository or destination this variant came from."""
        if self.source is not None:
            return f"src:{self.source.name}"
        if self.dest is not None:
            return f"dest:{self.dest.name}"
        return ""

    def snapshot(self) -> PackageSnapshot:
        """Copy the public fields into an immutable snapshot."""
        return PackageSnapshot(
            name=self.name,
            version=self.version_string,
            architecture=self.architecture,
            repository=self.source.name if self.source else None,
            description=self.description,
            tags=self.tags,
            size_kb=self.size_kb,
            installed=self.is_installed,
        )

    def __str__(self) -> str:
        return f"{self.name}_{self.version_string}_{self.architecture}"
