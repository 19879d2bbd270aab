"""Data models for tinypkg."""

from tinypkg.models.package import (
    Conffile,
    Package,
    PackageSnapshot,
    StateFlag,
    Status,
    Want,
)
from tinypkg.models.source import PackageDestination, PackageSource

__all__ = [
    "Conffile",
    "Package",
    "PackageSnapshot",
    "StateFlag",
    "Status",
    "Want",
    "PackageDestination",
    "PackageSource",
]
