"""Checksum verification for downloaded packages."""

import hashlib
from pathlib import Path

from tinypkg.models.package import Package


class ChecksumError(Exception):
    """Checksum verification failed."""

    pass


def _file_digest(file_path: Path, algorithm: str) -> str:
    digest = hashlib.new(algorithm)
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            digest.update(chunk)
    return digest.hexdigest()


def calculate_sha256(file_path: Path) -> str:
    """Calculate SHA256 hash of a file."""
    return _file_digest(file_path, "sha256")


def calculate_md5(file_path: Path) -> str:
    """Calculate MD5 hash of a file."""
    return _file_digest(file_path, "md5")


def verify_checksum(file_path: Path, package: Package) -> bool:
    """Verify a downloaded archive against the checksums in its record.

    Returns True if:
    - The strongest available checksum matches
    - The record carries no checksum at all (skip verification)

    Raises ChecksumError if the checksum doesn't match.
    """
    if package.sha256sum:
        expected, actual, kind = package.sha256sum.lower(), calculate_sha256(file_path), "SHA256"
    elif package.md5sum:
        expected, actual, kind = package.md5sum.lower(), calculate_md5(file_path), "MD5"
    else:
        return True

    if actual != expected:
        raise ChecksumError(
            f"{kind} mismatch for {package.name}:\n"
            f"  Expected: {expected}\n"
            f"  Got:      {actual}"
        )

    return True
