"""Package version parsing and ordering."""

from dataclasses import dataclass
from enum import IntEnum


class VersionError(Exception):
    """Malformed version string."""

    pass


class Comparison(IntEnum):
    """Result of comparing two versions."""

    LESS = -1
    EQUAL = 0
    GREATER = 1


def _order(char: str) -> int:
    """Sort weight of a single non-digit character.

    '~' sorts before everything including the end of the string,
    letters sort before any other punctuation. A digit weighs the same
    as the end of the string.
    """
    if char == "~":
        return -1
    if not char or char.isdigit():
        return 0
    if char.isalpha():
        return ord(char)
    return ord(char) + 256


def _compare_fragment(val: str, ref: str) -> int:
    """Compare two upstream or revision strings, Debian style."""
    i = j = 0
    while i < len(val) or j < len(ref):
        # Non-digit prefix, character by character
        while (i < len(val) and not val[i].isdigit()) or (
            j < len(ref) and not ref[j].isdigit()
        ):
            vc = _order(val[i] if i < len(val) else "")
            rc = _order(ref[j] if j < len(ref) else "")
            if vc != rc:
                return vc - rc
            i += 1
            j += 1

        # Digit run, numerically
        vs = i
        while i < len(val) and val[i].isdigit():
            i += 1
        rs = j
        while j < len(ref) and ref[j].isdigit():
            j += 1
        vnum = int(val[vs:i] or "0")
        rnum = int(ref[rs:j] or "0")
        if vnum != rnum:
            return vnum - rnum
    return 0


def _sign(value: int) -> Comparison:
    if value < 0:
        return Comparison.LESS
    if value > 0:
        return Comparison.GREATER
    return Comparison.EQUAL


@dataclass(frozen=True)
class Version:
    """An epoch/upstream/revision version triple."""

    upstream: str
    revision: str = ""
    epoch: int = 0

    @classmethod
    def parse(cls, text: str) -> "Version":
        """Parse ``[epoch:]upstream[-revision]``.

        The revision is whatever follows the last '-'.
        """
        text = text.strip()
        if not text:
            raise VersionError("Empty version string")

        epoch = 0
        if ":" in text:
            epoch_str, text = text.split(":", 1)
            if not epoch_str.isdigit():
                raise VersionError(f"Invalid epoch: {epoch_str!r}")
            epoch = int(epoch_str)

        upstream, sep, revision = text.rpartition("-")
        if not sep:
            upstream, revision = text, ""
        if not upstream:
            raise VersionError(f"Missing upstream version in {text!r}")

        return cls(upstream=upstream, revision=revision, epoch=epoch)

    def __str__(self) -> str:
        text = self.upstream
        if self.epoch:
            text = f"{self.epoch}:{text}"
        if self.revision:
            text = f"{text}-{self.revision}"
        return text

    def compare(self, other: "Version") -> Comparison:
        return compare(self, other)

    def __lt__(self, other: "Version") -> bool:
        return compare(self, other) is Comparison.LESS

    def __le__(self, other: "Version") -> bool:
        return compare(self, other) is not Comparison.GREATER

    def __gt__(self, other: "Version") -> bool:
        return compare(self, other) is Comparison.GREATER

    def __ge__(self, other: "Version") -> bool:
        return compare(self, other) is not Comparison.LESS


def compare(a: Version, b: Version) -> Comparison:
    """Total ordering over (epoch, upstream, revision)."""
    if a.epoch != b.epoch:
        return _sign(a.epoch - b.epoch)
    result = _compare_fragment(a.upstream, b.upstream)
    if result:
        return _sign(result)
    return _sign(_compare_fragment(a.revision, b.revision))


def compare_strings(a: str, b: str) -> Comparison:
    """Compare two version strings."""
    return compare(Version.parse(a), Version.parse(b))
