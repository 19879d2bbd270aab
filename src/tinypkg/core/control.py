"""Mapping between control-file paragraphs and Package records.

Package lists and status files share one format: "Field: value" lines,
continuation lines indented, one blank line between records. Paragraph
splitting is done by python-debian; this module only knows which fields
populate which attributes.
"""

import logging
from collections.abc import Iterable, Iterator
from typing import IO

from debian import deb822

from tinypkg.core.version import VersionError
from tinypkg.models.package import Conffile, Package, StateFlag, Status, Want

logger = logging.getLogger(__name__)

RELATION_FIELDS = {
    "Depends": "depends",
    "Pre-Depends": "pre_depends",
    "Recommends": "recommends",
    "Suggests": "suggests",
    "Conflicts": "conflicts",
    "Provides": "provides",
    "Replaces": "replaces",
}

SIMPLE_FIELDS = {
    "Architecture": "architecture",
    "Description": "description",
    "Tags": "tags",
    "Section": "section",
    "Priority": "priority",
    "Maintainer": "maintainer",
    "Source": "source_name",
    "Filename": "filename",
    "SHA256sum": "sha256sum",
}


def parse_comma_separated(value: str) -> list[str]:
    """Split a relation field into its clauses."""
    return [item.strip() for item in value.split(",") if item.strip()]


def _to_kb(value: str) -> int:
    try:
        return (int(value.strip()) + 1023) // 1024
    except ValueError:
        return 0


def _parse_status(package: Package, value: str) -> None:
    tokens = value.split()
    if len(tokens) != 3:
        logger.warning(f"Failed to parse Status line for {package.name}: {value!r}")
        return
    package.want = Want.from_str(tokens[0])
    package.flags = StateFlag.from_str(tokens[1])
    package.status = Status.from_str(tokens[2])


def _parse_conffiles(package: Package, value: str) -> None:
    for line in value.splitlines():
        parts = line.split()
        if not parts:
            continue
        if len(parts) != 2:
            logger.warning(f"Failed to parse Conffiles line for {package.name}: {line!r}")
            continue
        package.conffiles.append(Conffile(path=parts[0], md5sum=parts[1]))


def package_from_paragraph(paragraph: deb822.Deb822) -> Package | None:
    """Build a Package from one parsed paragraph.

    Returns None for paragraphs without a Package field or with an
    unparseable version.
    """
    name = paragraph.get("Package", "").strip()
    if not name:
        return None

    package = Package(name=name)

    if "Version" in paragraph:
        try:
            package.set_version(paragraph["Version"])
        except VersionError as e:
            logger.warning(f"Skipping {name}: {e}")
            return None

    for field_name, attr in SIMPLE_FIELDS.items():
        if field_name in paragraph:
            setattr(package, attr, paragraph[field_name].strip())

    for field_name, attr in RELATION_FIELDS.items():
        if field_name in paragraph:
            setattr(package, attr, parse_comma_separated(paragraph[field_name]))

    # Older status files used the wrong case for MD5sum
    md5 = paragraph.get("MD5sum") or paragraph.get("MD5Sum")
    if md5:
        package.md5sum = md5.strip()

    if "Size" in paragraph:
        package.size_kb = _to_kb(paragraph["Size"])
    if "Installed-Size" in paragraph:
        package.installed_size_kb = _to_kb(paragraph["Installed-Size"])
    if "Installed-Time" in paragraph:
        try:
            package.installed_time = int(paragraph["Installed-Time"].strip())
        except ValueError:
            logger.warning(f"Invalid Installed-Time for {name}")

    package.essential = paragraph.get("Essential", "").strip() == "yes"
    package.auto_installed = paragraph.get("Auto-Installed", "").strip() == "yes"

    if "Status" in paragraph:
        _parse_status(package, paragraph["Status"])
    if "Conffiles" in paragraph:
        _parse_conffiles(package, paragraph["Conffiles"])

    return package


def iter_packages(stream: IO[str] | Iterable[str]) -> Iterator[Package]:
    """Yield a Package for every valid record in a list or status stream."""
    for paragraph in deb822.Deb822.iter_paragraphs(stream, use_apt_pkg=False):
        package = package_from_paragraph(paragraph)
        if package is not None:
            yield package


def status_paragraph(package: Package) -> deb822.Deb822:
    """Render the persisted state of a package as a paragraph."""
    paragraph = deb822.Deb822()
    paragraph["Package"] = package.name
    if package.upstream_version:
        paragraph["Version"] = package.version_string

    for field_name, attr in RELATION_FIELDS.items():
        values = getattr(package, attr)
        if values:
            paragraph[field_name] = ", ".join(values)

    paragraph["Status"] = " ".join(
        (package.want.value, package.flags.to_str(), package.status.value)
    )
    if package.essential:
        paragraph["Essential"] = "yes"
    if package.architecture:
        paragraph["Architecture"] = package.architecture
    if package.conffiles:
        paragraph["Conffiles"] = "".join(
            f"\n {c.path} {c.md5sum}" for c in package.conffiles
        )
    if package.installed_time:
        paragraph["Installed-Time"] = str(package.installed_time)
    if package.auto_installed:
        paragraph["Auto-Installed"] = "yes"
    return paragraph


def write_status_records(packages: Iterable[Package], stream: IO[str]) -> None:
    """Write status records separated by blank lines."""
    for package in packages:
        status_paragraph(package).dump(stream, text_mode=True)
        stream.write("\n")
