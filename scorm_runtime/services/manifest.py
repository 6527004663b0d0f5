"""
SCORM Manifest Resolver
Reads a package's imsmanifest.xml once and caches the launch entry point and
SCORM version on the package record.

The runtime never guesses a launch file: a manifest without a resolvable
resource href is an error and the package stays not launchable.
"""

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Iterator, Optional

import aiofiles

from scorm_runtime.models.records import PackageRecord
from scorm_runtime.repositories.package_repo import PackageRepository
from scorm_runtime.services.content_proxy import package_root

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "imsmanifest.xml"
DEFAULT_TITLE = "Untitled SCORM Package"


class ManifestError(Exception):
    """Raised when a manifest is missing, malformed or has no launch file."""


class PackageAlreadyResolvedError(Exception):
    """Raised when the package already has a cached entry path."""


@dataclass
class ManifestData:
    title: str
    version: str
    entry_path: str
    organization: str

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "version": self.version,
            "entryPath": self.entry_path,
            "organization": self.organization,
        }


def _local(tag: str) -> str:
    """Strip an ElementTree ``{namespace}`` prefix."""
    return tag.rsplit("}", 1)[-1]


def _iter_local(element: ET.Element, name: str) -> Iterator[ET.Element]:
    for child in element.iter():
        if _local(child.tag) == name:
            yield child


def _first_local(element: ET.Element, name: str) -> Optional[ET.Element]:
    return next(_iter_local(element, name), None)


def _children(element: ET.Element, name: str) -> Iterator[ET.Element]:
    for child in element:
        if _local(child.tag) == name:
            yield child


def _text(element: Optional[ET.Element]) -> str:
    if element is None or element.text is None:
        return ""
    return element.text.strip()


def _is_2004(version: str) -> bool:
    return "2004" in version or "1.3" in version or "1.4" in version


def detect_version(root: ET.Element) -> str:
    """'2004' for SCORM 2004 (CAM 1.3) manifests, otherwise '1.2'."""
    schema_version = _text(_first_local(root, "schemaversion"))
    if schema_version:
        return "2004" if _is_2004(schema_version) else "1.2"
    if _is_2004(root.get("version", "")):
        return "2004"
    # No schemaversion at all: only the 2004 ADL namespace is conclusive
    namespaces = {child.tag.split("}", 1)[0] for child in root.iter()}
    if any("adlcp_v1p3" in ns for ns in namespaces):
        return "2004"
    return "1.2"


def _default_organization(root: ET.Element) -> ET.Element:
    organizations = _first_local(root, "organizations")
    if organizations is None:
        raise ManifestError("No organizations element found in manifest")
    candidates = list(_children(organizations, "organization"))
    if not candidates:
        raise ManifestError("No default organization found in manifest")
    default_id = organizations.get("default")
    if default_id:
        for organization in candidates:
            if organization.get("identifier") == default_id:
                return organization
    return candidates[0]


def _entry_path(root: ET.Element, organization: ET.Element) -> str:
    resources = {
        resource.get("identifier"): resource
        for resource in _iter_local(root, "resource")
    }
    for item in _iter_local(organization, "item"):
        ref = item.get("identifierref")
        resource = resources.get(ref) if ref else None
        if resource is not None and resource.get("href"):
            href = resource.get("href")
            params = item.get("parameters")
            return href + params if params else href
    for resource in resources.values():
        if resource.get("href"):
            return resource.get("href")
    raise ManifestError("No launch file found in manifest")


def parse_manifest(xml_content: bytes) -> ManifestData:
    try:
        root = ET.fromstring(xml_content)
    except ET.ParseError as exc:
        raise ManifestError(f"Failed to parse XML: {exc}") from exc
    if _local(root.tag) != "manifest":
        raise ManifestError(
            "Invalid SCORM package: No manifest element found"
        )

    organization = _default_organization(root)
    title = (
        _text(next(_children(organization, "title"), None))
        or _text(_first_local(root, "title"))
        or DEFAULT_TITLE
    )
    return ManifestData(
        title=title,
        version=detect_version(root),
        entry_path=_entry_path(root, organization),
        organization=organization.get("identifier") or "default",
    )


async def read_manifest(content_root: str) -> bytes:
    path = package_root(content_root) / MANIFEST_FILENAME
    try:
        async with aiofiles.open(path, "rb") as f:
            return await f.read()
    except FileNotFoundError as exc:
        raise ManifestError(
            f"Could not find {MANIFEST_FILENAME} in package"
        ) from exc


async def resolve_package(
    repo: PackageRepository, package: PackageRecord
) -> ManifestData:
    """Parse the package manifest and cache the result on the record."""
    if package.entry_path:
        # Launches already in flight depend on the cached entry path
        raise PackageAlreadyResolvedError(
            f"Package {package.id} is already resolved"
        )
    logger.info("Parsing SCORM manifest for package: %s", package.id)
    manifest = parse_manifest(await read_manifest(package.content_root))
    await repo.store_manifest(
        package.id,
        title=manifest.title,
        version=manifest.version,
        entry_path=manifest.entry_path,
    )
    logger.info(
        "Package %s resolved: version %s, entry %s",
        package.id, manifest.version, manifest.entry_path,
    )
    return manifest
