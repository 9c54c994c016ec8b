"""
Manifest media types, digests and manifest list handling.

Single source of truth for manifest MIME types. Also selects the manifest
for the running platform out of a multi-platform manifest list and parses
the result.
"""
from __future__ import annotations

import hashlib
import json
import logging
import platform as _platform
import sys
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

from .errors import NoSupportedPlatformError, UnsupportedMediaType
from .models import ManifestList

logger = logging.getLogger(__name__)

# Docker manifest types
DOCKER_V2_SCHEMA1 = "application/vnd.docker.distribution.manifest.v1+json"
DOCKER_V2_SCHEMA1_SIGNED = "application/vnd.docker.distribution.manifest.v1+prettyjws"
DOCKER_V2_SCHEMA2 = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_V2_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"

# OCI manifest types
OCI_IMAGE_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_IMAGE_INDEX = "application/vnd.oci.image.index.v1+json"

MANIFEST_LIST_MIME_TYPES = (DOCKER_V2_LIST, OCI_IMAGE_INDEX)
SINGLE_MANIFEST_MIME_TYPES = (
    DOCKER_V2_SCHEMA1_SIGNED,
    DOCKER_V2_SCHEMA1,
    DOCKER_V2_SCHEMA2,
    OCI_IMAGE_MANIFEST,
)

# Preference order used when a caller does not request specific types
DEFAULT_REQUESTED_MANIFEST_MIME_TYPES = [
    OCI_IMAGE_MANIFEST,
    DOCKER_V2_SCHEMA2,
    DOCKER_V2_SCHEMA1_SIGNED,
    DOCKER_V2_SCHEMA1,
    DOCKER_V2_LIST,
    OCI_IMAGE_INDEX,
]

# platform.machine() values -> OCI architecture names
_ARCHITECTURES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv6l": "arm",
    "armv7l": "arm",
    "i386": "386",
    "i686": "386",
    "x86": "386",
    "ppc64le": "ppc64le",
    "s390x": "s390x",
    "riscv64": "riscv64",
}

_OPERATING_SYSTEMS = {
    "linux": "linux",
    "darwin": "darwin",
    "win32": "windows",
    "cygwin": "windows",
    "freebsd": "freebsd",
}


@dataclass(frozen=True)
class Platform:
    """Target platform in OCI naming (GOARCH/GOOS values)."""
    architecture: str
    os: str


def current_platform() -> Platform:
    """Platform of the running interpreter."""
    machine = _platform.machine().lower()
    system = sys.platform
    for prefix, name in _OPERATING_SYSTEMS.items():
        if system.startswith(prefix):
            system = name
            break
    return Platform(architecture=_ARCHITECTURES.get(machine, machine), os=system)


@dataclass(frozen=True)
class ParsedManifest:
    """A single-platform manifest ready for use by higher layers."""
    mime_type: str
    digest: str
    raw: bytes
    data: Dict[str, Any]


class ManifestSource(Protocol):
    """Anything that can fetch manifests: a delegate or image stream source."""

    def get_manifest(self) -> Tuple[bytes, str]:
        ...

    def get_target_manifest(self, digest: str) -> Tuple[bytes, str]:
        ...


ManifestParser = Callable[[bytes, str, ManifestSource], ParsedManifest]


def manifest_digest(manifest: bytes) -> str:
    """Content digest of a manifest blob."""
    return f"sha256:{hashlib.sha256(manifest).hexdigest()}"


def guess_mime_type(manifest: bytes) -> str:
    """
    Guess the MIME type of a manifest blob from its contents.

    Returns:
        The MIME type, or "" if the blob is not a JSON object
    """
    try:
        data = json.loads(manifest)
    except ValueError:
        return ""
    if not isinstance(data, dict):
        return ""

    media_type = data.get("mediaType")
    if media_type in MANIFEST_LIST_MIME_TYPES or media_type in SINGLE_MANIFEST_MIME_TYPES:
        return media_type

    schema_version = data.get("schemaVersion")
    if schema_version == 1:
        if data.get("signatures") is not None:
            return DOCKER_V2_SCHEMA1_SIGNED
        return DOCKER_V2_SCHEMA1
    if schema_version == 2:
        if "manifests" in data:
            return OCI_IMAGE_INDEX
        return DOCKER_V2_SCHEMA2
    return ""


def select_platform_manifest(list_blob: bytes, source: ManifestSource,
                             target: Optional[Platform] = None) -> Tuple[bytes, str]:
    """
    Fetch the manifest matching the target platform out of a manifest list.

    The first descriptor whose platform architecture and os equal the
    target exactly is used; later matches are ignored.

    Args:
        list_blob: Raw manifest list
        source: Source to fetch the selected manifest from by digest
        target: Platform to select (default: current_platform())

    Returns:
        (manifest bytes, MIME type) of the selected manifest

    Raises:
        NoSupportedPlatformError: If no descriptor matches
    """
    target = target or current_platform()
    manifest_list = ManifestList.model_validate_json(list_blob)

    target_digest = None
    for descriptor in manifest_list.manifests:
        if (descriptor.platform.architecture == target.architecture
                and descriptor.platform.os == target.os):
            target_digest = descriptor.digest
            break
    if not target_digest:
        raise NoSupportedPlatformError()

    logger.debug(f"Selected {target_digest} for {target.os}/{target.architecture}")
    return source.get_target_manifest(target_digest)


def manifest_from_list(source: ManifestSource, list_blob: bytes, parser: ManifestParser,
                       target: Optional[Platform] = None) -> ParsedManifest:
    """Select the platform manifest from a list and hand it to parser."""
    manifest, mime_type = select_platform_manifest(list_blob, source, target)
    return parser(manifest, mime_type, source)


def parse_manifest(manifest: bytes, mime_type: str, source: ManifestSource,
                   target: Optional[Platform] = None) -> ParsedManifest:
    """
    Parse a manifest, resolving manifest lists through source.

    An empty mime_type is guessed from the content.

    Raises:
        UnsupportedMediaType: If the MIME type is not a known manifest type
        NoSupportedPlatformError: If a list has no entry for the platform
    """
    if not mime_type:
        mime_type = guess_mime_type(manifest)

    if mime_type in MANIFEST_LIST_MIME_TYPES:
        return manifest_from_list(
            source, manifest,
            lambda blob, mt, src: parse_manifest(blob, mt, src, target),
            target,
        )

    if mime_type not in SINGLE_MANIFEST_MIME_TYPES:
        raise UnsupportedMediaType(f"Unsupported manifest media type: {mime_type!r}")

    try:
        data = json.loads(manifest)
    except ValueError as e:
        raise UnsupportedMediaType(f"Invalid JSON in manifest: {e}") from e

    return ParsedManifest(
        mime_type=mime_type,
        digest=manifest_digest(manifest),
        raw=manifest,
        data=data,
    )


def image_manifest(source: ManifestSource, target: Optional[Platform] = None) -> ParsedManifest:
    """Fetch the default manifest of source and parse it."""
    manifest, mime_type = source.get_manifest()
    return parse_manifest(manifest, mime_type, source, target)


__all__ = [
    "DOCKER_V2_SCHEMA1",
    "DOCKER_V2_SCHEMA1_SIGNED",
    "DOCKER_V2_SCHEMA2",
    "DOCKER_V2_LIST",
    "OCI_IMAGE_MANIFEST",
    "OCI_IMAGE_INDEX",
    "MANIFEST_LIST_MIME_TYPES",
    "SINGLE_MANIFEST_MIME_TYPES",
    "DEFAULT_REQUESTED_MANIFEST_MIME_TYPES",
    "Platform",
    "ParsedManifest",
    "ManifestSource",
    "ManifestParser",
    "current_platform",
    "manifest_digest",
    "guess_mime_type",
    "select_platform_manifest",
    "manifest_from_list",
    "parse_manifest",
    "image_manifest",
]
