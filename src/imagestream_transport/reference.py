"""
Image stream references.

Parses user-supplied image stream references and translates the registry
references stored in tag events into ones reachable from outside the
cluster.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from .errors import InvalidReferenceError

__all__ = ["ImageStreamReference", "parse_reference", "convert_docker_image_reference", "DEFAULT_TAG"]

DEFAULT_TAG = "latest"

_SEGMENT_RE = re.compile(r"^[a-z0-9]+(?:[._-][a-z0-9]+)*$")
_TAG_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")
_DIGEST_RE = re.compile(r"^[a-z0-9]+(?:[.+_-][a-z0-9]+)*:[a-zA-Z0-9=_-]{32,}$")


@dataclass(frozen=True)
class ImageStreamReference:
    """
    Reference to an image stream tag (or image) in a cluster registry.

    Attributes:
        registry_hostname: Externally reachable registry host[:port]
        namespace: Project/namespace holding the image stream
        stream: Image stream name
        tag: Tag within the stream, None for digest references
        digest: Content digest, None for tag references

    Invariants:
    - exactly one of tag/digest is set
    - namespace and stream are non-empty single path segments
    """
    registry_hostname: str
    namespace: str
    stream: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    def __post_init__(self):
        if not self.registry_hostname:
            raise InvalidReferenceError("registry hostname cannot be empty")
        for label, segment in (("namespace", self.namespace), ("stream", self.stream)):
            if not segment or "/" in segment:
                raise InvalidReferenceError(f"{label} must be a non-empty path segment, got {segment!r}")
        if (self.tag is None) == (self.digest is None):
            raise InvalidReferenceError("exactly one of tag or digest must be specified")

    def docker_reference(self) -> str:
        """Tag- or digest-qualified registry path for this image stream."""
        name = f"{self.registry_hostname}/{self.namespace}/{self.stream}"
        if self.digest is not None:
            return f"{name}@{self.digest}"
        return f"{name}:{self.tag}"

    def __str__(self) -> str:
        return self.docker_reference()


def parse_reference(text: str) -> ImageStreamReference:
    """
    Parse an image stream reference.

    Accepts references in the form host[:port]/namespace/stream[:tag|@digest],
    optionally prefixed with "//". A missing tag defaults to "latest".

    Raises:
        InvalidReferenceError: If the reference is malformed

    Examples:
        >>> parse_reference("registry.example.com/myproject/app:v1")
        ImageStreamReference(registry_hostname='registry.example.com', namespace='myproject', stream='app', tag='v1', digest=None)
    """
    if not text:
        raise InvalidReferenceError("reference cannot be empty")

    remainder = text[2:] if text.startswith("//") else text

    digest: Optional[str] = None
    tag: Optional[str] = None
    if "@" in remainder:
        remainder, digest = remainder.split("@", 1)
        if not _DIGEST_RE.match(digest):
            raise InvalidReferenceError(f"invalid digest in reference {text!r}")
    else:
        # A ':' after the last '/' separates the tag; earlier ones are ports
        last_slash = remainder.rfind("/")
        colon = remainder.rfind(":")
        if colon > last_slash:
            remainder, tag = remainder[:colon], remainder[colon + 1:]
            if not _TAG_RE.match(tag):
                raise InvalidReferenceError(f"invalid tag in reference {text!r}")
        else:
            tag = DEFAULT_TAG

    parts = remainder.split("/")
    if len(parts) != 3:
        raise InvalidReferenceError(
            f"invalid image stream reference {text!r}: expected host/namespace/stream"
        )
    hostname, namespace, stream = parts
    if not hostname:
        raise InvalidReferenceError(f"invalid image stream reference {text!r}: missing registry host")
    for segment in (namespace, stream):
        if not _SEGMENT_RE.match(segment):
            raise InvalidReferenceError(f"invalid path segment {segment!r} in reference {text!r}")

    return ImageStreamReference(
        registry_hostname=hostname,
        namespace=namespace,
        stream=stream,
        tag=tag,
        digest=digest,
    )


def convert_docker_image_reference(raw: str, registry_hostname: str) -> str:
    """
    Make a tag event's dockerImageReference usable from outside the cluster.

    The API stores the cluster-internal registry address (often a service
    IP); the host part is replaced with the externally known hostname.

    Args:
        raw: dockerImageReference value from the API
        registry_hostname: Hostname of the user-supplied reference

    Returns:
        registry_hostname + "/" + everything after the first '/' of raw

    Raises:
        InvalidReferenceError: If raw contains no '/'
    """
    parts = raw.split("/", 1)
    if len(parts) != 2:
        raise InvalidReferenceError(f"Invalid format of docker reference {raw}: missing '/'")
    return f"{registry_hostname}/{parts[1]}"
