"""
Delegate transport protocol definitions.

The image-stream API only stores metadata; manifests and blobs are read
from and written to a registry through a delegate transport. These
protocols define that boundary so a Docker registry client, or an in-memory
fake in tests, can be substituted.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import BinaryIO, List, Optional, Protocol, Sequence, Tuple, runtime_checkable


@dataclass(frozen=True)
class BlobInfo:
    """
    Digest and size of a blob.

    Invariants:
    - digest is None or "<algorithm>:<hex>"
    - size is the exact byte length, or -1 if unknown
    """
    digest: Optional[str] = None
    size: int = -1


@runtime_checkable
class DelegateImageSource(Protocol):
    """Read access to one image in a registry."""

    def get_manifest(self) -> Tuple[bytes, str]:
        """
        GET the manifest for the reference the source was opened with.

        Returns:
            (manifest bytes, MIME type)
        """
        ...

    def get_target_manifest(self, digest: str) -> Tuple[bytes, str]:
        """
        GET a manifest by digest, e.g. an entry of a manifest list.

        Returns:
            (manifest bytes, MIME type)
        """
        ...

    def get_blob(self, digest: str) -> Tuple[BinaryIO, int]:
        """
        GET blob content by digest.

        Returns:
            (readable stream, size or -1 if unknown)
        """
        ...

    def close(self) -> None:
        ...


@runtime_checkable
class DelegateImageDestination(Protocol):
    """Write access to one image in a registry."""

    def supported_manifest_mime_types(self) -> List[str]:
        """MIME types the destination accepts; empty means any."""
        ...

    def supports_signatures(self) -> Optional[str]:
        """None if signatures may be stored, else a reason they can't."""
        ...

    def should_compress_layers(self) -> bool:
        ...

    def put_blob(self, stream: BinaryIO, info: BlobInfo) -> BlobInfo:
        """
        Write blob content.

        info.digest may be supplied when known; implementations return the
        digest and size actually stored.
        """
        ...

    def put_manifest(self, manifest: bytes) -> None:
        ...

    def commit(self) -> None:
        """Mark the upload as complete. Not transactional."""
        ...

    def close(self) -> None:
        ...


@runtime_checkable
class DelegateReference(Protocol):
    """A parsed delegate reference that can open sources and destinations."""

    def new_image_source(self, requested_mime_types: Optional[Sequence[str]] = None) -> DelegateImageSource:
        """
        Open a source. None or an empty sequence means the delegate's
        default manifest MIME type preference order.
        """
        ...

    def new_image_destination(self) -> DelegateImageDestination:
        ...


@runtime_checkable
class DelegateTransport(Protocol):
    """Registry transport the image stream transport delegates storage to."""

    def parse_reference(self, reference: str) -> DelegateReference:
        """
        Parse a registry reference such as "host/namespace/name:tag".

        Raises:
            InvalidReferenceError: If the reference is malformed
        """
        ...


__all__ = [
    "BlobInfo",
    "DelegateImageSource",
    "DelegateImageDestination",
    "DelegateReference",
    "DelegateTransport",
]
