"""
Image source backed by an image stream.

The image stream tag is resolved lazily, on first access to a manifest,
blob or the signatures: the stream's tag history yields a registry
reference, which is opened through the delegate transport. Manifests and
blobs are then read straight from the delegate; signatures come from the
image-stream API.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import BinaryIO, List, Optional, Sequence, Tuple

from .client import ImageStreamClient
from .delegate import DelegateImageSource, DelegateTransport
from .errors import TagNotFoundError
from .models import ImageStream, TagEvent
from .reference import ImageStreamReference

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedImage:
    """
    Result of resolving an image stream reference.

    Attributes:
        docker_reference: Externally reachable registry reference
        image_name: Content identifier of the image (manifest digest)
    """
    docker_reference: str
    image_name: str


@dataclass
class _Resolution:
    image: ResolvedImage
    delegate: DelegateImageSource


def find_tag_event(stream: ImageStream, ref: ImageStreamReference) -> TagEvent:
    """
    Find the tag event a reference resolves to.

    Tag references use the latest (first) event of the matching tag.
    Digest references use the first event, across all tags, whose image
    equals the digest.

    Raises:
        TagNotFoundError: If nothing matches
    """
    for named in stream.status.tags:
        if ref.tag is not None:
            if named.tag != ref.tag:
                continue
            if named.items:
                return named.items[0]
        else:
            for event in named.items:
                if event.image == ref.digest:
                    return event
    raise TagNotFoundError()


class ImageStreamSource:
    """
    Read access to the image an image stream reference points to.

    Not safe for concurrent use; callers serialize access per instance.
    The caller must call close().
    """

    def __init__(self, client: ImageStreamClient, delegate: DelegateTransport,
                 requested_manifest_mime_types: Optional[Sequence[str]] = None):
        """
        Args:
            client: Image-stream API client bound to the reference
            delegate: Registry transport used for manifests and blobs
            requested_manifest_mime_types: Preferred manifest MIME types;
                None or empty means the delegate's defaults
        """
        self.client = client
        self._delegate_transport = delegate
        self._requested_manifest_mime_types = list(requested_manifest_mime_types or [])
        self._resolution: Optional[_Resolution] = None

    @property
    def reference(self) -> ImageStreamReference:
        """The reference as specified by the user, not as resolved."""
        return self.client.ref

    @property
    def resolved(self) -> bool:
        return self._resolution is not None

    def ensure_resolved(self) -> ResolvedImage:
        """
        Resolve the image stream reference if not done yet.

        A failed resolution leaves the source unresolved; the next call
        tries again.
        """
        if self._resolution is not None:
            return self._resolution.image

        stream = self.client.get_image_stream()
        event = find_tag_event(stream, self.reference)
        logger.debug(f"tag event {event!r}")

        docker_reference = self.client.convert_docker_image_reference(event.docker_image_reference)
        logger.debug(f"Resolved reference {docker_reference}")

        delegate_ref = self._delegate_transport.parse_reference(docker_reference)
        delegate = delegate_ref.new_image_source(self._requested_manifest_mime_types or None)

        image = ResolvedImage(docker_reference=docker_reference, image_name=event.image)
        self._resolution = _Resolution(image=image, delegate=delegate)
        return image

    def _delegate(self) -> DelegateImageSource:
        self.ensure_resolved()
        return self._resolution.delegate

    def get_manifest(self) -> Tuple[bytes, str]:
        """Manifest bytes and MIME type of the resolved image."""
        return self._delegate().get_manifest()

    def get_target_manifest(self, digest: str) -> Tuple[bytes, str]:
        """Manifest by digest, e.g. an entry of a manifest list."""
        return self._delegate().get_target_manifest(digest)

    def get_blob(self, digest: str) -> Tuple[BinaryIO, int]:
        """Stream for a blob and its size (or -1 if unknown)."""
        return self._delegate().get_blob(digest)

    def get_signatures(self) -> List[bytes]:
        """
        Atomic signatures of the resolved image, in API order.

        The image object is fetched afresh on every call.
        """
        image_name = self.ensure_resolved().image_name
        image = self.client.get_image(image_name)
        return image.atomic_signatures()

    def close(self):
        """Release the delegate source, if one was opened, and the API client."""
        if self._resolution is not None:
            delegate = self._resolution.delegate
            self._resolution = None
            delegate.close()
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


__all__ = ["ImageStreamSource", "ResolvedImage", "find_tag_event"]
