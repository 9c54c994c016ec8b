"""
Image destination backed by an image stream.

Manifests and blobs are written to the registry through the delegate
transport. Signatures are stored as image signature objects in the
image-stream API, keyed by the digest of the manifest written before them.
"""
from __future__ import annotations

import logging
import os
from typing import BinaryIO, Callable, List, Optional, Sequence, Set

from .client import ImageStreamClient
from .delegate import BlobInfo, DelegateImageDestination, DelegateTransport
from .errors import SignatureNameError, UnknownManifestDigestError
from .manifest import manifest_digest
from .models import ATOMIC_SIGNATURE_TYPE, ImageSignature, ObjectMeta
from .reference import ImageStreamReference

logger = logging.getLogger(__name__)

SIGNATURE_ID_BYTES = 16


def new_signature_name(image_name: str, taken: Set[str],
                       random_bytes: Callable[[int], bytes] = os.urandom) -> str:
    """
    Invent a signature name that is not in taken.

    Names have the form "<image_name>@<32 lowercase hex chars>". Samples
    that collide with a taken name are discarded and drawn again.

    Raises:
        SignatureNameError: If the random source returns too few bytes
    """
    while True:
        rand = random_bytes(SIGNATURE_ID_BYTES)
        if len(rand) != SIGNATURE_ID_BYTES:
            raise SignatureNameError(
                f"Error generating random signature ID: got {len(rand)} bytes, "
                f"expected {SIGNATURE_ID_BYTES}"
            )
        name = f"{image_name}@{rand.hex()}"
        if name not in taken:
            return name
        logger.debug(f"Signature name {name} already taken, retrying")


class ImageStreamDestination:
    """
    Write access to an image stream tag.

    The delegate destination is opened eagerly, since writes need to know
    where they go. Not safe for concurrent use. The caller must call close().
    """

    def __init__(self, client: ImageStreamClient, delegate: DelegateTransport,
                 random_bytes: Callable[[int], bytes] = os.urandom):
        """
        Args:
            client: Image-stream API client bound to the reference
            delegate: Registry transport used for manifests and blobs
            random_bytes: Random source for signature names
        """
        self.client = client
        self._random_bytes = random_bytes
        # Set by put_manifest; signatures are keyed to it
        self.image_stream_image_name: Optional[str] = None

        docker_reference = client.ref.docker_reference()
        self._delegate: Optional[DelegateImageDestination] = (
            delegate.parse_reference(docker_reference).new_image_destination()
        )

    @property
    def reference(self) -> ImageStreamReference:
        """The reference as specified by the user."""
        return self.client.ref

    def _open_delegate(self) -> DelegateImageDestination:
        if self._delegate is None:
            raise ValueError("destination is closed")
        return self._delegate

    def supported_manifest_mime_types(self) -> List[str]:
        return self._open_delegate().supported_manifest_mime_types()

    def supports_signatures(self) -> Optional[str]:
        """None if signatures can be stored, else the reason they can't."""
        return self._open_delegate().supports_signatures()

    def should_compress_layers(self) -> bool:
        return self._open_delegate().should_compress_layers()

    def put_blob(self, stream: BinaryIO, info: BlobInfo) -> BlobInfo:
        return self._open_delegate().put_blob(stream, info)

    def put_manifest(self, manifest: bytes) -> None:
        """Record the manifest digest for later signatures, then write it."""
        self.image_stream_image_name = manifest_digest(manifest)
        self._open_delegate().put_manifest(manifest)

    def put_signatures(self, signatures: Sequence[bytes]) -> None:
        """
        Add signatures to the image written by put_manifest.

        Signatures already stored (atomic type, identical content) are
        skipped, so re-running with the same input creates no duplicates.
        Each new signature is POSTed individually; the first failure aborts
        the rest and already stored signatures are kept.

        Raises:
            UnknownManifestDigestError: If put_manifest was not called first
            SignatureNameError: If no signature name could be generated
            StatusError: If the API rejects a request
        """
        image_name = self.image_stream_image_name
        if not image_name:
            raise UnknownManifestDigestError()

        if not signatures:
            return  # No need to even read the old state

        image = self.client.get_image(image_name)
        existing = [sig.content for sig in image.signatures if sig.is_atomic()]
        taken = {sig.metadata.name for sig in image.signatures if sig.metadata.name}

        for content in signatures:
            if content in existing:
                continue

            name = new_signature_name(image_name, taken, self._random_bytes)
            taken.add(name)
            signature = ImageSignature(
                kind="ImageSignature",
                api_version="v1",
                metadata=ObjectMeta(name=name),
                type=ATOMIC_SIGNATURE_TYPE,
                content=content,
            )
            self.client.create_signature(signature)
            existing.append(content)
            logger.info(f"Stored signature {name}")

    def commit(self) -> None:
        """Ask the delegate to persist the image. Not transactional."""
        self._open_delegate().commit()

    def close(self):
        """Release the delegate destination and the API client."""
        if self._delegate is not None:
            delegate = self._delegate
            self._delegate = None
            delegate.close()
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


__all__ = ["ImageStreamDestination", "new_signature_name", "SIGNATURE_ID_BYTES"]
