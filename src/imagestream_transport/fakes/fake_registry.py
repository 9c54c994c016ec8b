"""
Fake delegate transport for testing.

Stores manifests and blobs in memory, keyed by repository, and records
which sources and destinations were opened and closed.
"""
from __future__ import annotations

import hashlib
import io
import re
from typing import BinaryIO, Dict, List, Optional, Sequence, Tuple

from ..delegate import BlobInfo
from ..errors import InvalidReferenceError, RegistryNotFound
from ..manifest import guess_mime_type, manifest_digest

# Regex for validating SHA256 digests
_DIGEST_RE = re.compile(r"^sha256:[a-f0-9]{64}$")

__all__ = ["FakeRegistryTransport", "FakeReference", "FakeImageSource", "FakeImageDestination"]


class FakeImageSource:
    """Source over a FakeRegistryTransport repository."""

    def __init__(self, registry: FakeRegistryTransport, ref: FakeReference,
                 requested_mime_types: Optional[Sequence[str]]):
        self.registry = registry
        self.ref = ref
        self.requested_mime_types = requested_mime_types
        self.closed = False

    def get_manifest(self) -> Tuple[bytes, str]:
        return self.registry.get_manifest(self.ref.repository, self.ref.manifest_ref)

    def get_target_manifest(self, digest: str) -> Tuple[bytes, str]:
        return self.registry.get_manifest(self.ref.repository, digest)

    def get_blob(self, digest: str) -> Tuple[BinaryIO, int]:
        data = self.registry.get_blob(self.ref.repository, digest)
        return io.BytesIO(data), len(data)

    def close(self) -> None:
        self.closed = True


class FakeImageDestination:
    """Destination over a FakeRegistryTransport repository."""

    def __init__(self, registry: FakeRegistryTransport, ref: FakeReference):
        self.registry = registry
        self.ref = ref
        self.committed = False
        self.closed = False
        self.close_calls = 0

    def supported_manifest_mime_types(self) -> List[str]:
        return list(self.registry.supported_mime_types)

    def supports_signatures(self) -> Optional[str]:
        return self.registry.signatures_unsupported_reason

    def should_compress_layers(self) -> bool:
        return True

    def put_blob(self, stream: BinaryIO, info: BlobInfo) -> BlobInfo:
        data = stream.read()
        digest = f"sha256:{hashlib.sha256(data).hexdigest()}"
        if info.digest and info.digest != digest:
            raise ValueError(f"Digest mismatch: expected {info.digest}, got {digest}")
        self.registry.put_blob(self.ref.repository, digest, data)
        return BlobInfo(digest=digest, size=len(data))

    def put_manifest(self, manifest: bytes) -> None:
        self.registry.put_manifest(self.ref.repository, manifest, self.ref.manifest_ref)

    def commit(self) -> None:
        self.committed = True

    def close(self) -> None:
        self.closed = True
        self.close_calls += 1


class FakeReference:
    def __init__(self, registry: FakeRegistryTransport, text: str, repository: str,
                 manifest_ref: str):
        self.registry = registry
        self.text = text
        self.repository = repository
        self.manifest_ref = manifest_ref

    def new_image_source(self, requested_mime_types: Optional[Sequence[str]] = None) -> FakeImageSource:
        source = FakeImageSource(self.registry, self, requested_mime_types)
        self.registry.sources.append(source)
        return source

    def new_image_destination(self) -> FakeImageDestination:
        destination = FakeImageDestination(self.registry, self)
        self.registry.destinations.append(destination)
        return destination


class FakeRegistryTransport:
    """
    In-memory delegate transport implementation for testing.

    This is a test double; not for production use.
    References are "host/repository:tag" or "host/repository@digest";
    the host is kept in the reference but storage is keyed by repository.
    """

    def __init__(self) -> None:
        self._manifests: Dict[str, Dict[str, Tuple[bytes, str]]] = {}  # repo -> {digest: (bytes, mime)}
        self._blobs: Dict[str, Dict[str, bytes]] = {}                  # repo -> {digest: bytes}
        self._tags: Dict[str, Dict[str, str]] = {}                     # repo -> {tag: digest}
        self.parsed: List[str] = []
        self.sources: List[FakeImageSource] = []
        self.destinations: List[FakeImageDestination] = []
        self.supported_mime_types: List[str] = []
        self.signatures_unsupported_reason: Optional[str] = None

    def _ensure_repo(self, repo: str) -> None:
        self._manifests.setdefault(repo, {})
        self._blobs.setdefault(repo, {})
        self._tags.setdefault(repo, {})

    def parse_reference(self, reference: str) -> FakeReference:
        self.parsed.append(reference)
        text = reference[2:] if reference.startswith("//") else reference
        if "@" in text:
            name, manifest_ref = text.split("@", 1)
        else:
            name, _, manifest_ref = text.rpartition(":")
            if "/" in manifest_ref or not name:
                name, manifest_ref = text, "latest"
        if "/" not in name:
            raise InvalidReferenceError(f"Invalid fake reference: {reference}")
        repository = name.split("/", 1)[1]
        return FakeReference(self, reference, repository, manifest_ref)

    def get_manifest(self, repo: str, ref: str) -> Tuple[bytes, str]:
        """
        Retrieve manifest content by tag or digest.

        Raises:
            RegistryNotFound: If manifest not found
        """
        self._ensure_repo(repo)
        digest = ref if ref.startswith("sha256:") else self._tags[repo].get(ref)
        if digest is None or digest not in self._manifests[repo]:
            raise RegistryNotFound(f"Manifest not found: {repo}:{ref}")
        return self._manifests[repo][digest]

    def put_manifest(self, repo: str, payload: bytes, tag: Optional[str] = None,
                     mime_type: Optional[str] = None) -> str:
        """Store manifest, optionally tag it, and return its digest."""
        self._ensure_repo(repo)
        digest = manifest_digest(payload)
        self._manifests[repo][digest] = (payload, mime_type or guess_mime_type(payload))
        if tag and not tag.startswith("sha256:"):
            self._tags[repo][tag] = digest
        return digest

    def get_blob(self, repo: str, digest: str) -> bytes:
        if not _DIGEST_RE.match(digest):
            raise ValueError(f"Invalid digest format: {digest}")
        self._ensure_repo(repo)
        if digest not in self._blobs[repo]:
            raise RegistryNotFound(f"Blob not found: {repo}@{digest}")
        return self._blobs[repo][digest]

    def put_blob(self, repo: str, digest: str, data: bytes) -> None:
        if not _DIGEST_RE.match(digest):
            raise ValueError(f"Invalid digest format: {digest}")
        self._ensure_repo(repo)
        self._blobs[repo][digest] = data

    def clear(self) -> None:
        """Clear all stored data (test utility)."""
        self._manifests.clear()
        self._blobs.clear()
        self._tags.clear()
