"""
Image stream transport error classes.

Provides a clear taxonomy of errors raised while resolving image stream
references, synchronizing signatures and selecting platform manifests.
Connection and I/O failures from httpx are not wrapped; they propagate
unchanged.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .models import Status


class ImageStreamError(Exception):
    """
    Base class for all image stream transport errors.
    """
    pass


class StatusError(ImageStreamError):
    """
    The image-stream API answered with a failure.

    Raised when:
    - HTTP 101 carries a status object whose status is not "Success"
    - Any non-2xx response (message taken from the status object when
      the body decodes as one, otherwise a generic code + body message)
    """

    def __init__(self, message: str, code: int | None = None,
                 status: Optional["Status"] = None):
        super().__init__(message)
        self.code = code
        self.status = status


class InvalidReferenceError(ImageStreamError, ValueError):
    """
    A reference string could not be parsed or translated.

    Raised when:
    - A user-supplied image stream reference is malformed
    - A tag event's dockerImageReference has no '/' separator
    """
    pass


class TagNotFoundError(ImageStreamError):
    """
    The image stream has no usable tag event for the requested tag.

    Raised when:
    - No status.tags entry matches the tag
    - The matching entry has no items
    """

    def __init__(self, message: str = "no matching tag found"):
        super().__init__(message)


class UnknownManifestDigestError(ImageStreamError):
    """
    Signatures were written before any manifest.

    Signatures are keyed by manifest digest, which is only known after
    put_manifest has been called on the destination.
    """

    def __init__(self, message: str = "unknown manifest digest, can't add signatures"):
        super().__init__(message)


class SignatureNameError(ImageStreamError):
    """
    A unique signature name could not be generated.

    Raised when the random source returns fewer bytes than requested.
    """
    pass


class NoSupportedPlatformError(ImageStreamError):
    """
    No manifest list entry matches the running platform.
    """

    def __init__(self, message: str = "no supported platform found in manifest list"):
        super().__init__(message)


class RegistryError(ImageStreamError):
    """
    Base class for errors from the Docker registry delegate.

    These errors are mapped from HTTP status codes so callers see the same
    hierarchy regardless of which registry they talk to.
    """
    pass


class RegistryAuthError(RegistryError):
    """
    Authentication or authorization error.

    Raised when:
    - HTTP 401 Unauthorized (invalid credentials)
    - HTTP 403 Forbidden (insufficient permissions)
    """
    pass


class RegistryNotFound(RegistryError):
    """
    Resource not found in registry.

    Raised when:
    - HTTP 404 Not Found (manifest, blob, or repository doesn't exist)
    """
    pass


class DigestMismatch(RegistryError):
    """
    Content digest validation failed.

    Raised when:
    - put_blob: blob content doesn't match the digest the caller supplied
    - Registry returns a digest different from the locally computed one
    """

    def __init__(self, message: str, expected: str | None = None, actual: str | None = None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class UnsupportedMediaType(RegistryError):
    """
    Media type not supported by registry or client.

    Raised when:
    - Registry rejects a manifest due to its media type
    - A manifest list has a media type the parser does not know
    """
    pass


__all__ = [
    "ImageStreamError",
    "StatusError",
    "InvalidReferenceError",
    "TagNotFoundError",
    "UnknownManifestDigestError",
    "SignatureNameError",
    "NoSupportedPlatformError",
    "RegistryError",
    "RegistryAuthError",
    "RegistryNotFound",
    "DigestMismatch",
    "UnsupportedMediaType",
]
