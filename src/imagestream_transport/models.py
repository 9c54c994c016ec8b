"""
Wire models for the image-stream API and Docker manifest lists.

These Pydantic models are subsets of the upstream API objects. Unknown
fields are ignored and missing fields fall back to empty defaults: no
kind/version checking or conversion is performed.
"""
from __future__ import annotations

import base64
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

ATOMIC_SIGNATURE_TYPE = "atomic"


class ApiModel(BaseModel):
    """Base for API subsets: aliases on the wire, snake_case in Python."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


def _null_as_empty_list(value):
    # Go encodes nil slices as null
    return [] if value is None else value


class Status(ApiModel):
    """A subset of the Kubernetes Status object used for API failures."""
    status: str = ""
    message: str = ""
    code: int = 0

    @classmethod
    def try_parse(cls, body: bytes) -> Optional[Status]:
        """
        Decode body as a Status object if it is one.

        Returns None when the body is not JSON, is not an object, or has an
        empty status field. Never raises.
        """
        try:
            status = cls.model_validate_json(body)
        except ValueError:
            return None
        if not status.status:
            return None
        return status


class ObjectMeta(ApiModel):
    name: str = ""
    generate_name: Optional[str] = Field(default=None, alias="generateName")
    namespace: Optional[str] = None
    self_link: Optional[str] = Field(default=None, alias="selfLink")
    resource_version: Optional[str] = Field(default=None, alias="resourceVersion")
    generation: Optional[int] = None
    labels: Optional[Dict[str, str]] = None
    annotations: Optional[Dict[str, str]] = None


class TagEvent(ApiModel):
    """One historical resolution of a tag to a registry image."""
    docker_image_reference: str = Field(default="", alias="dockerImageReference")
    image: str = ""


class NamedTagEventList(ApiModel):
    """Tag history, most recent event first."""
    tag: str = ""
    items: List[TagEvent] = Field(default_factory=list)

    null_items = field_validator("items", mode="before")(_null_as_empty_list)


class ImageStreamStatus(ApiModel):
    docker_image_repository: str = Field(default="", alias="dockerImageRepository")
    tags: List[NamedTagEventList] = Field(default_factory=list)

    null_tags = field_validator("tags", mode="before")(_null_as_empty_list)


class ImageStream(ApiModel):
    status: ImageStreamStatus = Field(default_factory=ImageStreamStatus)


class ImageSignature(ApiModel):
    """
    Signature object attached to an image.

    content holds the raw signature bytes; on the wire it is base64, the
    JSON encoding of a byte array.
    """
    kind: Optional[str] = None
    api_version: Optional[str] = Field(default=None, alias="apiVersion")
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    type: str = ""
    content: bytes = b""

    @field_validator("content", mode="before")
    @classmethod
    def decode_content(cls, value):
        if value is None:
            return b""
        if isinstance(value, str):
            return base64.b64decode(value, validate=True)
        return value

    @field_serializer("content")
    def encode_content(self, value: bytes) -> str:
        return base64.b64encode(value).decode("ascii")

    def is_atomic(self) -> bool:
        return self.type == ATOMIC_SIGNATURE_TYPE


class Image(ApiModel):
    """Image object; its metadata.name is the content identifier."""
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    docker_image_reference: str = Field(default="", alias="dockerImageReference")
    docker_image_metadata_version: str = Field(default="", alias="dockerImageMetadataVersion")
    docker_image_manifest: str = Field(default="", alias="dockerImageManifest")
    signatures: List[ImageSignature] = Field(default_factory=list)

    null_signatures = field_validator("signatures", mode="before")(_null_as_empty_list)

    def atomic_signatures(self) -> List[bytes]:
        """Contents of atomic signatures, in API order."""
        return [sig.content for sig in self.signatures if sig.is_atomic()]


class ImageStreamImage(ApiModel):
    image: Image = Field(default_factory=Image)


class PlatformSpec(ApiModel):
    architecture: str = ""
    os: str = ""
    os_version: Optional[str] = Field(default=None, alias="os.version")
    os_features: Optional[List[str]] = Field(default=None, alias="os.features")
    variant: Optional[str] = None
    features: Optional[List[str]] = None


class ManifestDescriptor(ApiModel):
    """References a platform-specific manifest."""
    media_type: str = Field(default="", alias="mediaType")
    size: int = 0
    digest: str = ""
    platform: PlatformSpec = Field(default_factory=PlatformSpec)


class ManifestList(ApiModel):
    schema_version: int = Field(default=0, alias="schemaVersion")
    media_type: str = Field(default="", alias="mediaType")
    manifests: List[ManifestDescriptor] = Field(default_factory=list)

    null_manifests = field_validator("manifests", mode="before")(_null_as_empty_list)


__all__ = [
    "ATOMIC_SIGNATURE_TYPE",
    "Status",
    "ObjectMeta",
    "TagEvent",
    "NamedTagEventList",
    "ImageStreamStatus",
    "ImageStream",
    "ImageSignature",
    "Image",
    "ImageStreamImage",
    "PlatformSpec",
    "ManifestDescriptor",
    "ManifestList",
]
