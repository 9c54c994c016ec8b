"""
Image stream transport entry point.

Binds cluster settings and a delegate registry transport, and opens image
sources and destinations for image stream references.
"""
from __future__ import annotations

import logging
import os
from typing import Callable, Optional, Sequence, Union

import httpx

from .client import ImageStreamClient
from .delegate import DelegateTransport
from .destination import ImageStreamDestination
from .reference import ImageStreamReference, parse_reference
from .registry import DockerRegistryTransport
from .settings import Settings
from .source import ImageStreamSource

logger = logging.getLogger(__name__)

TRANSPORT_NAME = "atomic"


class ImageStreamTransport:
    """
    Opens image stream sources and destinations.

    Examples:
        >>> transport = ImageStreamTransport(create_settings_from_env())
        >>> with transport.new_image_source("registry.example.com/proj/app:v1") as src:
        ...     manifest, mime_type = src.get_manifest()
    """
    name = TRANSPORT_NAME

    def __init__(self, settings: Settings, delegate: Optional[DelegateTransport] = None,
                 http_transport: Optional[httpx.BaseTransport] = None):
        """
        Args:
            settings: Cluster endpoint and credentials
            delegate: Registry transport for manifests and blobs (default:
                DockerRegistryTransport configured from settings)
            http_transport: httpx transport for image-stream API calls (tests)
        """
        self.settings = settings
        self.delegate = delegate or DockerRegistryTransport(
            insecure=settings.insecure,
            timeout_s=settings.http_timeout_s,
            user_agent=settings.user_agent,
        )
        self._http_transport = http_transport

    def parse_reference(self, reference: str) -> ImageStreamReference:
        return parse_reference(reference)

    def _as_reference(self, ref: Union[str, ImageStreamReference]) -> ImageStreamReference:
        return parse_reference(ref) if isinstance(ref, str) else ref

    def new_client(self, ref: Union[str, ImageStreamReference]) -> ImageStreamClient:
        http_client = None
        if self._http_transport is not None:
            http_client = httpx.Client(
                transport=self._http_transport,
                timeout=httpx.Timeout(self.settings.http_timeout_s),
                follow_redirects=True,
            )
        return ImageStreamClient(self.settings, self._as_reference(ref), http_client)

    def new_image_source(self, ref: Union[str, ImageStreamReference],
                         requested_manifest_mime_types: Optional[Sequence[str]] = None) -> ImageStreamSource:
        """
        Open a lazily resolved source. The caller must close it.

        Args:
            ref: Image stream reference
            requested_manifest_mime_types: Preferred manifest MIME types;
                None means the delegate's defaults
        """
        client = self.new_client(ref)
        logger.debug(f"Opening image source for {client.ref}")
        return ImageStreamSource(client, self.delegate, requested_manifest_mime_types)

    def new_image_destination(self, ref: Union[str, ImageStreamReference],
                              random_bytes: Callable[[int], bytes] = os.urandom) -> ImageStreamDestination:
        """Open a destination; the delegate destination is opened immediately."""
        client = self.new_client(ref)
        logger.debug(f"Opening image destination for {client.ref}")
        try:
            return ImageStreamDestination(client, self.delegate, random_bytes)
        except Exception:
            client.close()
            raise


__all__ = ["ImageStreamTransport", "TRANSPORT_NAME"]
