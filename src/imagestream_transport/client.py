"""
HTTP client for the image-stream API.

Issues authenticated requests against the cluster API server, decodes the
Kubernetes status envelope and maps failed responses to StatusError.
"""
from __future__ import annotations

import logging
from typing import Optional

import httpx
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .errors import StatusError
from .models import Image, ImageSignature, ImageStream, ImageStreamImage, Status
from .reference import ImageStreamReference, convert_docker_image_reference
from .settings import Settings

logger = logging.getLogger(__name__)

IMAGE_SIGNATURES_PATH = "/oapi/v1/imagesignatures"


class ImageStreamClient:
    """
    Client for a single image stream, for reading or writing.

    Attaches exactly one credential scheme per request: the bearer token if
    set, else HTTP basic auth if a username is set, else none.
    """

    def __init__(self, settings: Settings, ref: ImageStreamReference,
                 http_client: Optional[httpx.Client] = None):
        """
        Initialize image-stream API client.

        Args:
            settings: Cluster endpoint, credentials and HTTP tuning
            ref: Image stream reference this client serves
            http_client: Pre-configured httpx client (tests inject one with
                a MockTransport); created from settings when omitted
        """
        self.settings = settings
        self.ref = ref
        self.base_url = httpx.URL(settings.api_url)

        self._http = http_client or httpx.Client(
            timeout=httpx.Timeout(settings.http_timeout_s),
            follow_redirects=True,
            verify=not settings.insecure,
        )

        if settings.bearer_token:
            self._auth_header: Optional[str] = f"Bearer {settings.bearer_token}"
            self._basic_auth: Optional[httpx.BasicAuth] = None
        elif settings.username:
            self._auth_header = None
            self._basic_auth = httpx.BasicAuth(settings.username, settings.password)
        else:
            self._auth_header = None
            self._basic_auth = None

        # Only timeouts are retried, and only when configured (default: never)
        self._retrying = Retrying(
            stop=stop_after_attempt(settings.http_retry + 1),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(httpx.TimeoutException),
            reraise=True,
        )

    def do_request(self, method: str, path: str, body: Optional[bytes] = None) -> bytes:
        """
        Perform an authenticated request and return the response body.

        Args:
            method: HTTP method
            path: Absolute API path; replaces the path of the base URL
            body: JSON request body, if any

        Returns:
            Raw response body

        Raises:
            StatusError: If the API reports a failure
            httpx.RequestError: On connection/IO failures (unchanged)
        """
        url = self.base_url.copy_with(path=path)
        headers = {
            "Accept": "application/json, */*",
            "User-Agent": self.settings.user_agent,
        }
        if self._auth_header:
            headers["Authorization"] = self._auth_header
        if body is not None:
            logger.debug(f"Will send body: {body!r}")
            headers["Content-Type"] = "application/json"

        logger.debug(f"{method} {url}")
        response = self._retrying(
            self._http.request, method, url,
            content=body, headers=headers,
            auth=self._basic_auth if self._basic_auth is not None else httpx.USE_CLIENT_DEFAULT,
        )
        data = response.content
        logger.debug(f"Got body: {data!r}")
        logger.debug(f"Got content-type: {response.headers.get('Content-Type', '')}")

        status = Status.try_parse(data)
        code = response.status_code

        if code == httpx.codes.SWITCHING_PROTOCOLS:
            # This endpoint class reports failures as 101 + status object
            if status is not None and status.status != "Success":
                raise StatusError(status.message, code=code, status=status)
        elif httpx.codes.OK <= code <= httpx.codes.PARTIAL_CONTENT:
            pass
        elif status is not None:
            raise StatusError(status.message, code=code, status=status)
        else:
            raise StatusError(
                f"HTTP error: status code: {code}, body: {data.decode('utf-8', errors='replace')}",
                code=code,
            )

        return data

    def get_image_stream(self) -> ImageStream:
        """Fetch the image stream this client is bound to."""
        path = f"/oapi/v1/namespaces/{self.ref.namespace}/imagestreams/{self.ref.stream}"
        body = self.do_request("GET", path)
        return ImageStream.model_validate_json(body)

    def get_image(self, image_stream_image_name: str) -> Image:
        """
        Load the image object for a content identifier.

        Args:
            image_stream_image_name: Image name (manifest digest)

        Returns:
            Image with its signatures
        """
        path = (
            f"/oapi/v1/namespaces/{self.ref.namespace}"
            f"/imagestreamimages/{self.ref.stream}@{image_stream_image_name}"
        )
        body = self.do_request("GET", path)
        return ImageStreamImage.model_validate_json(body).image

    def create_signature(self, signature: ImageSignature) -> bytes:
        """POST a new signature object; returns the created object body."""
        body = signature.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")
        return self.do_request("POST", IMAGE_SIGNATURES_PATH, body)

    def convert_docker_image_reference(self, raw: str) -> str:
        """Rewrite raw to use the hostname of the user-supplied reference."""
        return convert_docker_image_reference(raw, self.ref.registry_hostname)

    def close(self):
        """Close HTTP client."""
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


__all__ = ["ImageStreamClient", "IMAGE_SIGNATURES_PATH"]
