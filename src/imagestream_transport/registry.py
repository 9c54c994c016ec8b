"""
Docker Registry v2 delegate transport.

Provides HTTP-based manifest and blob operations against a Docker
Distribution registry, with credentials from the Docker config file and
the registry bearer-token auth flow. This is the generic registry transport
the image stream source and destination delegate storage to.
"""
from __future__ import annotations

import base64
import binascii
import io
import json
import logging
import re
import time
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional, Sequence, Tuple

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from . import __version__
from .delegate import BlobInfo
from .errors import (
    DigestMismatch,
    InvalidReferenceError,
    RegistryAuthError,
    RegistryError,
    RegistryNotFound,
    UnsupportedMediaType,
)
from .manifest import (
    DEFAULT_REQUESTED_MANIFEST_MIME_TYPES,
    DOCKER_V2_SCHEMA1_SIGNED,
    guess_mime_type,
    manifest_digest,
)

logger = logging.getLogger(__name__)

DOCKER_HUB_HOSTNAME = "docker.io"
DOCKER_HUB_REGISTRY = "registry-1.docker.io"

_DIGEST_RE = re.compile(r"^sha256:[a-f0-9]{64}$")


class DockerAuth:
    """Handle Docker Registry authentication from config files."""

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = config_path or Path.home() / ".docker" / "config.json"
        self._config_cache: Optional[dict] = None
        self._config_mtime: Optional[float] = None

    def get_credentials(self, registry: str) -> Optional[Tuple[str, str]]:
        """
        Get credentials for registry from Docker config.

        Returns: (username, password) or None if not found
        """
        config = self._load_config()
        if not config:
            return None

        auths = config.get("auths", {})

        auth_entry = None
        for key in (registry, f"https://{registry}", f"http://{registry}"):
            if key in auths:
                auth_entry = auths[key]
                break
        if auth_entry is None:
            return None

        # Handle base64 encoded auth field
        if "auth" in auth_entry:
            try:
                decoded = base64.b64decode(auth_entry["auth"]).decode()
            except (binascii.Error, UnicodeDecodeError):
                logger.warning(f"Ignoring malformed auth entry for {registry} in {self.config_path}")
            else:
                if ":" in decoded:
                    username, password = decoded.split(":", 1)
                    return username, password

        if "username" in auth_entry and "password" in auth_entry:
            return auth_entry["username"], auth_entry["password"]

        return None

    def _load_config(self) -> Optional[dict]:
        """Load Docker config with caching and mtime checking."""
        if not self.config_path.exists():
            return None

        try:
            current_mtime = self.config_path.stat().st_mtime

            # Use cached version if file hasn't changed
            if (self._config_cache is not None and
                    self._config_mtime is not None and
                    current_mtime == self._config_mtime):
                return self._config_cache

            with open(self.config_path, 'r') as f:
                config = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Cannot read Docker config {self.config_path}: {e}")
            return None

        self._config_cache = config
        self._config_mtime = current_mtime
        return config


class RegistryHTTP:
    """
    HTTP client for one Docker Distribution registry.

    Implements the Docker Registry v2 auth flow: requests go out anonymously
    and a 401 challenge is answered with a Bearer token (exchanged for
    Docker config credentials) or Basic credentials.
    """

    def __init__(self, registry: str, auth: Optional[DockerAuth] = None,
                 insecure: bool = False, timeout_s: float = 30.0,
                 user_agent: Optional[str] = None,
                 transport: Optional[httpx.BaseTransport] = None):
        """
        Initialize registry HTTP client.

        Args:
            registry: Registry hostname (e.g., "localhost:5000", "quay.io")
            auth: Docker auth handler (defaults to standard Docker config)
            insecure: Use plain HTTP and skip TLS verification
            timeout_s: Read/write timeout in seconds
            user_agent: User-Agent header value
            transport: httpx transport override (tests)
        """
        self.registry = registry
        self.auth = auth or DockerAuth()
        self.insecure = insecure

        scheme = "http" if insecure else "https"
        self.base_url = httpx.URL(f"{scheme}://{registry}")

        self.client = httpx.Client(
            timeout=httpx.Timeout(connect=5.0, read=timeout_s, write=timeout_s, pool=5.0),
            follow_redirects=True,
            verify=not insecure,
            headers={"User-Agent": user_agent or f"imagestream-transport/{__version__}"},
            transport=transport,
        )

        # Token cache: {service/scope: (token, expiry_timestamp)}
        self._token_cache: Dict[str, Tuple[str, float]] = {}

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(httpx.TimeoutException),
        reraise=True,
    )
    def request(self, method: str, url: str, headers: Optional[dict] = None, **kwargs) -> httpx.Response:
        """
        Make HTTP request with transparent auth challenge handling.

        Handles 401 responses by:
        1. Parsing the WWW-Authenticate header
        2. Looking up credentials in Docker config
        3. For Bearer: exchanging credentials for a token (cached per
           service/scope); for Basic: sending the credentials directly
        4. Retrying the original request once

        Does not raise for HTTP error statuses; see check().
        """
        target = self.base_url.join(url)
        request_headers = dict(headers or {})

        response = self.client.request(method, target, headers=request_headers, **kwargs)

        if response.status_code == 401:
            challenge = response.headers.get("WWW-Authenticate", "")
            if challenge.startswith("Bearer "):
                token = self._handle_bearer_auth(challenge)
                if token:
                    request_headers["Authorization"] = f"Bearer {token}"
                    response = self.client.request(method, target, headers=request_headers, **kwargs)
            elif challenge.startswith("Basic "):
                creds = self.auth.get_credentials(self.registry)
                if creds:
                    response = self.client.request(method, target, headers=request_headers,
                                                   auth=creds, **kwargs)

        logger.debug(f"{method} {target} -> {response.status_code}")
        return response

    @staticmethod
    def check(response: httpx.Response, what: str) -> httpx.Response:
        """
        Map HTTP error statuses to registry errors.

        Raises:
            RegistryNotFound: 404
            RegistryAuthError: 401/403
            UnsupportedMediaType: 415
            RegistryError: any other non-2xx status
        """
        code = response.status_code
        if 200 <= code < 300:
            return response
        if code == 404:
            raise RegistryNotFound(f"Not found: {what}")
        if code in (401, 403):
            raise RegistryAuthError(f"Authentication failed for {what}")
        if code == 415:
            raise UnsupportedMediaType(f"Registry rejected media type for {what}: {response.text}")
        raise RegistryError(f"Registry error {code} for {what}: {response.text}")

    def _handle_bearer_auth(self, www_authenticate: str) -> Optional[str]:
        """
        Handle Bearer token authentication flow.

        Parses WWW-Authenticate header, gets credentials, exchanges for token.
        Anonymous tokens are requested when no credentials are configured.
        """
        # Format: Bearer realm="...",service="...",scope="..."
        bearer_params = {}
        for match in re.finditer(r'(\w+)="([^"]*)"', www_authenticate):
            bearer_params[match.group(1)] = match.group(2)

        realm = bearer_params.get("realm")
        service = bearer_params.get("service")
        scope = bearer_params.get("scope")

        if not realm:
            return None

        cache_key = f"{service or ''}:{scope or ''}"
        if cache_key in self._token_cache:
            token, expiry = self._token_cache[cache_key]
            if time.time() < expiry - 30:  # 30s buffer before expiry
                return token

        params = {}
        if service:
            params["service"] = service
        if scope:
            params["scope"] = scope

        creds = self.auth.get_credentials(self.registry)
        auth_response = self.client.get(realm, params=params, auth=creds)
        if auth_response.status_code != 200:
            logger.debug(f"Token exchange with {realm} failed: {auth_response.status_code}")
            return None

        try:
            token_data = auth_response.json()
        except ValueError:
            logger.debug(f"Token endpoint {realm} returned invalid JSON")
            return None

        token = token_data.get("token") or token_data.get("access_token")
        if not token:
            return None

        # Default 1 hour if not specified
        expires_in = token_data.get("expires_in", 3600)
        self._token_cache[cache_key] = (token, time.time() + expires_in)
        return token

    def close(self):
        """Close HTTP client."""
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def _split_reference(text: str) -> Tuple[str, str, Optional[str], Optional[str]]:
    """Split "[//]host/repo[:tag|@digest]" into (registry, repository, tag, digest)."""
    remainder = text[2:] if text.startswith("//") else text
    if not remainder:
        raise InvalidReferenceError("reference cannot be empty")

    tag: Optional[str] = None
    digest: Optional[str] = None
    if "@" in remainder:
        remainder, digest = remainder.split("@", 1)
        if not _DIGEST_RE.match(digest):
            raise InvalidReferenceError(f"invalid digest in reference {text!r}")
    else:
        last_slash = remainder.rfind("/")
        colon = remainder.rfind(":")
        if colon > last_slash:
            remainder, tag = remainder[:colon], remainder[colon + 1:]
        else:
            tag = "latest"
        if not tag:
            raise InvalidReferenceError(f"empty tag in reference {text!r}")

    first, _, rest = remainder.partition("/")
    if rest and ("." in first or ":" in first or first == "localhost"):
        registry, repository = first, rest
    else:
        registry, repository = DOCKER_HUB_HOSTNAME, remainder
        if "/" not in repository:
            repository = f"library/{repository}"

    if not repository or any(not part for part in repository.split("/")):
        raise InvalidReferenceError(f"invalid repository in reference {text!r}")
    if repository.lower() != repository:
        raise InvalidReferenceError(f"repository name must be lowercase: {text!r}")

    return registry, repository, tag, digest


class DockerReference:
    """A parsed registry reference bound to its transport."""

    def __init__(self, transport: DockerRegistryTransport, registry: str, repository: str,
                 tag: Optional[str] = None, digest: Optional[str] = None):
        self.transport = transport
        self.registry = registry
        self.repository = repository
        self.tag = tag
        self.digest = digest

    @property
    def manifest_ref(self) -> str:
        """Tag or digest used in /v2/<repo>/manifests/<ref> URLs."""
        return self.digest or self.tag or "latest"

    def __str__(self) -> str:
        if self.digest:
            return f"{self.registry}/{self.repository}@{self.digest}"
        return f"{self.registry}/{self.repository}:{self.tag}"

    def __repr__(self) -> str:
        return f"DockerReference({str(self)!r})"

    def new_image_source(self, requested_mime_types: Optional[Sequence[str]] = None) -> DockerImageSource:
        return DockerImageSource(self, self.transport.new_http(self.registry), requested_mime_types)

    def new_image_destination(self) -> DockerImageDestination:
        return DockerImageDestination(self, self.transport.new_http(self.registry))


def _content_type(response: httpx.Response, body: bytes) -> str:
    mime_type = response.headers.get("Content-Type", "").split(";", 1)[0].strip()
    if not mime_type or mime_type in ("application/json", "text/plain"):
        return guess_mime_type(body) or mime_type
    return mime_type


class DockerImageSource:
    """Reads manifests and blobs of one image from a registry."""

    def __init__(self, ref: DockerReference, http: RegistryHTTP,
                 requested_mime_types: Optional[Sequence[str]] = None):
        self.ref = ref
        self._http = http
        self._accept = ", ".join(requested_mime_types or DEFAULT_REQUESTED_MANIFEST_MIME_TYPES)

    def _fetch_manifest(self, manifest_ref: str) -> Tuple[bytes, str]:
        url = f"/v2/{self.ref.repository}/manifests/{manifest_ref}"
        response = self._http.check(
            self._http.request("GET", url, headers={"Accept": self._accept}),
            f"{self.ref.registry}/{self.ref.repository}:{manifest_ref}",
        )
        body = response.content
        return body, _content_type(response, body)

    def get_manifest(self) -> Tuple[bytes, str]:
        return self._fetch_manifest(self.ref.manifest_ref)

    def get_target_manifest(self, digest: str) -> Tuple[bytes, str]:
        """
        GET manifest by digest and verify its content digest.

        Raises:
            DigestMismatch: If the content does not hash to digest
        """
        body, mime_type = self._fetch_manifest(digest)
        # Signed schema1 digests exclude the signatures; they can't be checked here
        if mime_type != DOCKER_V2_SCHEMA1_SIGNED:
            actual = manifest_digest(body)
            if digest.startswith("sha256:") and actual != digest:
                raise DigestMismatch(
                    f"Manifest digest mismatch for {self.ref.repository}@{digest}",
                    expected=digest, actual=actual,
                )
        return body, mime_type

    def get_blob(self, digest: str) -> Tuple[BinaryIO, int]:
        url = f"/v2/{self.ref.repository}/blobs/{digest}"
        response = self._http.check(
            self._http.request("GET", url),
            f"{self.ref.registry}/{self.ref.repository}@{digest}",
        )
        size = int(response.headers.get("Content-Length", len(response.content)))
        return io.BytesIO(response.content), size

    def close(self):
        self._http.close()


class DockerImageDestination:
    """Writes manifests and blobs of one image to a registry."""

    def __init__(self, ref: DockerReference, http: RegistryHTTP):
        self.ref = ref
        self._http = http

    def supported_manifest_mime_types(self) -> List[str]:
        # Empty: the registry accepts any manifest type
        return []

    def supports_signatures(self) -> Optional[str]:
        # Signature storage is handled by the image-stream API, not the registry
        return None

    def should_compress_layers(self) -> bool:
        return True

    def put_blob(self, stream: BinaryIO, info: BlobInfo) -> BlobInfo:
        """
        Upload a blob with a monolithic POST + PUT upload.

        Blobs already present in the repository are not uploaded again.

        Raises:
            DigestMismatch: If info.digest does not match the content
        """
        data = stream.read()
        digest = manifest_digest(data)
        if info.digest and info.digest != digest:
            raise DigestMismatch(
                f"Blob digest mismatch: expected {info.digest}, got {digest}",
                expected=info.digest, actual=digest,
            )
        if info.size not in (-1, len(data)):
            raise RegistryError(f"Blob size mismatch: expected {info.size}, got {len(data)}")

        repo = self.ref.repository
        what = f"{self.ref.registry}/{repo}@{digest}"
        head = self._http.request("HEAD", f"/v2/{repo}/blobs/{digest}")
        if head.status_code == 200:
            logger.debug(f"Blob {digest} already present in {repo}")
            return BlobInfo(digest=digest, size=len(data))

        start = self._http.check(self._http.request("POST", f"/v2/{repo}/blobs/uploads/"), what)
        location = start.headers.get("Location")
        if not location:
            raise RegistryError(f"Registry did not return an upload location for {what}")

        upload_url = self._http.base_url.join(location).copy_merge_params({"digest": digest})
        self._http.check(
            self._http.request(
                "PUT", str(upload_url),
                headers={"Content-Type": "application/octet-stream"},
                content=data,
            ),
            what,
        )
        logger.debug(f"Uploaded blob {digest} ({len(data)} bytes) to {repo}")
        return BlobInfo(digest=digest, size=len(data))

    def put_manifest(self, manifest: bytes) -> None:
        """
        PUT manifest under the reference's tag (or digest).

        Raises:
            UnsupportedMediaType: If the manifest type can't be determined
            DigestMismatch: If the registry reports a different digest
        """
        mime_type = guess_mime_type(manifest)
        if not mime_type:
            raise UnsupportedMediaType("Cannot determine manifest media type")

        repo = self.ref.repository
        manifest_ref = self.ref.manifest_ref
        response = self._http.check(
            self._http.request(
                "PUT", f"/v2/{repo}/manifests/{manifest_ref}",
                headers={"Content-Type": mime_type},
                content=manifest,
            ),
            f"{self.ref.registry}/{repo}:{manifest_ref}",
        )

        server_digest = response.headers.get("Docker-Content-Digest")
        local_digest = manifest_digest(manifest)
        if server_digest and mime_type != DOCKER_V2_SCHEMA1_SIGNED and server_digest != local_digest:
            raise DigestMismatch(
                f"Registry digest {server_digest} != local digest {local_digest}",
                expected=local_digest, actual=server_digest,
            )

    def commit(self) -> None:
        # Docker registries have no commit step; uploads are visible immediately
        pass

    def close(self):
        self._http.close()


class DockerRegistryTransport:
    """
    Generic Docker Registry v2 transport.

    Each source or destination gets its own RegistryHTTP client, owned and
    closed by that source or destination.
    """

    def __init__(self, auth: Optional[DockerAuth] = None, insecure: bool = False,
                 timeout_s: float = 30.0, user_agent: Optional[str] = None,
                 http_transport: Optional[httpx.BaseTransport] = None):
        self.auth = auth or DockerAuth()
        self.insecure = insecure
        self.timeout_s = timeout_s
        self.user_agent = user_agent
        self._http_transport = http_transport

    def parse_reference(self, reference: str) -> DockerReference:
        registry, repository, tag, digest = _split_reference(reference)
        return DockerReference(self, registry, repository, tag=tag, digest=digest)

    def new_http(self, registry: str) -> RegistryHTTP:
        hostname = DOCKER_HUB_REGISTRY if registry == DOCKER_HUB_HOSTNAME else registry
        insecure = self.insecure or hostname.startswith(("localhost", "127.0.0.1"))
        return RegistryHTTP(
            hostname,
            auth=self.auth,
            insecure=insecure,
            timeout_s=self.timeout_s,
            user_agent=self.user_agent,
            transport=self._http_transport,
        )


__all__ = [
    "DockerAuth",
    "RegistryHTTP",
    "DockerReference",
    "DockerImageSource",
    "DockerImageDestination",
    "DockerRegistryTransport",
]
