"""
Settings and configuration for the image stream transport.

Holds the already-resolved cluster endpoint and credentials that the
image-stream API client needs. Cluster config discovery (kubeconfig and
friends) happens elsewhere; this module only accepts its output, either
directly or from environment variables.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Optional

from . import __version__

__all__ = ["Settings", "create_settings_from_env", "default_user_agent"]


def default_user_agent() -> str:
    """User-Agent sent with every image-stream API request."""
    return f"imagestream-transport/{__version__}"


@dataclass(frozen=True)
class Settings:
    """
    Configuration settings for the image-stream API client.

    API Settings:
        api_url: Base URL of the cluster API server (required)
        bearer_token: Bearer token; takes priority over basic auth when set
        username: Username for HTTP basic authentication
        password: Password for HTTP basic authentication
        insecure: Skip TLS verification (local/dev clusters)
        http_timeout_s: HTTP request timeout in seconds
        http_retry: Number of retries for timed out requests (0=no retry)
        user_agent: User-Agent header value
    """
    api_url: str
    bearer_token: str = ""
    username: str = ""
    password: str = ""
    insecure: bool = False
    http_timeout_s: float = 30.0
    http_retry: int = 0
    user_agent: str = ""

    def __post_init__(self):
        """Validate settings on construction."""
        if not self.api_url:
            raise ValueError("api_url is required")

        # Must be an absolute http(s) URL: https://host[:port][/path]
        url_pattern = r"^https?://[a-zA-Z0-9.-]+(?::[0-9]+)?(?:/.*)?$"
        if not re.match(url_pattern, self.api_url):
            raise ValueError(f"Invalid api_url format: {self.api_url}")

        if self.http_timeout_s <= 0:
            raise ValueError(f"http_timeout_s must be positive, got {self.http_timeout_s}")

        if self.http_retry < 0:
            raise ValueError(f"http_retry must be non-negative, got {self.http_retry}")

        if self.password and not self.username:
            raise ValueError("password specified but username is missing")

        # Frozen dataclass: fill the default through object.__setattr__
        if not self.user_agent:
            object.__setattr__(self, "user_agent", default_user_agent())


def create_settings_from_env() -> Settings:
    """
    Load settings from environment variables.

    Environment Variables:
        - IMAGESTREAM_API_URL (required)
        - IMAGESTREAM_TOKEN (optional)
        - IMAGESTREAM_USERNAME (optional)
        - IMAGESTREAM_PASSWORD (optional)
        - IMAGESTREAM_INSECURE (default: false)
        - IMAGESTREAM_HTTP_TIMEOUT (default: 30.0)
        - IMAGESTREAM_HTTP_RETRY (default: 0)

    Returns:
        Settings object with validated configuration

    Raises:
        ValueError: If configuration is invalid or required values missing

    Note:
        Creates a fresh Settings instance every time (no caching).
    """
    def str_to_bool(value: str) -> bool:
        return value.lower() in ('true', '1', 'yes', 'on')

    def get_float(key: str, default: float) -> float:
        value = os.getenv(key)
        return float(value) if value else default

    def get_int(key: str, default: int) -> int:
        value = os.getenv(key)
        return int(value) if value else default

    api_url: Optional[str] = os.getenv("IMAGESTREAM_API_URL")
    if not api_url:
        raise ValueError("IMAGESTREAM_API_URL environment variable is required")

    return Settings(
        api_url=api_url,
        bearer_token=os.getenv("IMAGESTREAM_TOKEN", ""),
        username=os.getenv("IMAGESTREAM_USERNAME", ""),
        password=os.getenv("IMAGESTREAM_PASSWORD", ""),
        insecure=str_to_bool(os.getenv("IMAGESTREAM_INSECURE", "false")),
        http_timeout_s=get_float("IMAGESTREAM_HTTP_TIMEOUT", 30.0),
        http_retry=get_int("IMAGESTREAM_HTTP_RETRY", 0),
    )
