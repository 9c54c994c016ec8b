"""
Image stream transport.

Reads and writes container images addressed through an OpenShift-style
image-stream API while manifests and blobs live in a Docker registry.
"""
from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
