"""
Tests for image stream reference parsing and translation.
"""
from __future__ import annotations

import pytest

from imagestream_transport.errors import InvalidReferenceError
from imagestream_transport.reference import (
    ImageStreamReference,
    convert_docker_image_reference,
    parse_reference,
)

DIGEST = "sha256:" + "ab" * 32


class TestParseReference:
    """Test parse_reference function."""

    def test_tagged_reference(self):
        ref = parse_reference("registry.example.com/myproject/app:v1")

        assert ref.registry_hostname == "registry.example.com"
        assert ref.namespace == "myproject"
        assert ref.stream == "app"
        assert ref.tag == "v1"
        assert ref.digest is None

    def test_host_with_port(self):
        ref = parse_reference("localhost:5000/myproject/app:v1")
        assert ref.registry_hostname == "localhost:5000"
        assert ref.tag == "v1"

    def test_missing_tag_defaults_to_latest(self):
        ref = parse_reference("localhost:5000/myproject/app")
        assert ref.tag == "latest"

    def test_double_slash_prefix_tolerated(self):
        ref = parse_reference("//registry.example.com/myproject/app:v1")
        assert ref.registry_hostname == "registry.example.com"

    def test_digest_reference(self):
        ref = parse_reference(f"registry.example.com/myproject/app@{DIGEST}")
        assert ref.digest == DIGEST
        assert ref.tag is None

    def test_empty_reference_rejected(self):
        with pytest.raises(InvalidReferenceError, match="cannot be empty"):
            parse_reference("")

    @pytest.mark.parametrize("text", [
        "registry.example.com/app:v1",
        "registry.example.com/a/b/c:v1",
        "/myproject/app:v1",
    ])
    def test_wrong_shape_rejected(self, text):
        with pytest.raises(InvalidReferenceError):
            parse_reference(text)

    def test_invalid_tag_rejected(self):
        with pytest.raises(InvalidReferenceError, match="invalid tag"):
            parse_reference("registry.example.com/myproject/app:")

    def test_invalid_digest_rejected(self):
        with pytest.raises(InvalidReferenceError, match="invalid digest"):
            parse_reference("registry.example.com/myproject/app@sha256:short")

    def test_uppercase_segment_rejected(self):
        with pytest.raises(InvalidReferenceError, match="invalid path segment"):
            parse_reference("registry.example.com/MyProject/app:v1")

    def test_invalid_reference_is_value_error(self):
        """Callers catching ValueError also see reference errors."""
        with pytest.raises(ValueError):
            parse_reference("nonsense")


class TestImageStreamReference:
    """Test the reference dataclass invariants."""

    def test_docker_reference_with_tag(self):
        ref = ImageStreamReference("registry.example.com", "myproject", "app", tag="v1")
        assert ref.docker_reference() == "registry.example.com/myproject/app:v1"
        assert str(ref) == "registry.example.com/myproject/app:v1"

    def test_docker_reference_with_digest(self):
        ref = ImageStreamReference("registry.example.com", "myproject", "app", digest=DIGEST)
        assert ref.docker_reference() == f"registry.example.com/myproject/app@{DIGEST}"

    def test_tag_and_digest_exclusive(self):
        with pytest.raises(InvalidReferenceError, match="exactly one"):
            ImageStreamReference("registry.example.com", "myproject", "app", tag="v1", digest=DIGEST)
        with pytest.raises(InvalidReferenceError, match="exactly one"):
            ImageStreamReference("registry.example.com", "myproject", "app")

    def test_segments_must_be_single_path_segments(self):
        with pytest.raises(InvalidReferenceError, match="namespace"):
            ImageStreamReference("registry.example.com", "", "app", tag="v1")
        with pytest.raises(InvalidReferenceError, match="stream"):
            ImageStreamReference("registry.example.com", "myproject", "a/b", tag="v1")


class TestConvertDockerImageReference:
    """Test translation of cluster-internal references."""

    @pytest.mark.parametrize("raw,expected", [
        ("172.30.1.1:5000/myproject/app@sha256:abc", "registry.example.com/myproject/app@sha256:abc"),
        ("docker-registry.default.svc:5000/ns/img:tag", "registry.example.com/ns/img:tag"),
        ("host/rest", "registry.example.com/rest"),
        ("host/a/b/c/d", "registry.example.com/a/b/c/d"),
    ])
    def test_host_replaced(self, raw, expected):
        assert convert_docker_image_reference(raw, "registry.example.com") == expected

    def test_output_is_external_host_plus_remainder(self):
        raw = "10.0.0.1:5000/ns/stream@sha256:0123"
        rest = raw.split("/", 1)[1]
        assert convert_docker_image_reference(raw, "ext:443") == "ext:443/" + rest

    def test_missing_separator_fails(self):
        with pytest.raises(InvalidReferenceError, match="missing '/'"):
            convert_docker_image_reference("no-separator-here", "registry.example.com")

    def test_pure_function(self):
        raw = "172.30.1.1:5000/myproject/app:v1"
        first = convert_docker_image_reference(raw, "registry.example.com")
        second = convert_docker_image_reference(raw, "registry.example.com")
        assert first == second
