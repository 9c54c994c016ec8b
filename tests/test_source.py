"""
Tests for ImageStreamSource resolution, pass-through and signatures.
"""
from __future__ import annotations

import httpx
import pytest

from imagestream_transport.errors import (
    InvalidReferenceError,
    RegistryNotFound,
    StatusError,
    TagNotFoundError,
)
from imagestream_transport.manifest import DOCKER_V2_SCHEMA2, OCI_IMAGE_MANIFEST, manifest_digest
from imagestream_transport.models import ImageStream
from imagestream_transport.reference import parse_reference
from imagestream_transport.source import find_tag_event

from .fakes.fake_api import status_body
from .helpers.images import (
    EXTERNAL_HOST,
    INTERNAL_HOST,
    MANIFEST,
    MANIFEST_DIGEST,
    NAMESPACE,
    REFERENCE,
    STREAM,
    make_manifest,
)

STREAM_PATH = f"/oapi/v1/namespaces/{NAMESPACE}/imagestreams/{STREAM}"
RESOLVED = f"{EXTERNAL_HOST}/{NAMESPACE}/{STREAM}@{MANIFEST_DIGEST}"


def _stream(tags):
    return ImageStream.model_validate({
        "status": {"tags": [
            {"tag": tag, "items": [{"dockerImageReference": ref, "image": image} for ref, image in items]}
            for tag, items in tags
        ]},
    })


class TestFindTagEvent:
    """Test tag event selection."""

    def test_first_item_of_matching_tag(self):
        stream = _stream([("v1", [("h/ns/s@sha256:new", "sha256:new"), ("h/ns/s@sha256:old", "sha256:old")])])
        event = find_tag_event(stream, parse_reference("ext/ns/s:v1"))
        assert event.image == "sha256:new"

    def test_other_tags_ignored(self):
        stream = _stream([
            ("latest", [("h/ns/s@sha256:aaa", "sha256:aaa")]),
            ("v1", [("h/ns/s@sha256:bbb", "sha256:bbb")]),
        ])
        assert find_tag_event(stream, parse_reference("ext/ns/s:v1")).image == "sha256:bbb"

    def test_empty_items_not_found(self):
        stream = _stream([("v1", [])])
        with pytest.raises(TagNotFoundError, match="no matching tag found"):
            find_tag_event(stream, parse_reference("ext/ns/s:v1"))

    def test_missing_tag_not_found(self):
        stream = _stream([("v2", [("h/ns/s@sha256:aaa", "sha256:aaa")])])
        with pytest.raises(TagNotFoundError):
            find_tag_event(stream, parse_reference("ext/ns/s:v1"))

    def test_digest_reference_matches_any_tag_history(self):
        digest = "sha256:" + "c" * 64
        stream = _stream([
            ("latest", [("h/ns/s@sha256:aaa", "sha256:aaa")]),
            ("v1", [("h/ns/s@sha256:bbb", "sha256:bbb"), (f"h/ns/s@{digest}", digest)]),
        ])
        assert find_tag_event(stream, parse_reference(f"ext/ns/s@{digest}")).image == digest


class TestResolution:
    """Test lazy resolution of image stream sources."""

    def test_opening_makes_no_requests(self, transport, seeded):
        source = transport.new_image_source(REFERENCE)

        assert not source.resolved
        assert seeded.requests == []
        source.close()

    def test_reference_is_unresolved_input(self, transport, seeded):
        with transport.new_image_source(REFERENCE) as source:
            source.get_manifest()
            assert str(source.reference) == REFERENCE

    def test_resolves_to_converted_reference(self, transport, seeded, registry):
        with transport.new_image_source(REFERENCE) as source:
            resolved = source.ensure_resolved()

        assert resolved.docker_reference == RESOLVED
        assert resolved.image_name == MANIFEST_DIGEST
        assert registry.parsed == [RESOLVED]

    def test_stream_fetched_once(self, transport, seeded):
        with transport.new_image_source(REFERENCE) as source:
            source.get_manifest()
            source.get_manifest()
            source.get_signatures()

        assert seeded.paths("GET").count(STREAM_PATH) == 1

    def test_newest_tag_event_wins(self, transport, api, registry):
        old = make_manifest("old")
        registry.put_manifest(f"{NAMESPACE}/{STREAM}", old)
        registry.put_manifest(f"{NAMESPACE}/{STREAM}", MANIFEST)
        api.add_stream(NAMESPACE, STREAM, {"v1": [
            (f"{INTERNAL_HOST}/{NAMESPACE}/{STREAM}@{MANIFEST_DIGEST}", MANIFEST_DIGEST),
            (f"{INTERNAL_HOST}/{NAMESPACE}/{STREAM}@{manifest_digest(old)}", manifest_digest(old)),
        ]})

        with transport.new_image_source(REFERENCE) as source:
            manifest, _ = source.get_manifest()

        assert manifest == MANIFEST

    def test_missing_tag_fails_and_stays_unresolved(self, transport, api):
        api.add_stream(NAMESPACE, STREAM, {"v2": [(f"{INTERNAL_HOST}/{NAMESPACE}/{STREAM}@sha256:x", "sha256:x")]})

        with transport.new_image_source(REFERENCE) as source:
            with pytest.raises(TagNotFoundError):
                source.get_manifest()
            assert not source.resolved

    def test_failed_resolution_retried_on_next_call(self, transport, api, registry):
        with transport.new_image_source(REFERENCE) as source:
            with pytest.raises(StatusError, match="not found"):
                source.get_manifest()

            registry.put_manifest(f"{NAMESPACE}/{STREAM}", MANIFEST, tag="v1")
            api.add_stream(NAMESPACE, STREAM, {
                "v1": [(f"{INTERNAL_HOST}/{NAMESPACE}/{STREAM}@{MANIFEST_DIGEST}", MANIFEST_DIGEST)],
            })
            manifest, _ = source.get_manifest()

        assert manifest == MANIFEST
        assert api.paths("GET").count(STREAM_PATH) == 2

    def test_unconvertible_reference_fails(self, transport, api):
        api.add_stream(NAMESPACE, STREAM, {"v1": [("no-slash", MANIFEST_DIGEST)]})

        with transport.new_image_source(REFERENCE) as source:
            with pytest.raises(InvalidReferenceError, match="missing '/'"):
                source.ensure_resolved()

    def test_requested_mime_types_passed_to_delegate(self, transport, seeded, registry):
        with transport.new_image_source(REFERENCE, [OCI_IMAGE_MANIFEST]) as source:
            source.get_manifest()

        assert registry.sources[0].requested_mime_types == [OCI_IMAGE_MANIFEST]

    def test_no_requested_mime_types_means_defaults(self, transport, seeded, registry):
        with transport.new_image_source(REFERENCE, []) as source:
            source.get_manifest()

        assert registry.sources[0].requested_mime_types is None

    def test_digest_reference(self, transport, seeded):
        with transport.new_image_source(f"{EXTERNAL_HOST}/{NAMESPACE}/{STREAM}@{MANIFEST_DIGEST}") as source:
            assert source.ensure_resolved().image_name == MANIFEST_DIGEST


class TestPassThrough:
    """Manifests and blobs come straight from the delegate."""

    def test_get_manifest(self, transport, seeded):
        with transport.new_image_source(REFERENCE) as source:
            manifest, mime_type = source.get_manifest()

        assert manifest == MANIFEST
        assert mime_type == DOCKER_V2_SCHEMA2

    def test_get_target_manifest(self, transport, seeded):
        with transport.new_image_source(REFERENCE) as source:
            manifest, _ = source.get_target_manifest(MANIFEST_DIGEST)
        assert manifest == MANIFEST

    def test_get_blob(self, transport, seeded, registry):
        data = b"layer bytes"
        digest = manifest_digest(data)
        registry.put_blob(f"{NAMESPACE}/{STREAM}", digest, data)

        with transport.new_image_source(REFERENCE) as source:
            stream, size = source.get_blob(digest)
            assert stream.read() == data
        assert size == len(data)

    def test_get_blob_resolves_first(self, transport, seeded):
        with transport.new_image_source(REFERENCE) as source:
            with pytest.raises(RegistryNotFound):
                source.get_blob("sha256:" + "0" * 64)
            assert source.resolved


class TestSignatures:
    """Test reading signatures from the image-stream API."""

    def test_only_atomic_in_api_order(self, transport, seeded):
        seeded.add_image(MANIFEST_DIGEST, [
            ("a", "atomic", b"first"),
            ("b", "simple", b"ignored"),
            ("c", "atomic", b"second"),
        ])

        with transport.new_image_source(REFERENCE) as source:
            assert source.get_signatures() == [b"first", b"second"]

    def test_no_signatures(self, transport, seeded):
        with transport.new_image_source(REFERENCE) as source:
            assert source.get_signatures() == []

    def test_fetched_fresh_each_call(self, transport, seeded):
        with transport.new_image_source(REFERENCE) as source:
            assert source.get_signatures() == []
            seeded.add_image(MANIFEST_DIGEST, [("a", "atomic", b"later")])
            assert source.get_signatures() == [b"later"]

    def test_missing_image_fails(self, transport, api, registry):
        registry.put_manifest(f"{NAMESPACE}/{STREAM}", MANIFEST, tag="v1")
        api.add_stream(NAMESPACE, STREAM, {
            "v1": [(f"{INTERNAL_HOST}/{NAMESPACE}/{STREAM}@{MANIFEST_DIGEST}", MANIFEST_DIGEST)],
        })

        with transport.new_image_source(REFERENCE) as source:
            with pytest.raises(StatusError, match="not found"):
                source.get_signatures()

    def test_api_failure_surfaces(self, transport, seeded):
        path = f"/oapi/v1/namespaces/{NAMESPACE}/imagestreamimages/{STREAM}@{MANIFEST_DIGEST}"
        seeded.overrides[("GET", path)] = lambda request: httpx.Response(
            403, json=status_body("forbidden", 403))

        with transport.new_image_source(REFERENCE) as source:
            with pytest.raises(StatusError, match="forbidden"):
                source.get_signatures()


class TestClose:
    """Test releasing sources."""

    def test_close_unresolved_opens_nothing(self, transport, seeded, registry):
        source = transport.new_image_source(REFERENCE)
        source.close()

        assert registry.sources == []
        assert seeded.requests == []

    def test_close_releases_delegate(self, transport, seeded, registry):
        source = transport.new_image_source(REFERENCE)
        source.get_manifest()
        source.close()

        assert registry.sources[0].closed
        assert not source.resolved

    def test_close_twice(self, transport, seeded, registry):
        source = transport.new_image_source(REFERENCE)
        source.get_manifest()
        source.close()
        source.close()

        assert len(registry.sources) == 1
