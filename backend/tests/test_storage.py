"""Tests for the artifact store client."""
import json

import httpx

from assessq.storage import ArtifactStore

BASE = "https://project.supabase.co"
SNAPSHOT = f"{BASE}/storage/v1/object/public/voice-assessments/snapshots/42.jpg"


def _store(handler):
    return ArtifactStore(
        base_url=BASE,
        service_key="service-key",
        bucket="voice-assessments",
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


def test_object_path_only_for_own_bucket():
    store = _store(lambda request: httpx.Response(200))

    assert store.object_path(SNAPSHOT) == "snapshots/42.jpg"
    assert store.object_path("https://elsewhere.example.com/voice-assessments/a.jpg") is None
    assert store.object_path(f"{BASE}/storage/v1/object/public/other-bucket/a.jpg") is None
    assert not store.owns("")


def test_delete_sends_prefix_with_service_key():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json=[])

    assert _store(handler).delete(SNAPSHOT)

    request = requests[0]
    assert request.method == "DELETE"
    assert request.url.path == "/storage/v1/object/voice-assessments"
    assert request.headers["apikey"] == "service-key"
    assert request.headers["authorization"] == "Bearer service-key"
    assert json.loads(request.content) == {"prefixes": ["snapshots/42.jpg"]}


def test_delete_skips_foreign_urls():
    requests = []
    store = _store(lambda request: requests.append(request) or httpx.Response(200))

    assert not store.delete("https://cdn.example.com/a.jpg")
    assert requests == []


def test_unconfigured_store_owns_nothing():
    store = ArtifactStore(base_url="", service_key="", bucket="voice-assessments")
    assert not store.is_configured
    assert not store.owns(SNAPSHOT)
