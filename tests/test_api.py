"""HTTP-level tests for the hosted and proxy routers."""

import json
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from npm_adapter.core.dependencies import get_proxy_cache, get_publishing_service
from npm_adapter.domain.models import RepositoryConfig
from npm_adapter.main import create_app
from npm_adapter.services.proxy_cache import ProxyCache
from npm_adapter.services.publishing import PublishingService


@pytest.fixture
def hosted_client(storage, clock):
    app = create_app(RepositoryConfig(mode="hosted", base_url="http://registry.example"))
    service = PublishingService(storage, clock=clock)
    app.dependency_overrides[get_publishing_service] = lambda: service
    with TestClient(app) as client:
        yield client


@pytest.fixture
def proxy_client(storage, remote, clock):
    app = create_app(RepositoryConfig(mode="proxy", base_url="http://proxy.example/npm", path="npm"))
    cache = ProxyCache(storage, remote, ttl=timedelta(minutes=10), clock=clock)
    app.dependency_overrides[get_proxy_cache] = lambda: cache
    with TestClient(app) as client:
        yield client


def test_publish_and_install(hosted_client, make_payload):
    response = hosted_client.put("/@hello/simple", content=json.dumps(make_payload()))
    assert response.status_code == 200
    assert response.json()["versions"] == ["1.0.1"]

    document = hosted_client.get("/@hello/simple").json()
    assert document["versions"]["1.0.1"]["dist"]["tarball"] == (
        "http://registry.example/@hello/simple/-/simple-1.0.1.tgz"
    )
    assert document["dist-tags"] == {"latest": "1.0.1"}

    tarball = hosted_client.get("/@hello/simple/-/simple-1.0.1.tgz")
    assert tarball.status_code == 200
    assert tarball.content == b"hello"


def test_publish_rejects_malformed_payload(hosted_client, make_payload):
    raw = make_payload()
    raw["_attachments"]["simple-1.0.1.tgz"]["data"] = "%%%"

    assert hosted_client.put("/@hello/simple", content=json.dumps(raw)).status_code == 400
    assert hosted_client.put("/@hello/simple", content=b"{").status_code == 400
    assert hosted_client.get("/@hello/simple").status_code == 404


def test_unknown_package_and_tarball(hosted_client):
    assert hosted_client.get("/@hello/missing").status_code == 404
    assert hosted_client.get("/@hello/missing/-/missing-1.0.0.tgz").status_code == 404


def test_dist_tag_endpoints(hosted_client, make_payload):
    hosted_client.put("/@hello/simple", content=json.dumps(make_payload()))

    added = hosted_client.put("/-/package/@hello/simple/dist-tags/next", content=json.dumps("1.0.1"))
    assert added.status_code == 200
    assert hosted_client.get("/-/package/@hello/simple/dist-tags").json() == {
        "latest": "1.0.1",
        "next": "1.0.1",
    }

    missing = hosted_client.put("/-/package/@hello/simple/dist-tags/beta", content=json.dumps("2.0.0"))
    assert missing.status_code == 404

    assert hosted_client.delete("/-/package/@hello/simple/dist-tags/next").status_code == 200
    assert hosted_client.delete("/-/package/@hello/simple/dist-tags/next").status_code == 404
    assert hosted_client.get("/-/package/@hello/simple/dist-tags").json() == {"latest": "1.0.1"}


def test_deprecate(hosted_client, make_payload):
    hosted_client.put("/@hello/simple", content=json.dumps(make_payload()))

    deprecation = make_payload(deprecated="please upgrade")
    del deprecation["_attachments"]
    response = hosted_client.put(
        "/@hello/simple", content=json.dumps(deprecation), headers={"npm-command": "deprecate"}
    )

    assert response.status_code == 200
    document = hosted_client.get("/@hello/simple").json()
    assert document["versions"]["1.0.1"]["deprecated"] == "please upgrade"


def test_unpublish_version_then_tarball(hosted_client, make_payload):
    hosted_client.put("/@hello/simple", content=json.dumps(make_payload(version="1.0.0")))
    hosted_client.put("/@hello/simple", content=json.dumps(make_payload(version="1.0.1")))

    remaining = make_payload(version="1.0.0")
    del remaining["_attachments"]
    response = hosted_client.put("/@hello/simple/-rev/3-abc", content=json.dumps(remaining))
    assert response.json()["removed"] == ["1.0.1"]

    deleted = hosted_client.delete("/@hello/simple/-/simple-1.0.1.tgz/-rev/4-def")
    assert deleted.status_code == 200
    assert hosted_client.get("/@hello/simple/-/simple-1.0.1.tgz").status_code == 404
    assert list(hosted_client.get("/@hello/simple").json()["versions"]) == ["1.0.0"]


def test_force_unpublish(hosted_client, make_payload):
    hosted_client.put("/@hello/simple", content=json.dumps(make_payload()))

    assert hosted_client.delete("/@hello/simple/-rev/1-abc").status_code == 200
    assert hosted_client.get("/@hello/simple").status_code == 404
    assert hosted_client.get("/@hello/simple/-/simple-1.0.1.tgz").status_code == 404
    assert hosted_client.delete("/@hello/simple/-rev/1-abc").status_code == 404


def test_proxy_serves_package(proxy_client, remote, make_upstream):
    upstream = make_upstream()
    upstream["versions"]["1.0.0"]["dist"]["tarball"] = "/asdas/-/asdas-1.0.0.tgz"
    remote.packages["asdas"] = upstream

    response = proxy_client.get("/npm/asdas")

    assert response.status_code == 200
    assert response.headers["last-modified"] == remote.last_modified
    assert response.json()["versions"]["1.0.0"]["dist"]["tarball"] == (
        "http://proxy.example/npm/asdas/-/asdas-1.0.0.tgz"
    )


def test_proxy_serves_asset_once(proxy_client, remote):
    remote.assets["asdas/-/asdas-1.0.0.tgz"] = (b"foobar", "application/octet-stream")

    first = proxy_client.get("/npm/asdas/-/asdas-1.0.0.tgz")
    second = proxy_client.get("/npm/asdas/-/asdas-1.0.0.tgz")

    assert first.content == second.content == b"foobar"
    assert second.headers["content-type"] == "application/octet-stream"
    assert remote.asset_calls == ["asdas/-/asdas-1.0.0.tgz"]


def test_proxy_not_found_and_outage(proxy_client, remote, transport_error):
    assert proxy_client.get("/npm/not-found").status_code == 404
    assert proxy_client.get("/npm/not-found/-/not-found-1.0.0.tgz").status_code == 404
    assert proxy_client.get("/npm/a/b/c").status_code == 404

    remote.packages["asdas"] = transport_error
    assert proxy_client.get("/npm/asdas").status_code == 502


def test_health(hosted_client):
    assert hosted_client.get("/health").json() == {"status": "ok", "mode": "hosted"}
