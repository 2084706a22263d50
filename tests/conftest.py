"""
Shared fixtures: in-memory storage, a controllable clock, a scripted upstream
registry and publish payload builders.
"""

import base64
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import pytest

from npm_adapter.domain.errors import RemoteTransportError
from npm_adapter.domain.models import PackageMetadataDocument, RemoteAsset, RemotePackage
from npm_adapter.services.remote import NpmRemote
from npm_adapter.storage.memory_storage import InMemoryBlobStorage

LAST_MODIFIED = "Tue, 24 Mar 2020 12:15:16 GMT"


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class FakeRemote(NpmRemote):
    """
    Upstream registry answering from dictionaries. A value that is an
    exception instance is raised instead of returned.
    """

    def __init__(self):
        self.packages: Dict[str, Union[dict, Exception]] = {}
        self.assets: Dict[str, Union[Tuple[bytes, str], Exception]] = {}
        self.package_calls: List[str] = []
        self.asset_calls: List[str] = []
        self.staging_paths: List[Path] = []
        self.last_modified = LAST_MODIFIED
        self.closed = False

    async def load_package(self, name: str) -> Optional[RemotePackage]:
        self.package_calls.append(name)
        entry = self.packages.get(name)
        if entry is None:
            return None
        if isinstance(entry, Exception):
            raise entry
        return RemotePackage(
            document=PackageMetadataDocument.from_dict(entry),
            last_modified=self.last_modified,
        )

    async def load_asset(self, path: str, staging: Path) -> Optional[RemoteAsset]:
        self.asset_calls.append(path)
        self.staging_paths.append(staging)
        entry = self.assets.get(path)
        if entry is None:
            return None
        if isinstance(entry, Exception):
            raise entry
        data, content_type = entry
        staging.write_bytes(data)
        return RemoteAsset(path=path, last_modified=self.last_modified, content_type=content_type)

    async def close(self) -> None:
        self.closed = True


def build_payload(
    name: str = "@hello/simple",
    version: str = "1.0.1",
    content: bytes = b"hello",
    dist_tags: Optional[Dict[str, str]] = None,
    **descriptor_fields,
) -> dict:
    """The JSON body ``npm publish`` sends for a single version."""
    filename = f"{name.rsplit('/', 1)[-1]}-{version}.tgz"
    descriptor = {
        "name": name,
        "version": version,
        "dist": {
            "tarball": f"http://localhost:4873/{name}/-/{filename}",
            "shasum": "aaf4c61ddcc5e8a2dabede0f3b482cd9aea9434d",
        },
    }
    descriptor.update(descriptor_fields)
    return {
        "_id": name,
        "name": name,
        "description": "A simple package",
        "readme": "# simple",
        "dist-tags": dist_tags if dist_tags is not None else {"latest": version},
        "versions": {version: descriptor},
        "_attachments": {
            filename: {
                "content_type": "application/octet-stream",
                "data": base64.b64encode(content).decode("ascii"),
                "length": len(content),
            }
        },
    }


def upstream_document(name: str = "asdas", versions=("1.0.0",)) -> dict:
    """A package document as the public registry serves it."""
    return {
        "_id": name,
        "name": name,
        "dist-tags": {"latest": versions[-1]},
        "versions": {
            v: {
                "name": name,
                "version": v,
                "dist": {"tarball": f"https://registry.npmjs.org/{name}/-/{name.rsplit('/', 1)[-1]}-{v}.tgz"},
            }
            for v in versions
        },
        "time": {v: "2020-03-24T12:15:16.000Z" for v in versions},
    }


@pytest.fixture
def storage() -> InMemoryBlobStorage:
    return InMemoryBlobStorage()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def payload_bytes():
    def _build(**kwargs) -> bytes:
        return json.dumps(build_payload(**kwargs)).encode("utf-8")
    return _build


@pytest.fixture
def transport_error() -> RemoteTransportError:
    return RemoteTransportError("connection refused")


@pytest.fixture
def make_payload():
    return build_payload


@pytest.fixture
def make_upstream():
    return upstream_document
