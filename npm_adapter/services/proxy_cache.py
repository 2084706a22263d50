"""
Read-through cache in front of an upstream npm registry.

This service handles:
- Serving cached package documents while they are fresh (within the TTL)
- Refreshing stale documents from upstream, falling back to the stale copy
  when upstream no longer has the package or cannot be reached
- Downloading assets once through a private staging file and serving the
  cached copy forever after

Layout in blob storage:
    <name>/meta.json    package document (tarballs relative)
    <name>/meta.meta    CacheMeta (last-modified, last-refreshed)
    <asset path>        asset bytes
    <asset path>.meta   AssetMeta (last-modified, content-type)
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import AsyncIterator, Callable, Optional

import aiofiles
import aiofiles.os
import aiofiles.tempfile

from npm_adapter.domain.errors import NotFound, RemoteTransportError
from npm_adapter.domain.models import (
    AssetMeta,
    CachedAsset,
    CachedPackage,
    CacheMeta,
    PackageMetadataDocument,
    RemotePackage,
)
from npm_adapter.domain.npm_utils import meta_key, utc_now
from npm_adapter.services.remote import NpmRemote
from npm_adapter.storage.blob_storage import BlobStorage

logger = logging.getLogger(__name__)


def _package_meta_key(name: str) -> str:
    return f"{name}/meta.meta"


def _asset_meta_key(path: str) -> str:
    return f"{path}.meta"


@asynccontextmanager
async def staging_file(prefix: str = "npm-asset-", suffix: str = ".tmp") -> AsyncIterator[Path]:
    """
    A uniquely named temporary file owned by the caller for the duration of
    the block; removed on every exit path.
    """
    async with aiofiles.tempfile.NamedTemporaryFile(prefix=prefix, suffix=suffix, delete=False) as f:
        path = Path(f.name)
    try:
        yield path
    finally:
        if await aiofiles.os.path.exists(path):
            await aiofiles.os.remove(path)


class ProxyCache:
    def __init__(
        self,
        storage: BlobStorage,
        remote: NpmRemote,
        ttl: timedelta,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.storage = storage
        self.remote = remote
        self.ttl = ttl
        self._clock = clock or utc_now

    # ========================================================================
    # Packages
    # ========================================================================

    async def cached_package(self, name: str) -> Optional[CachedPackage]:
        # An entry without its sidecar was interrupted mid-write; treat it as a miss
        if not await self.storage.exists(_package_meta_key(name)):
            return None
        if not await self.storage.exists(meta_key(name)):
            return None
        document = PackageMetadataDocument.from_json(await self.storage.get(meta_key(name)))
        meta = CacheMeta.model_validate_json(await self.storage.get(_package_meta_key(name)))
        return CachedPackage(document=document, meta=meta)

    async def _save_package(self, remote_package: RemotePackage) -> CachedPackage:
        cached = CachedPackage(
            document=remote_package.document,
            meta=CacheMeta(
                last_modified=remote_package.last_modified,
                last_refreshed=self._clock(),
            ),
        )
        name = cached.document.name
        # Sidecar first: the document only appears once its bookkeeping exists
        await self.storage.put(
            _package_meta_key(name),
            cached.meta.model_dump_json(by_alias=True).encode("utf-8"),
        )
        await self.storage.put(meta_key(name), cached.document.to_json())
        return cached

    async def _remote_package(self, name: str) -> Optional[CachedPackage]:
        remote_package = await self.remote.load_package(name)
        if remote_package is None:
            return None
        if remote_package.document.name != name:
            remote_package = remote_package.model_copy(
                update={"document": remote_package.document.evolve(name=name)}
            )
        return await self._save_package(remote_package)

    async def get_package(self, name: str) -> CachedPackage:
        """
        Package document, cached or freshly loaded from upstream.

        A stale cached copy is refreshed; if upstream does not have the package
        (or is unreachable) the stale copy is returned and its refresh time is
        left as it was, so the next call tries again.
        """
        cached = await self.cached_package(name)

        if cached is None:
            logger.debug(f"Package cache miss: {name}")
            fetched = await self._remote_package(name)
            if fetched is None:
                raise NotFound(f"Package {name} not found")
            return fetched

        age = self._clock() - cached.meta.last_refreshed
        if age <= self.ttl:
            logger.debug(f"Package cache hit: {name} (age {age})")
            return cached

        logger.debug(f"Package cache stale: {name} (age {age}), refreshing")
        try:
            fetched = await self._remote_package(name)
        except RemoteTransportError as e:
            logger.warning(f"Refresh of {name} failed, serving stale copy: {e}")
            return cached
        if fetched is None:
            logger.warning(f"Package {name} no longer found upstream, serving stale copy")
            return cached
        return fetched

    # ========================================================================
    # Assets
    # ========================================================================

    async def cached_asset(self, path: str) -> Optional[CachedAsset]:
        if not await self.storage.exists(_asset_meta_key(path)):
            return None
        if not await self.storage.exists(path):
            return None
        data = await self.storage.get(path)
        meta = AssetMeta.model_validate_json(await self.storage.get(_asset_meta_key(path)))
        return CachedAsset(path=path, data=data, meta=meta)

    async def get_asset(self, path: str) -> CachedAsset:
        """
        Asset bytes, cached or downloaded from upstream. Assets at a fixed path
        never change, so a cached asset is never revalidated.
        """
        cached = await self.cached_asset(path)
        if cached is not None:
            logger.debug(f"Asset cache hit: {path}")
            return cached

        logger.debug(f"Asset cache miss: {path}")
        async with staging_file() as staging:
            remote_asset = await self.remote.load_asset(path, staging)
            if remote_asset is None:
                raise NotFound(f"Asset {path} not found")
            async with aiofiles.open(staging, "rb") as f:
                data = await f.read()
            meta = AssetMeta(
                last_modified=remote_asset.last_modified,
                content_type=remote_asset.content_type,
            )
            await self.storage.put(
                _asset_meta_key(path),
                meta.model_dump_json(by_alias=True).encode("utf-8"),
            )
            await self.storage.put(path, data)
        logger.info(f"Cached asset {path} ({len(data)} bytes)")

        stored = await self.cached_asset(path)
        if stored is None:
            raise NotFound(f"Asset {path} vanished after caching")
        return stored

    async def close(self) -> None:
        await self.remote.close()
