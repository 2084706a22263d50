"""
Hosted repository operations.

Every mutation is a read-modify-write of ``<name>/meta.json``: load the current
document, compute the new value with MetadataStore, write it back. Mutations of
the same package are serialized per process with an asyncio lock; concurrent
writers in other processes still race and the last write wins.
"""
from __future__ import annotations

import asyncio
import copy
import logging
from collections import defaultdict
from datetime import datetime
from typing import Callable, Dict, List, Optional

from npm_adapter.domain.errors import MalformedPayload, NotFound, StorageError
from npm_adapter.domain.models import PackageMetadataDocument, PublishPayload
from npm_adapter.domain.npm_utils import asset_key, npm_timestamp, relative_tarball, utc_now
from npm_adapter.services.archive_store import ArchiveStore
from npm_adapter.services.metadata_store import MetadataStore
from npm_adapter.storage.blob_storage import BlobStorage

logger = logging.getLogger(__name__)


class PublishingService:
    """
    Write and read paths of a hosted npm repository.
    """

    def __init__(
        self,
        storage: BlobStorage,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.storage = storage
        self.metadata = MetadataStore(storage)
        self.archives = ArchiveStore(storage)
        self._clock = clock or utc_now
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ========================================================================
    # Reads
    # ========================================================================

    async def get_package(self, name: str) -> PackageMetadataDocument:
        document = await self.metadata.load(name)
        if document is None:
            raise NotFound(f"Package {name} not found")
        return document

    async def get_dist_tags(self, name: str) -> Dict[str, str]:
        return dict((await self.get_package(name)).dist_tags)

    async def get_asset(self, key: str) -> bytes:
        return await self.storage.get(key)

    async def delete_asset(self, key: str) -> None:
        await self.storage.delete(key)
        logger.info(f"Deleted asset {key}")

    # ========================================================================
    # Publish
    # ========================================================================

    @staticmethod
    def _with_relative_tarballs(payload: PublishPayload) -> PublishPayload:
        versions = copy.deepcopy(payload.versions)
        for descriptor in versions.values():
            dist = descriptor.get("dist")
            if isinstance(dist, dict) and isinstance(dist.get("tarball"), str):
                dist["tarball"] = relative_tarball(payload.name, dist["tarball"])
        return payload.model_copy(update={"versions": versions})

    async def _discard(self, keys: List[str]) -> None:
        for key in keys:
            try:
                await self.storage.delete(key)
            except NotFound:
                continue
            except StorageError as e:
                logger.warning(f"Could not remove partially published {key}: {e}")

    async def publish(self, raw: bytes, expected_name: Optional[str] = None) -> PackageMetadataDocument:
        """
        Handle an ``npm publish`` body.

        Attachments are decoded before anything is written, so a malformed
        payload leaves storage untouched. If storing fails, tarballs this
        publish created are removed again; replaced ones stay replaced.
        """
        payload = self._with_relative_tarballs(PublishPayload.from_json(raw))
        if expected_name is not None and payload.name != expected_name:
            raise MalformedPayload(
                f"Payload names package {payload.name} but was sent to {expected_name}"
            )
        if not payload.versions:
            raise MalformedPayload(f"Publish payload for {payload.name} carries no versions")

        async with self._locks[payload.name]:
            existing = await self.metadata.load(payload.name)
            document = self.metadata.merge(existing, payload)
            for tag, version in payload.dist_tags.items():
                try:
                    document = self.metadata.add_dist_tag(document, tag, version)
                except NotFound as e:
                    raise MalformedPayload(f"Dist-tag {tag} points at an unknown version: {e}") from e

            stamp = npm_timestamp(self._clock())
            time = dict(document.time)
            time.setdefault("created", stamp)
            time["modified"] = stamp
            for version in payload.versions:
                time[version] = stamp
            document = document.evolve(time=time)

            # Tarballs this publish creates; removed again if it fails midway
            fresh = []
            for filename in payload.attachments:
                key = asset_key(payload.name, filename)
                if not await self.storage.exists(key):
                    fresh.append(key)
            try:
                stored = await self.archives.extract_and_store(payload)
                await self.metadata.save(document)
            except StorageError:
                await self._discard(fresh)
                raise

        logger.info(
            f"Published {payload.name} versions {sorted(payload.versions)} "
            f"({len(stored)} attachments)"
        )
        return document

    # ========================================================================
    # Dist-tags
    # ========================================================================

    async def _mutate(
        self,
        name: str,
        change: Callable[[PackageMetadataDocument], PackageMetadataDocument],
    ) -> PackageMetadataDocument:
        async with self._locks[name]:
            document = change(await self.get_package(name))
            time = dict(document.time)
            time["modified"] = npm_timestamp(self._clock())
            document = document.evolve(time=time)
            await self.metadata.save(document)
        return document

    async def add_dist_tag(self, name: str, tag: str, version: str) -> Dict[str, str]:
        document = await self._mutate(
            name, lambda doc: self.metadata.add_dist_tag(doc, tag, version)
        )
        logger.info(f"Tagged {name}@{version} as {tag}")
        return dict(document.dist_tags)

    async def remove_dist_tag(self, name: str, tag: str) -> Dict[str, str]:
        document = await self._mutate(
            name, lambda doc: self.metadata.remove_dist_tag(doc, tag)
        )
        logger.info(f"Removed dist-tag {tag} from {name}")
        return dict(document.dist_tags)

    # ========================================================================
    # Deprecate / unpublish
    # ========================================================================

    @staticmethod
    def _payload_for(name: str, raw: bytes) -> PublishPayload:
        payload = PublishPayload.from_json(raw)
        if payload.name != name:
            raise MalformedPayload(f"Payload names package {payload.name} but was sent to {name}")
        return payload

    async def deprecate(self, name: str, raw: bytes) -> PackageMetadataDocument:
        payload = self._payload_for(name, raw)
        document = await self._mutate(
            name, lambda doc: self.metadata.deprecate(doc, payload)
        )
        logger.info(f"Updated deprecation messages of {name}")
        return document

    async def unpublish_version(self, name: str, version: str) -> PackageMetadataDocument:
        document = await self._mutate(
            name, lambda doc: self.metadata.unpublish_version(doc, version)
        )
        logger.info(f"Unpublished {name}@{version}")
        return document

    async def unpublish(self, name: str, raw: bytes) -> List[str]:
        """
        Handle the document ``npm unpublish <pkg>@<version>`` uploads: every
        stored version missing from it is removed. Returns the removed versions.
        """
        payload = self._payload_for(name, raw)
        removed: List[str] = []

        def drop_missing(document: PackageMetadataDocument) -> PackageMetadataDocument:
            for version in list(document.versions):
                if version not in payload.versions:
                    document = self.metadata.unpublish_version(document, version)
                    removed.append(version)
            return document

        await self._mutate(name, drop_missing)
        logger.info(f"Unpublished {name} versions {removed}")
        return removed

    async def force_unpublish(self, name: str) -> List[str]:
        # Lock stays registered so queued waiters and new callers share it
        async with self._locks[name]:
            removed = await self.metadata.force_unpublish(name)
        return removed
