"""
Canonical package metadata: creation, merge-on-publish, dist-tags and unpublish.

The transformations are pure: each takes a document value and returns a new one.
Reading and writing the stored document is left to the caller (see
``npm_adapter.services.publishing``), which makes every mutation a
read-modify-write against blob storage.
"""
from __future__ import annotations

import copy
import logging
from typing import List, Optional

from npm_adapter.domain.errors import MalformedPayload, NotFound
from npm_adapter.domain.models import PackageMetadataDocument, PublishPayload
from npm_adapter.domain.npm_utils import asset_prefix, meta_key
from npm_adapter.storage.blob_storage import BlobStorage

logger = logging.getLogger(__name__)


class MetadataStore:
    def __init__(self, storage: BlobStorage):
        self.storage = storage

    # ========================================================================
    # Pure transformations
    # ========================================================================

    @staticmethod
    def skeleton(payload: PublishPayload) -> PackageMetadataDocument:
        """
        Minimal document for a package published for the first time.

        Only dist-tags that point at versions carried by the same payload are
        copied, so the skeleton can never hold a dangling tag once merged.
        """
        extras = {"_id": payload.name}
        if payload.description is not None:
            extras["description"] = payload.description
        if payload.readme is not None:
            extras["readme"] = payload.readme
        return PackageMetadataDocument(
            name=payload.name,
            dist_tags={
                tag: version
                for tag, version in payload.dist_tags.items()
                if version in payload.versions
            },
            versions={},
            time={},
            extras=extras,
        )

    def merge(
        self,
        existing: Optional[PackageMetadataDocument],
        payload: PublishPayload,
    ) -> PackageMetadataDocument:
        """
        Fold the payload's versions into ``existing`` (or a fresh skeleton).

        Each uploaded version is added at ``versions[<version>]``, overwriting any
        entry already there, so merging the same version twice is idempotent.
        Dist-tags and ``time`` of an existing document are left untouched.
        """
        base = existing if existing is not None else self.skeleton(payload)
        if base.name != payload.name:
            raise MalformedPayload(
                f"Payload for {payload.name} cannot be merged into {base.name}"
            )
        versions = copy.deepcopy(base.versions)
        for version, descriptor in payload.versions.items():
            versions[version] = copy.deepcopy(descriptor)
        return base.evolve(versions=versions)

    @staticmethod
    def add_dist_tag(
        document: PackageMetadataDocument, tag: str, version: str
    ) -> PackageMetadataDocument:
        if version not in document.versions:
            raise NotFound(f"Version {version} of {document.name} not found")
        return document.evolve(dist_tags={**document.dist_tags, tag: version})

    @staticmethod
    def remove_dist_tag(document: PackageMetadataDocument, tag: str) -> PackageMetadataDocument:
        if tag not in document.dist_tags:
            raise NotFound(f"Dist-tag {tag} of {document.name} not found")
        return document.evolve(
            dist_tags={t: v for t, v in document.dist_tags.items() if t != tag}
        )

    @staticmethod
    def unpublish_version(
        document: PackageMetadataDocument, version: str
    ) -> PackageMetadataDocument:
        """Drop a version together with every dist-tag pointing at it."""
        if version not in document.versions:
            raise NotFound(f"Version {version} of {document.name} not found")
        return document.evolve(
            versions={v: d for v, d in document.versions.items() if v != version},
            dist_tags={t: v for t, v in document.dist_tags.items() if v != version},
        )

    @staticmethod
    def deprecate(
        document: PackageMetadataDocument, payload: PublishPayload
    ) -> PackageMetadataDocument:
        """
        Copy each uploaded version's ``deprecated`` message onto the stored
        version. An empty message clears the deprecation. Versions the document
        does not know are ignored.
        """
        versions = copy.deepcopy(document.versions)
        for version, descriptor in payload.versions.items():
            if version not in versions or "deprecated" not in descriptor:
                continue
            message = descriptor["deprecated"]
            if message:
                versions[version]["deprecated"] = message
            else:
                versions[version].pop("deprecated", None)
        return document.evolve(versions=versions)

    # ========================================================================
    # Persistence
    # ========================================================================

    async def load(self, name: str) -> Optional[PackageMetadataDocument]:
        key = meta_key(name)
        if not await self.storage.exists(key):
            return None
        return PackageMetadataDocument.from_json(await self.storage.get(key))

    async def save(self, document: PackageMetadataDocument) -> None:
        await self.storage.put(meta_key(document.name), document.to_json())

    async def force_unpublish(self, name: str) -> List[str]:
        """
        Delete the package document and every stored asset of the package.
        Irreversible. Returns the removed keys.
        """
        key = meta_key(name)
        if not await self.storage.exists(key):
            raise NotFound(f"Package {name} not found")
        removed = await self.storage.delete_all(asset_prefix(name))
        await self.storage.delete(key)
        removed.append(key)
        logger.info(f"Force-unpublished {name}: removed {len(removed)} keys")
        return removed
