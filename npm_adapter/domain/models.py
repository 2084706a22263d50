"""
Pydantic models for the npm adapter.

This module defines all data models used throughout the application, including:
- Repository configuration (hosted or proxy mode, upstream remote)
- Package metadata documents ("packuments") and publish payloads
- Cache bookkeeping for proxied packages and assets

Documents are frozen: every mutation produces a new value.
"""

from __future__ import annotations

import copy
import json
from datetime import datetime, timedelta
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, model_validator

from .errors import MalformedPayload


# ---------------------------------------------------------------------------
# Repository Configuration Models
# ---------------------------------------------------------------------------


class RemoteConfig(BaseModel):
    """
    Upstream registry used by proxy mode.
    """

    url: str = Field(
        default="https://registry.npmjs.org",
        description="Base URL of the upstream npm registry.",
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout applied to every upstream request.",
    )


class RepositoryConfig(BaseModel):
    """
    Top-level configuration for the npm adapter.

    Loaded from: <DATA_DIR>/repository.yaml (or the file named by NPM_ADAPTER_CONFIG)
    """

    mode: Literal["hosted", "proxy"] = Field(
        default="hosted",
        description="'hosted' stores published packages; 'proxy' caches an upstream registry.",
    )
    base_url: Optional[str] = Field(
        default=None,
        description="Client-facing base URL prefixed onto tarball references. Defaults to the request base URL.",
    )
    path: str = Field(
        default="",
        description="Repository path prefix the routes are mounted under (empty for the root context).",
    )
    metadata_ttl_minutes: int = Field(
        default=24 * 60,
        ge=0,
        description="Freshness window for cached package metadata in proxy mode.",
    )
    remote: RemoteConfig = Field(
        default_factory=RemoteConfig,
        description="Upstream registry settings (proxy mode only).",
    )

    @property
    def metadata_ttl(self) -> timedelta:
        return timedelta(minutes=self.metadata_ttl_minutes)

    @property
    def route_prefix(self) -> str:
        stripped = self.path.strip("/")
        return f"/{stripped}" if stripped else ""


# ---------------------------------------------------------------------------
# Package Metadata Models
# ---------------------------------------------------------------------------

# Top-level keys of the wire format that map onto model fields.
_DOCUMENT_KEYS = {"name", "dist-tags", "versions", "time"}


class PackageMetadataDocument(BaseModel):
    """
    One npm package's full metadata document (packument).

    Known keys are modelled explicitly. Every other top-level key (readme,
    description, _id, _rev, maintainers, ...) is kept in ``extras`` and written
    back unchanged.

    Persisted at: <package name>/meta.json
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(
        description="Package name, including the scope for scoped packages.",
    )
    dist_tags: Dict[str, str] = Field(
        default_factory=dict,
        alias="dist-tags",
        description="Named pointers (e.g. 'latest') to versions present in 'versions'.",
    )
    versions: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict,
        description="Version string mapped to its opaque version descriptor.",
    )
    time: Dict[str, Any] = Field(
        default_factory=dict,
        description="Version string or lifecycle marker ('created', 'modified') mapped to a timestamp.",
    )
    extras: Dict[str, Any] = Field(
        default_factory=dict,
        description="Free-form top-level fields carried through unmodified.",
    )

    @model_validator(mode="before")
    @classmethod
    def _collect_extras(cls, data: Any, info: ValidationInfo) -> Any:
        # Only wire documents are split; keyword construction passes fields as-is.
        if not isinstance(data, dict) or not (info.context or {}).get("wire"):
            return data
        known: Dict[str, Any] = {}
        extras: Dict[str, Any] = {}
        for key, value in data.items():
            if key in _DOCUMENT_KEYS:
                known[key] = value
            else:
                extras[key] = value
        known["extras"] = extras
        return known

    @classmethod
    def from_dict(cls, data: Any) -> "PackageMetadataDocument":
        """Validate a document in its JSON wire shape."""
        return cls.model_validate(data, context={"wire": True})

    @classmethod
    def from_json(cls, raw: bytes) -> "PackageMetadataDocument":
        try:
            return cls.from_dict(json.loads(raw))
        except (ValueError, ValidationError) as e:
            raise MalformedPayload(f"Invalid package metadata document: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"name": self.name}
        result.update(copy.deepcopy(self.extras))
        result["dist-tags"] = dict(self.dist_tags)
        result["versions"] = copy.deepcopy(self.versions)
        result["time"] = dict(self.time)
        return result

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict(), indent=2).encode("utf-8")

    def evolve(self, **changes: Any) -> "PackageMetadataDocument":
        """Return an independent copy with the given fields replaced."""
        return self.model_copy(update=changes, deep=True)


class UploadAttachment(BaseModel):
    """
    A base64-encoded binary blob embedded in a publish payload (usually a tarball).
    """

    data: str = Field(
        description="Base64-encoded attachment content.",
    )
    content_type: Optional[str] = Field(
        default=None,
        description="MIME type declared by the client.",
    )
    length: Optional[int] = Field(
        default=None,
        description="Decoded length declared by the client.",
    )


class PublishPayload(BaseModel):
    """
    JSON body sent by ``npm publish`` (also reused for deprecate and unpublish,
    where attachments are absent).
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str
    versions: Dict[str, Dict[str, Any]]
    attachments: Dict[str, UploadAttachment] = Field(default_factory=dict, alias="_attachments")
    dist_tags: Dict[str, str] = Field(default_factory=dict, alias="dist-tags")
    description: Optional[str] = None
    readme: Optional[str] = None

    @classmethod
    def from_json(cls, raw: bytes) -> "PublishPayload":
        try:
            return cls.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            raise MalformedPayload(f"Invalid publish payload: {e}") from e


# ---------------------------------------------------------------------------
# Proxy Cache Models
# ---------------------------------------------------------------------------


class CacheMeta(BaseModel):
    """
    Bookkeeping stored next to a cached package document.

    Persisted at: <package name>/meta.meta
    """

    model_config = ConfigDict(populate_by_name=True)

    last_modified: str = Field(
        alias="last-modified",
        serialization_alias="last-modified",
        description="Modification time reported by the upstream registry (opaque HTTP date).",
    )
    last_refreshed: datetime = Field(
        alias="last-refreshed",
        serialization_alias="last-refreshed",
        description="When this copy was last fetched from upstream.",
    )


class AssetMeta(BaseModel):
    """
    Bookkeeping stored next to a cached asset.

    Persisted at: <asset path>.meta
    """

    model_config = ConfigDict(populate_by_name=True)

    last_modified: str = Field(
        alias="last-modified",
        serialization_alias="last-modified",
    )
    content_type: str = Field(
        default="application/octet-stream",
        alias="content-type",
        serialization_alias="content-type",
    )


class CachedPackage(BaseModel):
    document: PackageMetadataDocument
    meta: CacheMeta


class CachedAsset(BaseModel):
    path: str
    data: bytes
    meta: AssetMeta


class RemotePackage(BaseModel):
    """A package document freshly loaded from the upstream registry."""

    document: PackageMetadataDocument
    last_modified: str


class RemoteAsset(BaseModel):
    """An asset whose bytes were written into a staging file by the remote client."""

    path: str
    last_modified: str
    content_type: str = "application/octet-stream"
