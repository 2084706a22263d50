"""
Client for the upstream npm registry used by proxy mode.
"""
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import aiofiles
import httpx
from pydantic import ValidationError

from npm_adapter.domain.errors import RemoteTransportError
from npm_adapter.domain.models import (
    PackageMetadataDocument,
    RemoteAsset,
    RemoteConfig,
    RemotePackage,
)
from npm_adapter.domain.npm_utils import http_date, utc_now
from npm_adapter.domain.rewriting import RepositoryPrefixRewriter

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class NpmRemote(ABC):
    """
    Upstream registry access.

    Both loaders return None when the upstream answers "not found" and raise
    RemoteTransportError for every other failure.
    """

    @abstractmethod
    async def load_package(self, name: str) -> Optional[RemotePackage]:
        pass

    @abstractmethod
    async def load_asset(self, path: str, staging: Path) -> Optional[RemoteAsset]:
        """Write the asset's bytes into ``staging``."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


class HttpNpmRemote(NpmRemote):
    def __init__(self, config: RemoteConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self._client = httpx.AsyncClient(
            base_url=config.url.rstrip("/"),
            timeout=config.timeout_seconds,
            follow_redirects=True,
            transport=transport,
        )

    async def load_package(self, name: str) -> Optional[RemotePackage]:
        logger.debug(f"Loading package {name} from {self.config.url}")
        try:
            response = await self._client.get(f"/{name}")
        except httpx.HTTPError as e:
            raise RemoteTransportError(f"Failed to load package {name}: {e}") from e

        if response.status_code == 404:
            logger.debug(f"Package not found upstream: {name}")
            return None
        if response.status_code != 200:
            raise RemoteTransportError(
                f"Unexpected status {response.status_code} loading package {name}"
            )

        try:
            document = PackageMetadataDocument.from_dict(json.loads(response.content))
        except (ValueError, ValidationError) as e:
            raise RemoteTransportError(f"Upstream returned an invalid document for {name}: {e}") from e

        return RemotePackage(
            document=RepositoryPrefixRewriter(name).rewrite_document(document),
            last_modified=response.headers.get("Last-Modified") or http_date(utc_now()),
        )

    async def load_asset(self, path: str, staging: Path) -> Optional[RemoteAsset]:
        logger.debug(f"Loading asset {path} from {self.config.url}")
        try:
            async with self._client.stream("GET", f"/{path}") as response:
                if response.status_code == 404:
                    logger.debug(f"Asset not found upstream: {path}")
                    return None
                if response.status_code != 200:
                    raise RemoteTransportError(
                        f"Unexpected status {response.status_code} loading asset {path}"
                    )

                async with aiofiles.open(staging, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        await f.write(chunk)

                return RemoteAsset(
                    path=path,
                    last_modified=response.headers.get("Last-Modified") or http_date(utc_now()),
                    content_type=response.headers.get("Content-Type") or DEFAULT_CONTENT_TYPE,
                )
        except httpx.HTTPError as e:
            raise RemoteTransportError(f"Failed to load asset {path}: {e}") from e

    async def close(self) -> None:
        await self._client.aclose()
