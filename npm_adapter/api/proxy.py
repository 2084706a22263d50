"""
Proxy-mode endpoints: package documents and assets read through the cache.
"""
from __future__ import annotations

import logging
import re

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from npm_adapter.api.npm import client_base_url
from npm_adapter.core.dependencies import get_proxy_cache, get_repository_config
from npm_adapter.domain.errors import NotFound
from npm_adapter.domain.models import RepositoryConfig
from npm_adapter.domain.rewriting import ClientBaseURLRewriter
from npm_adapter.services.proxy_cache import ProxyCache

logger = logging.getLogger(__name__)
router = APIRouter()

ASSET_PATTERN = re.compile(r"^(.+/-/.+)$")
PACKAGE_PATTERN = re.compile(r"^(@[^/]+/[^/]+|[^/@][^/]*)$")


@router.get("/{path:path}")
async def proxy_download(
    path: str,
    request: Request,
    cache: ProxyCache = Depends(get_proxy_cache),
    config: RepositoryConfig = Depends(get_repository_config),
) -> Response:
    path = path.strip("/")

    asset_match = ASSET_PATTERN.match(path)
    if asset_match:
        asset = await cache.get_asset(asset_match.group(1))
        return Response(
            content=asset.data,
            media_type=asset.meta.content_type,
            headers={"Last-Modified": asset.meta.last_modified},
        )

    if PACKAGE_PATTERN.match(path):
        cached = await cache.get_package(path)
        rewriter = ClientBaseURLRewriter(client_base_url(request, config))
        return JSONResponse(
            rewriter.rewrite_document(cached.document).to_dict(),
            headers={"Last-Modified": cached.meta.last_modified},
        )

    logger.debug(f"No proxy route for {path}")
    raise NotFound(f"Nothing to serve at {path}")
