"""
Hosted npm registry endpoints (publish, install, dist-tags, unpublish).

Scoped package names arrive URL-decoded (``@scope/name``), so every name
parameter uses the ``path`` converter.
"""
from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from npm_adapter.core.dependencies import get_publishing_service, get_repository_config
from npm_adapter.domain.errors import MalformedPayload
from npm_adapter.domain.models import RepositoryConfig
from npm_adapter.domain.npm_utils import package_of_asset
from npm_adapter.domain.rewriting import ClientBaseURLRewriter
from npm_adapter.services.publishing import PublishingService

logger = logging.getLogger(__name__)
router = APIRouter()


def client_base_url(request: Request, config: RepositoryConfig) -> str:
    if config.base_url:
        return config.base_url
    return str(request.base_url).rstrip("/") + config.route_prefix


def npm_command(request: Request) -> str:
    """
    The npm CLI command behind a request: newer clients send ``npm-command``,
    older ones put the command line in ``referer``.
    """
    command = request.headers.get("npm-command") or request.headers.get("referer") or ""
    return command.strip().split(" ", 1)[0]


# ---------------------------------------------------------------------------
# 1. Dist-tags: GET/PUT/DELETE /-/package/{name}/dist-tags[/{tag}]
# ---------------------------------------------------------------------------

@router.get("/-/package/{name:path}/dist-tags")
async def get_dist_tags(
    name: str,
    service: PublishingService = Depends(get_publishing_service),
) -> dict:
    return await service.get_dist_tags(name)


@router.put("/-/package/{name:path}/dist-tags/{tag}")
async def add_dist_tag(
    name: str,
    tag: str,
    request: Request,
    service: PublishingService = Depends(get_publishing_service),
) -> dict:
    """
    ``npm dist-tag add <pkg>@<version> <tag>``; the body is the version as a
    JSON string.
    """
    try:
        version = json.loads(await request.body())
    except ValueError as e:
        raise MalformedPayload(f"Dist-tag body is not JSON: {e}") from e
    if not isinstance(version, str):
        raise MalformedPayload("Dist-tag body must be a version string")
    tags = await service.add_dist_tag(name, tag, version)
    return {"ok": True, "id": name, "dist-tags": tags}


@router.delete("/-/package/{name:path}/dist-tags/{tag}")
async def remove_dist_tag(
    name: str,
    tag: str,
    service: PublishingService = Depends(get_publishing_service),
) -> dict:
    tags = await service.remove_dist_tag(name, tag)
    return {"ok": True, "id": name, "dist-tags": tags}


# ---------------------------------------------------------------------------
# 2. Unpublish: PUT/DELETE /{name}/-rev/{rev}
# ---------------------------------------------------------------------------

@router.put("/{name:path}/-rev/{rev}")
async def unpublish_versions(
    name: str,
    rev: str,
    request: Request,
    service: PublishingService = Depends(get_publishing_service),
) -> dict:
    """
    ``npm unpublish <pkg>@<version>`` uploads the document without the removed
    version(s).
    """
    removed = await service.unpublish(name, await request.body())
    return {"ok": True, "id": name, "removed": removed}


@router.delete("/{name:path}/-rev/{rev}")
async def delete_package_or_tarball(
    name: str,
    rev: str,
    service: PublishingService = Depends(get_publishing_service),
) -> dict:
    """
    ``npm unpublish --force`` deletes the whole package; after a single-version
    unpublish the client also deletes the version's tarball through this path.
    """
    if package_of_asset(name) is not None:
        await service.delete_asset(name)
        return {"ok": True, "id": name}
    removed = await service.force_unpublish(name)
    return {"ok": True, "id": name, "removed": len(removed)}


# ---------------------------------------------------------------------------
# 3. Publish / deprecate: PUT /{name}
# ---------------------------------------------------------------------------

@router.put("/{name:path}")
async def publish(
    name: str,
    request: Request,
    service: PublishingService = Depends(get_publishing_service),
) -> JSONResponse:
    raw = await request.body()
    if npm_command(request) == "deprecate":
        await service.deprecate(name, raw)
        return JSONResponse({"ok": True, "id": name})

    document = await service.publish(raw, expected_name=name)
    return JSONResponse({"ok": True, "id": name, "versions": sorted(document.versions)})


# ---------------------------------------------------------------------------
# 4. Install: GET /{name} and GET /{name}/-/{file}
# ---------------------------------------------------------------------------

@router.get("/{path:path}")
async def download(
    path: str,
    request: Request,
    service: PublishingService = Depends(get_publishing_service),
    config: RepositoryConfig = Depends(get_repository_config),
) -> Response:
    """
    Package documents are served with tarball references made absolute for
    the client; tarballs are served as stored.
    """
    path = path.strip("/")
    if package_of_asset(path) is not None:
        data = await service.get_asset(path)
        return Response(content=data, media_type="application/octet-stream")

    document = await service.get_package(path)
    rewriter = ClientBaseURLRewriter(client_base_url(request, config))
    return JSONResponse(rewriter.rewrite_document(document).to_dict())
