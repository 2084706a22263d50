import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from npm_adapter.core.dependencies import (
    close_proxy_cache,
    get_repository_config,
    set_repository_config,
)
from npm_adapter.domain.errors import (
    MalformedPayload,
    NotFound,
    RemoteTransportError,
    StorageError,
)
from npm_adapter.domain.models import RepositoryConfig

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def _error_response(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": str(exc)})


def create_app(config: Optional[RepositoryConfig] = None) -> FastAPI:
    """
    Build the application for the configured mode. The router is mounted
    under the repository path prefix.
    """
    if config is None:
        config = get_repository_config()
    else:
        set_repository_config(config)

    app = FastAPI(
        title="npm adapter",
        version="0.1.0",
        description=f"npm registry adapter running in {config.mode} mode.",
    )

    @app.exception_handler(NotFound)
    async def not_found_handler(request: Request, exc: NotFound) -> JSONResponse:
        return _error_response(404, exc)

    @app.exception_handler(MalformedPayload)
    async def malformed_payload_handler(request: Request, exc: MalformedPayload) -> JSONResponse:
        logger.warning(f"Rejected {request.method} {request.url.path}: {exc}")
        return _error_response(400, exc)

    @app.exception_handler(RemoteTransportError)
    async def remote_error_handler(request: Request, exc: RemoteTransportError) -> JSONResponse:
        logger.error(f"Upstream failure for {request.url.path}: {exc}")
        return _error_response(502, exc)

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
        logger.error(f"Storage failure for {request.method} {request.url.path}: {exc}", exc_info=True)
        return _error_response(500, exc)

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        await close_proxy_cache()

    @app.get("/health")
    async def health() -> dict:
        """
        Lightweight health check endpoint.
        """
        return {"status": "ok", "mode": config.mode}

    if config.mode == "proxy":
        from npm_adapter.api.proxy import router
    else:
        from npm_adapter.api.npm import router

    app.include_router(router, prefix=config.route_prefix, tags=[config.mode])
    logger.info(f"Serving {config.mode} repository at '{config.route_prefix or '/'}'")
    return app


app = create_app()


if __name__ == "__main__":
    """
    Allow running `python -m npm_adapter.main` to start the Uvicorn
    development server.
    """
    import uvicorn

    uvicorn.run(
        "npm_adapter.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
