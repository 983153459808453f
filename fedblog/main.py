from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import ORJSONResponse

from fedblog.api.v1.api import api_router
from fedblog.core.activitypub import site_router, well_known_router
from fedblog.core.activitypub.service import FederationService
from fedblog.core.config import Settings, settings as default_settings
from fedblog.core.content import ContentProvider, InMemoryContentProvider
from fedblog.core.logging import setup_logging


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    """Shared outbound client (HTTP/2, connection pool, timeouts)"""
    return httpx.AsyncClient(
        http2=True,
        timeout=httpx.Timeout(settings.DELIVERY_TIMEOUT, read=20.0),
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=100),
        headers={"User-Agent": settings.USER_AGENT},
    )


def create_app(
    settings: Optional[Settings] = None,
    content_provider: Optional[ContentProvider] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    settings = settings or default_settings
    setup_logging(settings.LOG_LEVEL)

    if content_provider is None:
        if settings.CONTENT_FILE:
            content_provider = InMemoryContentProvider.from_json_file(Path(settings.CONTENT_FILE))
        else:
            content_provider = InMemoryContentProvider()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client = http_client or build_http_client(settings)
        service = FederationService(settings, content_provider, client)
        await service.startup()
        app.state.federation = service
        try:
            yield
        finally:
            await service.shutdown()
            # only close the client we created
            if http_client is None:
                await client.aclose()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="ActivityPub federation for a blog and wiki",
        version="1.0.0",
        openapi_url=f"{settings.API_V1_STR}/openapi.json",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.content_provider = content_provider

    # CORS settings
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_HOSTS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Enable gzip compression for large responses
    app.add_middleware(GZipMiddleware, minimum_size=500)

    app.include_router(api_router, prefix=settings.API_V1_STR)

    # /.well-known only serves discovery endpoints
    app.include_router(well_known_router, prefix="/.well-known", tags=["activitypub"])
    app.include_router(site_router, tags=["activitypub"])

    @app.get("/")
    async def root():
        """Root path"""
        return {"message": f"{settings.PROJECT_NAME} ActivityPub server"}

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "fedblog.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
