"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware

from adaptive_media.core.config import settings
from adaptive_media.core.logging import setup_logging
from adaptive_media.core.metrics import get_metrics, get_metrics_content_type, set_app_info
from adaptive_media.core.middleware import CorrelationIdMiddleware, MetricsMiddleware
from adaptive_media.core.storage import StorageService
from adaptive_media.modules.delivery.cache import RedisCacheStore
from adaptive_media.modules.delivery.dependencies import create_issuer, create_url_cache
from adaptive_media.modules.delivery.issuers import HttpUrlIssuer
from adaptive_media.modules.delivery.router import router as delivery_router
from adaptive_media.modules.media.router import router as media_router
from adaptive_media.modules.transcoding.router import router as transcoding_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the shared delivery stack and tear it down on shutdown."""
    storage = StorageService.from_settings(settings)
    issuer = create_issuer(storage, settings)
    url_cache = create_url_cache(settings)
    await url_cache.start()

    app.state.storage = storage
    app.state.url_issuer = issuer
    app.state.url_cache = url_cache

    try:
        yield
    finally:
        await url_cache.close()
        if isinstance(url_cache.store, RedisCacheStore):
            await url_cache.store.client.aclose()
        if isinstance(issuer, HttpUrlIssuer):
            await issuer.aclose()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="""
## Adaptive Media Delivery API

Transcodes uploaded videos into a ladder of renditions and hands out
short-lived, access-controlled URLs for them.

### Authentication

All endpoints except `/health` and `/metrics` require a JWT Bearer token.

```
Authorization: Bearer <access_token>
```
    """,
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    lifespan=lifespan,
    openapi_tags=[
        {
            "name": "health",
            "description": "Health check endpoints",
        },
        {
            "name": "media",
            "description": "Media asset registration and processing status",
        },
        {
            "name": "transcoding",
            "description": "Rendition ladder transcoding jobs",
        },
        {
            "name": "delivery",
            "description": "Signed rendition URLs, manifests and secure media fetch",
        },
    ],
)

# Set up logging with correlation IDs
setup_logging(
    level="INFO" if not settings.DEBUG else "DEBUG",
    json_format=True,
    include_stack_trace=True,
)

set_app_info(
    version=settings.VERSION,
    environment="development" if settings.DEBUG else "production",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(MetricsMiddleware)


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint.

    Returns:
        dict: Health status with "healthy" or "unhealthy" value.
    """
    return {"status": "healthy"}


@app.get("/metrics", tags=["health"], include_in_schema=False)
async def prometheus_metrics() -> Response:
    """Prometheus scrape endpoint."""
    return Response(content=get_metrics(), media_type=get_metrics_content_type())


# Include routers
# Delivery first: its fixed /media/... paths must win over /media/{asset_id}
app.include_router(delivery_router, prefix=settings.API_V1_PREFIX)
app.include_router(media_router, prefix=settings.API_V1_PREFIX)
app.include_router(transcoding_router, prefix=settings.API_V1_PREFIX)
