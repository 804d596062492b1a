"""Media delivery API router."""

from fastapi import APIRouter, Depends, HTTPException, status

from adaptive_media.core.config import settings
from adaptive_media.core.security import get_current_principal
from adaptive_media.modules.access.exceptions import AccessDenied
from adaptive_media.modules.access.guard import Principal
from adaptive_media.modules.delivery.cache import UrlCache
from adaptive_media.modules.delivery.dependencies import get_delivery_service, get_url_cache
from adaptive_media.modules.delivery.exceptions import (
    InvalidPath,
    IssuerError,
    NotFound,
    TransformUnsupportedFormat,
)
from adaptive_media.modules.delivery.schemas import (
    AdaptiveMediaRequest,
    CacheStatsResponse,
    ManifestResponse,
    MediaUrlResponse,
    ResponseFormat,
    SecureMediaRequest,
    SecureMediaResponse,
)
from adaptive_media.modules.delivery.service import MediaDeliveryService

router = APIRouter(prefix="/media", tags=["delivery"])


def _to_http(exc: Exception) -> HTTPException:
    if isinstance(exc, AccessDenied):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    if isinstance(exc, NotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, InvalidPath):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, TransformUnsupportedFormat):
        return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal error")
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Signing service unavailable")


@router.post("/adaptive", response_model=MediaUrlResponse | ManifestResponse)
async def adaptive_media(
    data: AdaptiveMediaRequest,
    principal: Principal = Depends(get_current_principal),
    service: MediaDeliveryService = Depends(get_delivery_service),
):
    """Signed URL for one rendition, or the whole rendition manifest."""
    try:
        if data.format == ResponseFormat.MANIFEST:
            return await service.manifest(principal, data.asset_id, data.expires_in)
        return await service.media_url(principal, data.asset_id, data.label, data.expires_in)
    except (AccessDenied, NotFound, InvalidPath, TransformUnsupportedFormat, IssuerError) as e:
        raise _to_http(e) from e


@router.post("/secure", response_model=SecureMediaResponse)
async def secure_media(
    data: SecureMediaRequest,
    principal: Principal = Depends(get_current_principal),
    service: MediaDeliveryService = Depends(get_delivery_service),
):
    """Signed URL for a stored path, resized or re-encoded where the format allows."""
    try:
        return await service.secure_url(
            principal,
            data.path,
            transform=data.transform(),
            expires_in=data.expires_in or settings.SECURE_MEDIA_EXPIRY_SECONDS,
        )
    except (AccessDenied, NotFound, InvalidPath, TransformUnsupportedFormat, IssuerError) as e:
        raise _to_http(e) from e


@router.get("/cache/stats", response_model=CacheStatsResponse)
async def cache_stats(
    principal: Principal = Depends(get_current_principal),
    cache: UrlCache = Depends(get_url_cache),
):
    return CacheStatsResponse(**cache.stats())
