"""Construction of the delivery stack and its FastAPI dependencies.

The storage service and URL cache are created once in the application
lifespan and kept on ``app.state``; per-request objects are built on top.
"""

from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from adaptive_media.core.config import Settings, settings as default_settings
from adaptive_media.core.database import get_db
from adaptive_media.core.redis import create_redis
from adaptive_media.core.retry import RETRY_CONFIGS, RetryConfig
from adaptive_media.core.signing import UrlSigner
from adaptive_media.core.storage import StorageService
from adaptive_media.modules.access.guard import MediaAccessGuard
from adaptive_media.modules.delivery.cache import (
    CacheStore,
    JsonFileCacheStore,
    RedisCacheStore,
    UrlCache,
)
from adaptive_media.modules.delivery.issuers import HttpUrlIssuer, StorageUrlIssuer, UrlIssuer
from adaptive_media.modules.delivery.resolver import SecureUrlResolver
from adaptive_media.modules.delivery.service import MediaDeliveryService
from adaptive_media.modules.media.repository import AccessRepository, MediaAssetRepository


def create_cache_store(s: Settings) -> Optional[CacheStore]:
    store_type = s.URL_CACHE_STORE.lower()
    if store_type == "file":
        return JsonFileCacheStore(s.URL_CACHE_PATH, quota_bytes=s.URL_CACHE_QUOTA_BYTES)
    if store_type == "redis":
        return RedisCacheStore(create_redis(s.REDIS_URL), quota_bytes=s.URL_CACHE_QUOTA_BYTES)
    if store_type == "memory":
        return None
    raise ValueError(f"Unsupported URL cache store: {s.URL_CACHE_STORE}")


def create_url_cache(s: Optional[Settings] = None) -> UrlCache:
    s = s or default_settings
    return UrlCache(
        store=create_cache_store(s),
        max_entries=s.URL_CACHE_MAX_ENTRIES,
        safety_margin=s.URL_CACHE_SAFETY_MARGIN_SECONDS,
        write_debounce=s.URL_CACHE_WRITE_DEBOUNCE_SECONDS,
        max_write_delay=s.URL_CACHE_MAX_WRITE_DELAY_SECONDS,
        quota_threshold=s.URL_CACHE_QUOTA_THRESHOLD,
        cleanup_interval=s.URL_CACHE_CLEANUP_INTERVAL_SECONDS,
    )


def create_issuer(storage: StorageService, s: Optional[Settings] = None) -> UrlIssuer:
    s = s or default_settings
    issuer_type = s.URL_ISSUER.lower()
    if issuer_type == "storage":
        return StorageUrlIssuer(
            storage=storage,
            signer=UrlSigner(s.SIGNING_SECRET_KEY),
            transform_base_url=s.TRANSFORM_BASE_URL,
        )
    if issuer_type == "http":
        signing_retry = RETRY_CONFIGS["url_signing"]
        return HttpUrlIssuer(
            base_url=s.STORAGE_API_URL,
            bucket=s.STORAGE_BUCKET,
            api_key=s.STORAGE_API_KEY,
            timeout=s.RESOLVER_TIMEOUT_SECONDS,
            retry_config=RetryConfig(
                max_attempts=s.RESOLVER_MAX_RETRIES,
                initial_delay=signing_retry.initial_delay,
                max_delay=signing_retry.max_delay,
                backoff_multiplier=signing_retry.backoff_multiplier,
            ),
        )
    raise ValueError(f"Unsupported URL issuer: {s.URL_ISSUER}")


def get_storage(request: Request) -> StorageService:
    return request.app.state.storage


def get_url_cache(request: Request) -> UrlCache:
    return request.app.state.url_cache


def get_url_issuer(request: Request) -> UrlIssuer:
    return request.app.state.url_issuer


async def get_delivery_service(
    db: AsyncSession = Depends(get_db),
    cache: UrlCache = Depends(get_url_cache),
    issuer: UrlIssuer = Depends(get_url_issuer),
) -> MediaDeliveryService:
    return MediaDeliveryService(
        assets=MediaAssetRepository(db),
        guard=MediaAccessGuard(AccessRepository(db), default_settings.PRIVILEGED_ROLES),
        resolver=SecureUrlResolver(issuer, bucket=default_settings.STORAGE_BUCKET),
        cache=cache,
        secure_expiry=default_settings.SECURE_MEDIA_EXPIRY_SECONDS,
    )
