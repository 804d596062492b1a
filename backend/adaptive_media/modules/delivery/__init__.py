"""Secure URL resolution, caching and delivery."""

from adaptive_media.modules.delivery.cache import UrlCache, UrlCacheEntry, make_cache_key
from adaptive_media.modules.delivery.exceptions import (
    CacheQuotaExceeded,
    DeliveryError,
    InvalidPath,
    IssuerError,
    NotFound,
    TransformUnsupportedFormat,
)
from adaptive_media.modules.delivery.formats import FormatClass, ImageTransform, classify
from adaptive_media.modules.delivery.resolver import ResolvedUrl, SecureUrlResolver
from adaptive_media.modules.delivery.service import MediaDeliveryService

__all__ = [
    "UrlCache",
    "UrlCacheEntry",
    "make_cache_key",
    "CacheQuotaExceeded",
    "DeliveryError",
    "InvalidPath",
    "IssuerError",
    "NotFound",
    "TransformUnsupportedFormat",
    "FormatClass",
    "ImageTransform",
    "classify",
    "ResolvedUrl",
    "SecureUrlResolver",
    "MediaDeliveryService",
]
