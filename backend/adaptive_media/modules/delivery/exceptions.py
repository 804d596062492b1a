"""Delivery errors.

``TransformUnsupportedFormat`` signals a programming error: bypass formats
are stripped of transforms before any issuer sees them.
"""


class DeliveryError(Exception):
    """Base class for delivery errors."""
    pass


class NotFound(DeliveryError):
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Media not found: {path}")


class InvalidPath(DeliveryError):
    pass


class TransformUnsupportedFormat(DeliveryError):
    def __init__(self, path: str, format_class: str):
        self.path = path
        self.format_class = format_class
        super().__init__(f"Transform requested for {format_class} media: {path}")


class IssuerError(DeliveryError):
    """The signing backend rejected the request."""
    pass


class IssuerUnavailable(IssuerError):
    """The signing backend kept failing transiently."""
    pass


class CacheError(DeliveryError):
    pass


class CacheQuotaExceeded(CacheError):
    def __init__(self, size: int, quota: int):
        self.size = size
        self.quota = quota
        super().__init__(f"Cache payload of {size} bytes exceeds quota of {quota} bytes")
