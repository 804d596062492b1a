"""Secure URL resolution.

Format classification runs before anything looks at the transform. Formats
that a transform would flatten or corrupt are always signed untouched.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from adaptive_media.core.metrics import URL_RESOLUTIONS_TOTAL
from adaptive_media.modules.delivery.formats import (
    FormatClass,
    ImageTransform,
    allows_transform,
    classify,
    normalize_path,
)
from adaptive_media.modules.delivery.issuers import UrlIssuer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedUrl:
    url: str
    expires_at: float
    key: str
    format_class: FormatClass
    transform: Optional[ImageTransform] = None


class SecureUrlResolver:
    def __init__(self, issuer: UrlIssuer, bucket: str = ""):
        self.issuer = issuer
        self.bucket = bucket

    def prepare(
        self,
        path: str,
        transform: Optional[ImageTransform] = None,
    ) -> tuple[str, FormatClass, Optional[ImageTransform]]:
        """Normalize a path and decide the transform actually applied.

        Returns:
            The object key, its format class, and the clamped transform or
            None when the format is delivered untouched
        """
        key = normalize_path(path, self.bucket)
        format_class = classify(key)
        if not allows_transform(format_class):
            if transform is not None and not transform.is_empty:
                logger.debug(
                    "Dropping transform for bypass format",
                    extra={"key": key, "format_class": format_class.value},
                )
            return key, format_class, None
        if transform is None or transform.is_empty:
            return key, format_class, None
        return key, format_class, transform.clamped()

    async def resolve(
        self,
        path: str,
        transform: Optional[ImageTransform] = None,
        expires_in: int = 3600,
    ) -> ResolvedUrl:
        """Sign ``path`` for ``expires_in`` seconds.

        Raises:
            InvalidPath: The path is empty or escapes the bucket
            NotFound: The object does not exist
            IssuerError: The signing backend failed
        """
        key, format_class, applied = self.prepare(path, transform)
        return await self.issue_prepared(key, format_class, applied, expires_in)

    async def issue_prepared(
        self,
        key: str,
        format_class: FormatClass,
        applied: Optional[ImageTransform],
        expires_in: int,
    ) -> ResolvedUrl:
        """Sign a key already passed through :meth:`prepare`."""
        signed = await self.issuer.issue(key, expires_in, applied)
        URL_RESOLUTIONS_TOTAL.labels(
            kind=format_class.value,
            mode="transform" if applied is not None else "direct",
        ).inc()
        return ResolvedUrl(
            url=signed.url,
            expires_at=signed.expires_at,
            key=key,
            format_class=format_class,
            transform=applied,
        )
