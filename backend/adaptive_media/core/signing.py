"""HMAC signing for time-limited delivery URLs.

Used for locally served objects and for image render URLs, where the object
store itself cannot embed transform parameters into a presigned URL.
"""

import hashlib
import hmac
from typing import Mapping, Optional
from urllib.parse import urlencode, urlsplit, parse_qsl


class UrlSigner:
    """Signs and verifies URLs carrying an ``expires`` timestamp."""

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("Signing secret must not be empty")
        self._secret = secret.encode()

    def _digest(self, path: str, params: Mapping[str, str]) -> str:
        canonical = path + "?" + urlencode(sorted(params.items()))
        return hmac.new(self._secret, canonical.encode(), hashlib.sha256).hexdigest()

    def sign(
        self,
        base_url: str,
        key: str,
        expires_at: int,
        params: Optional[Mapping[str, object]] = None,
    ) -> str:
        """Build a signed URL for ``key`` below ``base_url``.

        Args:
            base_url: Origin and path prefix the key is served from
            key: Object key
            expires_at: Unix timestamp after which the URL is invalid
            params: Extra query parameters covered by the signature

        Returns:
            Absolute signed URL
        """
        query = {k: str(v) for k, v in (params or {}).items() if v is not None}
        query["expires"] = str(int(expires_at))
        path = f"{base_url.rstrip('/')}/{key.lstrip('/')}"
        query["signature"] = self._digest(urlsplit(path).path, query)
        return f"{path}?{urlencode(sorted(query.items()))}"

    def verify(self, url: str, now: float) -> bool:
        """Check signature and expiry of a URL produced by :meth:`sign`."""
        parts = urlsplit(url)
        query = dict(parse_qsl(parts.query))
        signature = query.pop("signature", None)
        if signature is None or "expires" not in query:
            return False
        if int(query["expires"]) <= now:
            return False
        return hmac.compare_digest(self._digest(parts.path, query), signature)
