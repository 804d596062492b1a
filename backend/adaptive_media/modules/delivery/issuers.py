"""Signed URL issuers.

An issuer turns an object key into a time-limited URL, optionally carrying
image transform parameters. ``StorageUrlIssuer`` presigns through the
configured storage backend. ``HttpUrlIssuer`` asks a storage signing API.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol
from urllib.parse import quote

import httpx

from adaptive_media.core.retry import RETRY_CONFIGS, RetryConfig
from adaptive_media.core.signing import UrlSigner
from adaptive_media.core.storage import StorageService
from adaptive_media.modules.delivery.exceptions import (
    IssuerError,
    IssuerUnavailable,
    NotFound,
    TransformUnsupportedFormat,
)
from adaptive_media.modules.delivery.formats import ImageTransform, allows_transform, classify

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


@dataclass(frozen=True)
class SignedUrl:
    url: str
    expires_at: float  # unix seconds


class UrlIssuer(Protocol):
    async def issue(
        self,
        key: str,
        expires_in: int,
        transform: Optional[ImageTransform] = None,
    ) -> SignedUrl: ...


def ensure_transformable(key: str, transform: Optional[ImageTransform]) -> None:
    """Refuse transforms for formats that must be delivered untouched."""
    if transform is None:
        return
    format_class = classify(key)
    if not allows_transform(format_class):
        raise TransformUnsupportedFormat(key, format_class.value)


class StorageUrlIssuer:
    """Presigns through the storage backend.

    Plain requests use the backend's own presigned URL. Transformed requests
    point at the image render endpoint with an HMAC signature covering the
    transform parameters and expiry.
    """

    def __init__(
        self,
        storage: StorageService,
        signer: UrlSigner,
        transform_base_url: str,
        clock: Callable[[], float] = time.time,
    ):
        self.storage = storage
        self.signer = signer
        self.transform_base_url = transform_base_url
        self.clock = clock

    async def issue(
        self,
        key: str,
        expires_in: int,
        transform: Optional[ImageTransform] = None,
    ) -> SignedUrl:
        ensure_transformable(key, transform)
        if await self.storage.head(key) is None:
            raise NotFound(key)

        expires_at = self.clock() + expires_in
        if transform is None or transform.is_empty:
            url = await self.storage.get_url(key, expires_in)
        else:
            url = self.signer.sign(
                self.transform_base_url,
                key,
                int(expires_at),
                transform.as_params(),
            )
        return SignedUrl(url=url, expires_at=expires_at)


class HttpUrlIssuer:
    """Signs through a storage signing API over HTTP.

    ``POST {base_url}/object/sign/{bucket}/{key}`` with ``expiresIn`` and an
    optional ``transform`` object; the response carries a relative
    ``signedURL``. Timeouts, connection errors, 429 and 5xx are retried with
    exponential backoff; other failures are returned immediately.
    """

    def __init__(
        self,
        base_url: str,
        bucket: str,
        api_key: str,
        timeout: float = 10.0,
        retry_config: Optional[RetryConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], object] = asyncio.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self.api_key = api_key
        self.timeout = timeout
        self.retry_config = retry_config or RETRY_CONFIGS["url_signing"]
        self._client = client
        self._owns_client = client is None
        self.clock = clock
        self.sleep = sleep

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _payload(self, expires_in: int, transform: Optional[ImageTransform]) -> dict:
        payload: dict = {"expiresIn": expires_in}
        if transform is not None and not transform.is_empty:
            payload["transform"] = transform.as_params()
        return payload

    async def issue(
        self,
        key: str,
        expires_in: int,
        transform: Optional[ImageTransform] = None,
    ) -> SignedUrl:
        ensure_transformable(key, transform)
        endpoint = f"{self.base_url}/object/sign/{self.bucket}/{quote(key)}"
        headers = {"Authorization": f"Bearer {self.api_key}", "apikey": self.api_key}
        payload = self._payload(expires_in, transform)

        attempt = 0
        while True:
            attempt += 1
            issued_at = self.clock()
            try:
                response = await self._get_client().post(
                    endpoint, json=payload, headers=headers, timeout=self.timeout
                )
            except (httpx.TimeoutException, httpx.TransportError) as e:
                error: Exception = e
            else:
                if response.status_code == 200:
                    return self._parse(response, issued_at + expires_in)
                if response.status_code not in TRANSIENT_STATUS_CODES:
                    self._raise_for_status(key, response)
                error = IssuerError(f"Signing API returned {response.status_code}")

            if not self.retry_config.should_retry(attempt):
                raise IssuerUnavailable(
                    f"Signing failed after {attempt} attempts: {error}"
                ) from error

            delay = self.retry_config.calculate_delay(attempt)
            logger.warning(
                "Transient signing failure, retrying",
                extra={"key": key, "attempt": attempt, "delay": delay, "error": str(error)},
            )
            await self.sleep(delay)

    def _parse(self, response: httpx.Response, expires_at: float) -> SignedUrl:
        try:
            signed = response.json()["signedURL"]
        except (ValueError, KeyError, TypeError) as e:
            raise IssuerError(f"Malformed signing response: {response.text[:200]}") from e
        url = signed if signed.startswith("http") else f"{self.base_url}{signed}"
        return SignedUrl(url=url, expires_at=expires_at)

    def _raise_for_status(self, key: str, response: httpx.Response) -> None:
        body = response.text[:200]
        if response.status_code == 404 or (
            response.status_code == 400 and "not found" in body.lower()
        ):
            raise NotFound(key)
        raise IssuerError(f"Signing API returned {response.status_code}: {body}")
