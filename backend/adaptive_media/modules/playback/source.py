"""Rendition URLs for the controller, served through media delivery."""

import uuid

from adaptive_media.modules.access.guard import Principal
from adaptive_media.modules.delivery.service import MediaDeliveryService


class DeliveryRenditionSource:
    """Resolves rendition labels of one asset to signed URLs for one viewer.

    Repeat requests are answered from the delivery service's URL cache.
    """

    def __init__(
        self,
        service: MediaDeliveryService,
        principal: Principal,
        asset_id: uuid.UUID,
        expires_in: int = 3600,
    ):
        self.service = service
        self.principal = principal
        self.asset_id = asset_id
        self.expires_in = expires_in

    async def available_labels(self) -> list[str]:
        manifest = await self.service.manifest(self.principal, self.asset_id, self.expires_in)
        return [entry.label for entry in manifest.manifest]

    async def rendition_url(self, label: str) -> str:
        response = await self.service.media_url(
            self.principal,
            self.asset_id,
            label=label,
            expires_in=self.expires_in,
        )
        return response.url
