from typing import Optional

import requests

from dam_renditions.dam_client import DamClient
from dam_renditions.lambda_utils import logger, tracer
from dam_renditions.models import RenditionBytes


class RenditionFetcher:
    """Downloads one transformed rendition into memory."""

    def __init__(self, client: DamClient):
        self.client = client

    @tracer.capture_method
    def download(self, address: str, preset: str = "") -> Optional[RenditionBytes]:
        try:
            response = self.client.download(address)
        except requests.RequestException as e:
            logger.error(
                f"Download of {preset} rendition failed: {e}",
                extra={"address": address},
            )
            return None

        if not response.ok:
            logger.error(
                f"Download of {preset} rendition returned {response.status_code}",
                extra={"address": address, "reason": response.reason},
            )
            return None

        rendition = RenditionBytes(preset=preset, content=response.content)
        if rendition.size == 0:
            logger.error(
                f"Empty body for {preset} rendition",
                extra={"address": address},
            )
            return None

        logger.info(
            f"Downloaded {preset} rendition",
            extra={"bytes": rendition.size, "address": address},
        )
        return rendition
