import time
from typing import Callable, Optional, Sequence

import requests
from pydantic import ValidationError

from dam_renditions.config import TransformStrategy
from dam_renditions.dam_client import DamClient
from dam_renditions.lambda_utils import logger, tracer
from dam_renditions.models import AssetMetadata
from dam_renditions.transforms import mapping_covers


def is_ready(
    metadata: AssetMetadata, strategy: TransformStrategy, presets: Sequence[str] = ()
) -> bool:
    """True once the field the configured resolver reads is populated."""
    if strategy is TransformStrategy.TEMPLATE:
        return bool(metadata.transformBaseUrl)
    if strategy is TransformStrategy.MAPPING:
        return bool(metadata.thumbnails)
    return bool(metadata.transformBaseUrl) or mapping_covers(metadata, presets)


class ReadinessPoller:
    def __init__(
        self,
        client: DamClient,
        strategy: TransformStrategy = TransformStrategy.AUTO,
        presets: Sequence[str] = (),
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.strategy = strategy
        self.presets = tuple(presets)
        self.sleep = sleep

    @tracer.capture_method
    def fetch_with_retry(
        self, media_id: str, max_attempts: int, delay: float
    ) -> Optional[AssetMetadata]:
        """
        Fetch asset metadata until it is ready for transformation.

        Args:
            media_id: DAM identifier of the asset
            max_attempts: Number of metadata fetches before giving up
            delay: Seconds to wait between two fetches

        Returns:
            The ready metadata, or None when the budget is exhausted or the
            DAM answered with something that is not a media record.
        """
        for attempt in range(1, max_attempts + 1):
            logger.info(f"Metadata attempt {attempt}/{max_attempts} for {media_id}")

            try:
                response = self.client.get_media(media_id)
            except requests.RequestException as e:
                logger.warning(f"Metadata request failed: {e}")
                response = None

            if response is not None and response.ok:
                try:
                    metadata = AssetMetadata.model_validate(response.json())
                except (ValueError, ValidationError) as e:
                    logger.error(
                        "Metadata response is not a media record, giving up",
                        extra={"media_id": media_id, "error": str(e)},
                    )
                    return None

                if is_ready(metadata, self.strategy, self.presets):
                    return metadata
                logger.info("Transform fields not populated yet")
            elif response is not None:
                logger.warning(
                    f"Metadata fetch returned status {response.status_code}",
                    extra={"media_id": media_id},
                )

            if attempt < max_attempts:
                self.sleep(delay)

        logger.warning(
            f"Metadata for {media_id} not ready after {max_attempts} attempts"
        )
        return None
