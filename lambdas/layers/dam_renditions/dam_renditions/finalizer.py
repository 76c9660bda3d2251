import time
from typing import Callable, NamedTuple, Optional

import requests

from dam_renditions.dam_client import DamClient, is_not_ready
from dam_renditions.lambda_error_handler import (
    ApiError,
    FinalizeError,
    decode_response_body,
)
from dam_renditions.lambda_utils import logger, tracer
from dam_renditions.models import UploadHandle


class SavedAsset(NamedTuple):
    import_id: str
    asset_id: Optional[str]


class Finalizer:
    """Turns a completed chunk upload into a new DAM asset."""

    def __init__(
        self,
        client: DamClient,
        max_attempts: int = 10,
        delay: float = 3.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.max_attempts = max_attempts
        self.delay = delay
        self.sleep = sleep

    @tracer.capture_method
    def finalize_with_retry(self, handle: UploadHandle) -> str:
        """
        Ask the DAM to finalize an upload, waiting while it reports "not ready".

        Returns:
            The import id to save the asset with

        Raises:
            FinalizeError: On a terminal reply or when the retry budget runs out
        """
        for attempt in range(1, self.max_attempts + 1):
            logger.info(
                f"Finalize attempt {attempt}/{self.max_attempts}",
                extra={"upload_id": handle.uploadId},
            )
            last_attempt = attempt == self.max_attempts

            try:
                response = self.client.finalize(
                    handle.uploadId,
                    handle.targetid,
                    handle.first_chunk_key,
                    handle.totalChunks,
                )
            except requests.RequestException as e:
                logger.warning(f"Finalize request failed: {e}")
                if not last_attempt:
                    self.sleep(self.delay)
                continue

            body = decode_response_body(response)
            import_id = body.get("importId") if isinstance(body, dict) else None

            if response.ok and import_id:
                logger.info(f"Finalize successful, import id {import_id}")
                return str(import_id)

            if is_not_ready(body):
                logger.info(
                    f"Upload not ready yet, waiting {self.delay}s before retry"
                )
                if not last_attempt:
                    self.sleep(self.delay)
                continue

            raise FinalizeError(
                f"Failed to finalise upload, status {response.status_code}",
                {"upload_id": handle.uploadId, "response": body},
            )

        raise FinalizeError(
            f"Failed to finalize upload after {self.max_attempts} attempts",
            {"upload_id": handle.uploadId},
        )

    @tracer.capture_method
    def save(self, import_id: str, brand_id: str, filename: str) -> Optional[str]:
        logger.info(f"Saving as new asset with import id {import_id}")
        try:
            body = self.client.save_as_new_asset(import_id, brand_id, filename)
        except (ApiError, requests.RequestException) as e:
            raise FinalizeError(
                f"Failed to save asset {filename}: {e}", {"import_id": import_id}
            ) from e

        asset_id = None
        if isinstance(body, dict):
            asset_id = body.get("mediaid") or body.get("mediaId") or body.get("id")
        logger.info(f"Saved asset {filename}", extra={"asset_id": asset_id})
        return asset_id

    def finalize_and_save(
        self, handle: UploadHandle, filename: str, brand_id: str
    ) -> SavedAsset:
        import_id = self.finalize_with_retry(handle)
        asset_id = self.save(import_id, brand_id, filename)
        return SavedAsset(import_id=import_id, asset_id=asset_id)
