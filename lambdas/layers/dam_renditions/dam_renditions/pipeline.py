"""
Rendition pipeline orchestration.

Wires the components together for the three entry points:

- ``process``: a DAM change notification, from loop guard through
  upload, ending either in the pending-upload queue (deferred) or in a
  new asset (sync)
- ``finalize_uploads``: an explicit list of upload descriptors
- ``drain``: the scheduled pass over the pending-upload queue

Every preset and every queued upload is handled on its own; a failure is
recorded in that item's result and the loop moves on.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import requests

from dam_renditions.config import DamConfig, UploadMode
from dam_renditions.dam_client import DamClient
from dam_renditions.fetcher import RenditionFetcher
from dam_renditions.finalizer import Finalizer
from dam_renditions.lambda_error_handler import (
    FinalizeError,
    LambdaError,
    MalformedInputError,
)
from dam_renditions.lambda_utils import add_business_metric, logger, tracer
from dam_renditions.loop_guard import is_derivative, rendition_filename
from dam_renditions.models import (
    AssetMetadata,
    FinalizeResult,
    PendingUploadRecord,
    RenditionRequest,
    RenditionResult,
    UploadDescriptor,
    utc_now,
)
from dam_renditions.notifications import Notification
from dam_renditions.pending_queue import PendingUploadQueue, UpstashListStore, split_due
from dam_renditions.readiness import ReadinessPoller
from dam_renditions.transforms import rendition_requests, resolve_addresses
from dam_renditions.uploader import ChunkedUploader

SKIPPED_DERIVATIVE = "derivative"
SKIPPED_METADATA_UNAVAILABLE = "metadata-unavailable"
SKIPPED_NO_RENDITIONS = "no-renditions"


@dataclass
class IngestionOutcome:
    media_id: str
    skipped: Optional[str] = None
    results: List[RenditionResult] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failure_count(self) -> int:
        return len(self.results) - self.success_count

    def to_dict(self) -> Dict[str, Any]:
        if self.skipped:
            message = f"Skipped media {self.media_id}: {self.skipped}"
        else:
            message = (
                f"Processed {len(self.results)} rendition(s) for media {self.media_id}"
            )
        return {
            "message": message,
            "mediaId": self.media_id,
            "skipped": self.skipped,
            "successCount": self.success_count,
            "failureCount": self.failure_count,
            "results": [r.to_dict() for r in self.results],
        }


class RenditionPipeline:
    def __init__(
        self,
        config: DamConfig,
        client: DamClient,
        queue: Optional[PendingUploadQueue] = None,
        queue_session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] = utc_now,
    ):
        self.config = config
        self.client = client
        self.sleep = sleep
        self.now = now

        self.poller = ReadinessPoller(
            client, config.transform_strategy, config.presets, sleep=sleep
        )
        self.fetcher = RenditionFetcher(client)
        self.uploader = ChunkedUploader(client, config.chunk_size)
        self.finalizer = Finalizer(
            client,
            max_attempts=config.finalize_max_attempts,
            delay=config.finalize_retry_delay,
            sleep=sleep,
        )

        self._queue = queue
        self._queue_session = queue_session

    @classmethod
    def from_config(
        cls,
        config: DamConfig,
        session: Optional[requests.Session] = None,
        queue_session: Optional[requests.Session] = None,
        **kwargs,
    ) -> "RenditionPipeline":
        return cls(
            config,
            DamClient(config, session=session),
            queue_session=queue_session,
            **kwargs,
        )

    def connect_queue(self) -> PendingUploadQueue:
        if self._queue is None:
            store = UpstashListStore.from_config(self.config, session=self._queue_session)
            self._queue = PendingUploadQueue(store)
        return self._queue

    @property
    def queue(self) -> PendingUploadQueue:
        """The pending-upload queue, connected on first use."""
        return self.connect_queue()

    # -------------------------------------------------------------- ingestion
    @tracer.capture_method
    def process(self, notification: Notification) -> IngestionOutcome:
        """
        Produce the configured renditions for the asset named in a notification.

        Args:
            notification: A parsed ``Notification`` envelope

        Returns:
            IngestionOutcome with one result per resolved preset, or the
            reason the asset was skipped

        Raises:
            MalformedInputError: If the notification names no asset
            QueueError: If deferred mode is configured without a queue
        """
        if not notification.media_id:
            raise MalformedInputError("Notification message carries no media_id")

        media_id = notification.media_id
        separator = self.config.derivative_separator
        logger.append_keys(media_id=media_id)
        try:
            if is_derivative(notification.media_name, separator):
                return self._skip(media_id, SKIPPED_DERIVATIVE, notification.media_name)

            if self.config.upload_mode is UploadMode.DEFERRED:
                # Fail before any upload rather than after it
                self.connect_queue()

            metadata = self.poller.fetch_with_retry(
                media_id,
                self.config.metadata_max_attempts,
                self.config.metadata_retry_delay,
            )
            if metadata is None:
                add_business_metric("MetadataUnavailable")
                return self._skip(media_id, SKIPPED_METADATA_UNAVAILABLE)

            if is_derivative(metadata.name, separator):
                return self._skip(media_id, SKIPPED_DERIVATIVE, metadata.name)

            addresses = resolve_addresses(
                metadata, self.config.presets, self.config.transform_strategy
            )
            if not addresses:
                logger.warning("No rendition addresses could be resolved")
                return self._skip(media_id, SKIPPED_NO_RENDITIONS)

            outcome = IngestionOutcome(media_id=media_id)
            for request in rendition_requests(addresses):
                outcome.results.append(self._process_preset(metadata, request))

            logger.info(
                f"Processed media {media_id}",
                extra={
                    "success_count": outcome.success_count,
                    "failure_count": outcome.failure_count,
                },
            )
            return outcome
        finally:
            logger.remove_keys(["media_id", "preset"])

    def _skip(self, media_id: str, reason: str, name: Optional[str] = None) -> IngestionOutcome:
        if reason == SKIPPED_DERIVATIVE:
            add_business_metric("DerivativesSkipped")
            logger.info(f"Asset {name!r} is a generated rendition, ignoring")
        else:
            logger.info(f"Skipping media {media_id}: {reason}")
        return IngestionOutcome(media_id=media_id, skipped=reason)

    def _process_preset(
        self, metadata: AssetMetadata, request: RenditionRequest
    ) -> RenditionResult:
        preset = request.preset
        filename = rendition_filename(
            metadata.stem,
            preset,
            metadata.primary_extension,
            self.config.derivative_separator,
        )
        logger.append_keys(preset=preset)

        try:
            rendition = self.fetcher.download(request.address, preset)
            if rendition is None:
                return self._failed(preset, filename, "Download failed")

            handle = self.uploader.upload(rendition.content, filename)
            add_business_metric("RenditionsUploaded")

            if self.config.upload_mode is UploadMode.DEFERRED:
                record = PendingUploadRecord.from_handle(
                    handle, filename, preset, metadata.brandId, created_at=self.now()
                )
                self.queue.enqueue(record)
                add_business_metric("UploadsEnqueued")
                return RenditionResult(
                    preset, filename, "enqueued", upload_id=handle.uploadId
                )

            # Chunk assembly on the DAM side is asynchronous
            self.sleep(self.config.settle_delay)
            try:
                saved = self.finalizer.finalize_and_save(
                    handle, filename, metadata.brandId
                )
            except FinalizeError:
                add_business_metric("FinalizeFailures")
                raise
            add_business_metric("UploadsFinalized")
            return RenditionResult(
                preset,
                filename,
                "finalized",
                upload_id=handle.uploadId,
                asset_id=saved.asset_id,
            )

        except LambdaError as e:
            logger.error(
                f"Rendition {preset} failed: {e.message}", extra={"details": e.details}
            )
            return self._failed(preset, filename, e.message)
        except Exception as e:
            logger.exception(f"Unexpected error processing rendition {preset}")
            return self._failed(preset, filename, str(e))

    def _failed(self, preset: str, filename: str, error: str) -> RenditionResult:
        add_business_metric("RenditionsFailed")
        return RenditionResult(preset, filename, "failed", error=error)

    # --------------------------------------------------------------- finalize
    def _finalize_one(
        self, descriptor: UploadDescriptor, record_id: Optional[str] = None
    ) -> FinalizeResult:
        logger.append_keys(preset=descriptor.presetName)
        try:
            saved = self.finalizer.finalize_and_save(
                descriptor.handle, descriptor.filename, descriptor.brandId
            )
        except LambdaError as e:
            add_business_metric("FinalizeFailures")
            logger.error(
                f"Finalize of {descriptor.filename} failed: {e.message}",
                extra={"upload_id": descriptor.uploadId, "details": e.details},
            )
            return FinalizeResult(
                descriptor.presetName,
                descriptor.filename,
                success=False,
                error=e.message,
                id=record_id,
            )
        except Exception as e:
            add_business_metric("FinalizeFailures")
            logger.exception(f"Unexpected error finalizing {descriptor.filename}")
            return FinalizeResult(
                descriptor.presetName,
                descriptor.filename,
                success=False,
                error=str(e),
                id=record_id,
            )
        finally:
            logger.remove_keys(["preset"])

        add_business_metric("UploadsFinalized")
        return FinalizeResult(
            descriptor.presetName,
            descriptor.filename,
            success=True,
            importId=saved.import_id,
            assetId=saved.asset_id,
            id=record_id,
        )

    @tracer.capture_method
    def finalize_uploads(self, descriptors: List[UploadDescriptor]) -> Dict[str, Any]:
        if not descriptors:
            raise MalformedInputError("Missing or invalid 'uploads' array in request body")

        results = [self._finalize_one(descriptor) for descriptor in descriptors]
        success_count = sum(1 for r in results if r.success)

        return {
            "message": f"Finalized {success_count} of {len(results)} uploads",
            "successCount": success_count,
            "failureCount": len(results) - success_count,
            "results": [r.to_dict() for r in results],
        }

    # ------------------------------------------------------------------ drain
    @tracer.capture_method
    def drain(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Finalize and save every queued upload old enough to be assembled.

        Saved records are removed from the queue in one rewrite; failed and
        deferred records stay for the next pass.
        """
        now = now or self.now()
        records = self.queue.list_all()
        if not records:
            logger.info("No pending uploads")
            return {
                "message": "No pending uploads",
                "processed": 0,
                "completed": 0,
                "deferred": 0,
                "failed": 0,
                "results": [],
            }

        due, deferred = split_due(records, now, self.config.queue_min_age)
        if deferred:
            add_business_metric("QueueItemsDeferred", len(deferred))
            logger.info(
                f"Deferring {len(deferred)} upload(s) younger than {self.config.queue_min_age}s",
                extra={"deferred_ids": [r.id for r in deferred]},
            )

        results = []
        completed_ids = []
        for record in due:
            record.begin_finalizing()
            result = self._finalize_one(record, record_id=record.id)
            if result.success:
                record.mark_saved()
                completed_ids.append(record.id)
            else:
                record.mark_failed()
            results.append(result)

        remaining = len(records)
        if completed_ids:
            remaining = self.queue.remove_completed(completed_ids)

        return {
            "message": f"Processed {len(due)} pending upload(s)",
            "processed": len(due),
            "completed": len(completed_ids),
            "deferred": len(deferred),
            "failed": len(due) - len(completed_ids),
            "remaining": remaining,
            "results": [r.to_dict() for r in results],
        }
