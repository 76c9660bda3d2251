"""
Durable list of uploads waiting for finalize + save.

Backed by an Upstash Redis list spoken to over its REST interface. The
store has no transactions, so removal is a full read, filter, delete and
re-push of the remainder. Entries pushed by another invocation between
the read and the delete are lost; the scheduled drain runs alone, and
ingestion only ever appends.
"""

import json
from datetime import datetime
from typing import Any, Iterable, List, Optional, Tuple
from urllib.parse import quote

import requests

from dam_renditions.codec import EnvelopeCodec, EnvelopeDecodeError
from dam_renditions.config import DamConfig
from dam_renditions.lambda_error_handler import ApiError, QueueError, handle_api_response
from dam_renditions.lambda_utils import logger, tracer
from dam_renditions.models import PendingUploadRecord

API_NAME = "Upstash"

record_codec: EnvelopeCodec[PendingUploadRecord] = EnvelopeCodec(
    to_dict=PendingUploadRecord.to_wire,
    from_dict=PendingUploadRecord.from_wire,
)


class UpstashListStore:
    """Minimal list commands over the Upstash REST protocol."""

    def __init__(
        self,
        url: str,
        token: str,
        key: str,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ):
        self.url = url.rstrip("/")
        self.key = quote(key, safe="")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {token}"})

    @classmethod
    def from_config(
        cls, config: DamConfig, session: Optional[requests.Session] = None
    ) -> "UpstashListStore":
        if not config.queue_configured:
            raise QueueError(
                "Missing Upstash credentials: UPSTASH_REDIS_URL and UPSTASH_REDIS_TOKEN are required"
            )
        return cls(
            config.queue_url,
            config.queue_token,
            config.queue_key,
            session=session,
            timeout=config.request_timeout,
        )

    def _call(self, method: str, command: str, data: Optional[str] = None) -> Any:
        try:
            response = self.session.request(
                method,
                f"{self.url}/{command}",
                data=data,
                timeout=self.timeout,
            )
            body = handle_api_response(response, API_NAME, command.split("/")[0])
        except (ApiError, requests.RequestException) as e:
            raise QueueError(f"Queue command {command.split('/')[0]} failed: {e}") from e

        if not isinstance(body, dict) or "error" in body:
            raise QueueError(f"Queue command {command} returned {body}")
        return body.get("result")

    def rpush(self, value: str) -> int:
        return self._call("POST", f"rpush/{self.key}", data=value)

    def lrange(self) -> List[Any]:
        return self._call("GET", f"lrange/{self.key}/0/-1") or []

    def delete(self) -> None:
        self._call("POST", f"del/{self.key}")


class PendingUploadQueue:
    def __init__(
        self,
        store: UpstashListStore,
        codec: EnvelopeCodec[PendingUploadRecord] = record_codec,
    ):
        self.store = store
        self.codec = codec

    @tracer.capture_method
    def enqueue(self, record: PendingUploadRecord) -> None:
        self.store.rpush(self.codec.encode(record))
        logger.info(
            "Queued pending upload",
            extra={"record_id": record.id, "preset": record.presetName},
        )

    def _decoded(self) -> List[Tuple[Any, Optional[PendingUploadRecord]]]:
        entries = []
        for index, raw in enumerate(self.store.lrange()):
            try:
                entries.append((raw, self.codec.decode(raw)))
            except EnvelopeDecodeError as e:
                logger.error(
                    f"Skipping undecodable queue entry {index}: {e}",
                    extra={"entry": raw},
                )
                entries.append((raw, None))
        return entries

    @tracer.capture_method
    def list_all(self) -> List[PendingUploadRecord]:
        return [record for _, record in self._decoded() if record is not None]

    @tracer.capture_method
    def remove_completed(self, ids: Iterable[str]) -> int:
        """
        Drop the given record ids from the list.

        Undecodable entries and records not named in ``ids`` are pushed back
        exactly as they were read. Returns the number of entries kept.
        """
        ids = set(ids)
        if not ids:
            return len(self.store.lrange())

        remaining = [
            raw
            for raw, record in self._decoded()
            if record is None or record.id not in ids
        ]

        self.store.delete()
        for raw in remaining:
            self.store.rpush(raw if isinstance(raw, str) else json.dumps(raw))

        logger.info(
            f"Removed completed uploads, {len(remaining)} left in queue",
            extra={"removed_ids": sorted(ids)},
        )
        return len(remaining)


def split_due(
    records: Iterable[PendingUploadRecord], now: datetime, min_age: float
) -> Tuple[List[PendingUploadRecord], List[PendingUploadRecord]]:
    """Partition records into those old enough to finalize and those to defer."""
    due, deferred = [], []
    for record in records:
        (due if record.is_due(now, min_age) else deferred).append(record)
    return due, deferred
