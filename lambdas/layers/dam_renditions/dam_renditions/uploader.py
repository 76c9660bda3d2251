"""
Chunked upload of rendition bytes into the DAM's object storage.

The DAM hands out a storage slot (initialize), accepts the bytes as a
series of multipart form posts against its storage endpoint, and, when
more than one object was written, needs to be told which chunks to
assemble (register). The result is an UploadHandle that the finalizer
turns into an asset.
"""

import math
from typing import Any, Dict, Iterator, List, Tuple

import requests

from dam_renditions.dam_client import DamClient
from dam_renditions.lambda_error_handler import (
    ApiError,
    UploadError,
    decode_response_body,
)
from dam_renditions.lambda_utils import logger, tracer
from dam_renditions.models import UploadHandle

# Form fields the uploader sets itself for every chunk.
OVERRIDDEN_FIELDS = ("key", "Filename", "name", "chunk", "chunks")


def chunk_count(size: int, chunk_size: int) -> int:
    return max(1, math.ceil(size / chunk_size))


def split_chunks(content: bytes, chunk_size: int) -> Iterator[Tuple[int, bytes]]:
    """Yield ``(index, chunk)`` pairs with 1-based indexes."""
    total = chunk_count(len(content), chunk_size)
    view = memoryview(content)
    for i in range(total):
        yield i + 1, bytes(view[i * chunk_size : (i + 1) * chunk_size])


def parse_init_response(body: Any) -> Tuple[str, str, Dict[str, str]]:
    """Extract upload id, target id and the echoable form fields from an init reply."""
    if not isinstance(body, dict):
        raise UploadError("Upload init returned an unexpected body", {"body": body})

    s3file = body.get("s3file") or {}
    upload_id = s3file.get("uploadid") or body.get("uploadid")
    target_id = s3file.get("targetid") or body.get("targetid")
    params = body.get("multipart_params") or {}
    key = params.get("key") or body.get("s3_filename")

    missing = [
        name
        for name, value in (
            ("uploadid", upload_id),
            ("targetid", target_id),
            ("key", key),
        )
        if not value
    ]
    if missing:
        raise UploadError(
            f"Upload init reply is missing {', '.join(missing)}", {"body": body}
        )

    fields = {k: str(v) for k, v in params.items() if v is not None}
    fields["key"] = key
    return str(upload_id), str(target_id), fields


def chunk_form(
    base_fields: Dict[str, str], filename: str, index: int, total: int
) -> Dict[str, str]:
    key = f"{base_fields['key']}/p{index}"
    form = {k: v for k, v in base_fields.items() if k not in OVERRIDDEN_FIELDS}
    form.update(
        {
            "key": key,
            "Filename": key,
            "name": filename,
            "chunk": str(index),
            "chunks": str(total),
        }
    )
    return form


class ChunkedUploader:
    def __init__(self, client: DamClient, chunk_size: int):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.client = client
        self.chunk_size = chunk_size

    @tracer.capture_method
    def upload(self, content: bytes, filename: str) -> UploadHandle:
        """
        Push a rendition through initialize, chunk upload and registration.

        Args:
            content: Rendition bytes held in memory
            filename: Name the new asset will carry

        Returns:
            UploadHandle with the upload id, key prefix, target id and chunk count

        Raises:
            UploadError: If any phase fails; no chunk is retried
        """
        try:
            init_body = self.client.init_upload(filename, len(content))
        except (ApiError, requests.RequestException) as e:
            raise UploadError(f"Upload init failed for {filename}: {e}") from e

        upload_id, target_id, base_fields = parse_init_response(init_body)
        total = chunk_count(len(content), self.chunk_size)

        logger.info(
            f"Uploading {filename} in {total} chunk(s)",
            extra={"upload_id": upload_id, "bytes": len(content)},
        )

        uploaded: List[int] = []
        for index, chunk in split_chunks(content, self.chunk_size):
            form = chunk_form(base_fields, filename, index, total)
            try:
                response = self.client.upload_chunk(form, filename, chunk)
            except requests.RequestException as e:
                raise UploadError(
                    f"Chunk {index}/{total} of {filename} failed: {e}"
                ) from e

            if not response.ok:
                raise UploadError(
                    f"Chunk {index}/{total} of {filename} rejected with status {response.status_code}",
                    {"body": decode_response_body(response)},
                )
            uploaded.append(index)
            logger.debug(f"Chunk {index}/{total} stored", extra={"bytes": len(chunk)})

        handle = UploadHandle(
            uploadId=upload_id,
            targetid=target_id,
            s3_filename=base_fields["key"],
            totalChunks=total,
        )

        if total > 1:
            try:
                self.client.register_chunks(
                    upload_id, target_id, handle.s3_filename, uploaded
                )
            except (ApiError, requests.RequestException) as e:
                raise UploadError(
                    f"Chunk registration failed for {filename}: {e}"
                ) from e

        return handle
