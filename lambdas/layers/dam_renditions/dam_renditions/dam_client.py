from typing import Any, Dict, List, Optional

import requests

from dam_renditions.config import DamConfig
from dam_renditions.lambda_error_handler import decode_response_body, handle_api_response
from dam_renditions.lambda_utils import logger, tracer

API_NAME = "DAM"

# Finalize replies carrying this message mean the chunks are still being assembled.
UPLOAD_NOT_READY = "Upload not ready"


class DamClient:
    """
    Thin wrapper around the DAM REST API.

    One method per remote call; each returns the decoded JSON body and
    raises ApiError on a non-success status, except where the caller has
    to look at the raw response (metadata polling, finalize, downloads).
    """

    def __init__(self, config: DamConfig, session: Optional[requests.Session] = None):
        self.base_url = config.dam_base_url
        self.upload_endpoint = config.upload_endpoint
        self.timeout = config.request_timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": config.resolve_token()})

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    # ------------------------------------------------------------------ media
    @tracer.capture_method
    def get_media(self, media_id: str) -> requests.Response:
        url = self._url(f"api/v4/media/{media_id}/")
        logger.debug(f"Fetching media metadata from {url}")
        return self.session.get(url, timeout=self.timeout)

    @tracer.capture_method
    def download(self, address: str) -> requests.Response:
        return self.session.get(address, timeout=self.timeout)

    # ----------------------------------------------------------------- upload
    @tracer.capture_method
    def init_upload(self, filename: str, filesize: int) -> Dict[str, Any]:
        endpoint = "api/upload/init"
        response = self.session.post(
            self._url(endpoint),
            data={"filename": filename, "filesize": str(filesize)},
            timeout=self.timeout,
        )
        return handle_api_response(response, API_NAME, endpoint)

    @tracer.capture_method
    def upload_chunk(
        self, fields: Dict[str, str], filename: str, content: bytes
    ) -> requests.Response:
        # Storage endpoint rejects forms where the file is not the last part.
        return self.session.post(
            self.upload_endpoint,
            data=fields,
            files={"file": (filename, content)},
            timeout=self.timeout,
        )

    @tracer.capture_method
    def register_chunks(
        self, upload_id: str, target_id: str, key: str, chunks: List[int]
    ) -> Dict[str, Any]:
        endpoint = f"api/v4/upload/{upload_id}/chunks/"
        response = self.session.post(
            self._url(endpoint),
            json={"chunks": chunks, "targetid": target_id, "s3_filename": key},
            timeout=self.timeout,
        )
        return handle_api_response(response, API_NAME, endpoint)

    # --------------------------------------------------------------- finalize
    @tracer.capture_method
    def finalize(
        self, upload_id: str, target_id: str, first_chunk_key: str, chunks: int
    ) -> requests.Response:
        return self.session.post(
            self._url("api/v4/upload/"),
            data={
                "id": upload_id,
                "targetid": target_id,
                "s3_filename": first_chunk_key,
                "chunks": str(chunks),
            },
            timeout=self.timeout,
        )

    @tracer.capture_method
    def save_as_new_asset(
        self, import_id: str, brand_id: str, name: str
    ) -> Dict[str, Any]:
        endpoint = f"api/v4/media/save/{import_id}"
        response = self.session.post(
            self._url(endpoint),
            data={"brandId": brand_id or "", "name": name},
            timeout=self.timeout,
        )
        return handle_api_response(response, API_NAME, endpoint)

    # ---------------------------------------------------------- subscription
    @tracer.capture_method
    def confirm_subscription(self, subscribe_url: str) -> bool:
        # Plain GET without the DAM credentials; the URL is self-authenticating.
        response = requests.get(subscribe_url, timeout=self.timeout)
        if not response.ok:
            logger.error(
                "Subscription confirmation failed",
                extra={
                    "status_code": response.status_code,
                    "body": decode_response_body(response),
                },
            )
        return response.ok


def is_not_ready(body: Any) -> bool:
    return isinstance(body, dict) and bool(
        body.get("retry") or body.get("message") == UPLOAD_NOT_READY
    )
