"""
Parsing of inbound HTTP bodies.

DAM change notifications arrive through an SNS HTTP subscription: the
outer JSON document is the SNS envelope and its ``Message`` member is a
second, separately encoded JSON document carrying the media id.
"""

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from dam_renditions.lambda_error_handler import MalformedInputError
from dam_renditions.models import UploadDescriptor

NOTIFICATION = "Notification"
SUBSCRIPTION_CONFIRMATION = "SubscriptionConfirmation"


@dataclass
class Notification:
    type: str
    media_id: Optional[str] = None
    media_name: Optional[str] = None
    subscribe_url: Optional[str] = None
    uploads: Optional[List[Dict[str, Any]]] = None
    message: Optional[Dict[str, Any]] = None

    @property
    def is_notification(self) -> bool:
        return self.type == NOTIFICATION

    @property
    def is_subscription_confirmation(self) -> bool:
        return self.type == SUBSCRIPTION_CONFIRMATION


def decode_body(body: Union[str, bytes, Dict[str, Any], None], is_base64: bool = False) -> Any:
    if isinstance(body, dict):
        return body
    if body is None or body == "" or body == b"":
        raise MalformedInputError("Empty request body")
    try:
        if is_base64:
            body = base64.b64decode(body)
        return json.loads(body)
    except (binascii.Error, ValueError):
        raise MalformedInputError("Invalid JSON")


def _media_name(message: Dict[str, Any]) -> Optional[str]:
    media = message.get("media")
    if isinstance(media, dict) and media.get("name"):
        return str(media["name"])
    name = message.get("media_name") or message.get("name")
    return str(name) if name else None


def parse_notification(
    body: Union[str, bytes, Dict[str, Any], None], is_base64: bool = False
) -> Notification:
    """
    Decode an SNS envelope into a Notification.

    Raises:
        MalformedInputError: If the envelope, or the message of a
            ``Notification`` envelope, cannot be parsed
    """
    envelope = decode_body(body, is_base64)
    if not isinstance(envelope, dict):
        raise MalformedInputError("Invalid JSON")

    kind = str(envelope.get("Type") or "")

    if kind == SUBSCRIPTION_CONFIRMATION:
        return Notification(type=kind, subscribe_url=envelope.get("SubscribeURL"))

    if kind != NOTIFICATION or not envelope.get("Message"):
        return Notification(type=kind or "Unknown")

    raw_message = envelope["Message"]
    try:
        message = json.loads(raw_message) if isinstance(raw_message, str) else raw_message
    except ValueError:
        raise MalformedInputError("Invalid notification message")
    if not isinstance(message, dict):
        raise MalformedInputError("Invalid notification message")

    media_id = message.get("media_id") or message.get("mediaId")
    uploads = message.get("uploads")
    if not media_id and not uploads:
        raise MalformedInputError("Notification message carries no media_id")

    return Notification(
        type=kind,
        media_id=str(media_id) if media_id else None,
        media_name=_media_name(message),
        uploads=uploads if isinstance(uploads, list) else None,
        message=message,
    )


def parse_finalize_request(
    body: Union[str, bytes, Dict[str, Any], None], is_base64: bool = False
) -> List[UploadDescriptor]:
    """
    Read the upload descriptors of a finalize request.

    The descriptors are accepted either as a top-level ``uploads`` array
    or inside the message of an SNS ``Notification`` envelope.
    """
    payload = decode_body(body, is_base64)
    if isinstance(payload, dict) and payload.get("Type") == NOTIFICATION:
        uploads = parse_notification(payload).uploads
    else:
        uploads = payload.get("uploads") if isinstance(payload, dict) else None
    if not uploads or not isinstance(uploads, list):
        raise MalformedInputError("Missing or invalid 'uploads' array in request body")

    try:
        return [UploadDescriptor.model_validate(upload) for upload in uploads]
    except ValidationError as e:
        raise MalformedInputError(
            f"Invalid upload descriptor: {e.errors(include_url=False)[0]['msg']}"
        )
