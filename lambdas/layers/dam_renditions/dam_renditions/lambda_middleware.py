# middleware.py
import json
from typing import Any, Callable, Dict, Optional, Tuple

from aws_lambda_powertools.middleware_factory import lambda_handler_decorator

from dam_renditions.lambda_utils import _truncate_lists, logger


# ──────────────────────────────────────────────────────────────────────────────
# Event helpers
# ──────────────────────────────────────────────────────────────────────────────
def is_lambda_warmer_event(event: dict) -> bool:
    """
    Returns True for keep-warm pings: a ``lambda_warmer`` flag or the
    scheduled EventBridge warmer rule.
    """
    if isinstance(event, dict):
        if event.get("lambda_warmer") is True:
            return True
        if (
            event.get("source") == "aws.events"
            and event.get("detail-type") == "Scheduled Event"
        ):
            if event.get("resources") and any(
                "lambda-warmer" in r for r in event["resources"]
            ):
                return True
    return False


def http_body(event: Dict[str, Any]) -> Tuple[Any, bool]:
    """
    Return ``(body, is_base64)`` for an API Gateway proxy event.

    Direct invocations without the proxy wrapper are passed through as the
    body itself.
    """
    if isinstance(event, dict) and "body" in event:
        return event.get("body"), bool(event.get("isBase64Encoded"))
    return event, False


def json_response(status_code: int, body: Any) -> Dict[str, Any]:
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(body, default=str),
    }


def text_response(status_code: int, body: str) -> Dict[str, Any]:
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "text/plain"},
        "body": body,
    }


# ──────────────────────────────────────────────────────────────────────────────
# Middleware
# ──────────────────────────────────────────────────────────────────────────────
@lambda_handler_decorator
def warmer_short_circuit(
    handler: Callable[[Dict[str, Any], Any], Any],
    event: Dict[str, Any],
    context: Any,
) -> Any:
    """Answer warmer pings without running the handler."""
    if is_lambda_warmer_event(event):
        logger.debug("Lambda warmer ping")
        return {"warmed": True}
    return handler(event, context)


@lambda_handler_decorator
def log_response(
    handler: Callable[[Dict[str, Any], Any], Any],
    event: Dict[str, Any],
    context: Any,
    max_items: Optional[int] = 15,
) -> Any:
    response = handler(event, context)
    if isinstance(response, dict) and "statusCode" in response:
        body = response.get("body")
        content_type = (response.get("headers") or {}).get("Content-Type")
        if content_type == "application/json" and isinstance(body, str):
            body = json.loads(body)
        logger.info(
            "Returning response",
            extra={
                "status_code": response["statusCode"],
                "body": _truncate_lists(body, max_items),
            },
        )
    return response
