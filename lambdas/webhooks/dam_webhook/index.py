"""
DAM change-notification webhook.

Receives the SNS HTTP subscription posts for new or changed DAM assets
and produces the configured renditions for each one.
"""

from typing import Any, Dict, Optional

from aws_lambda_powertools.logging import correlation_paths
from aws_lambda_powertools.utilities.typing import LambdaContext
from dam_renditions.config import DamConfig
from dam_renditions.lambda_middleware import (
    http_body,
    json_response,
    log_response,
    text_response,
    warmer_short_circuit,
)
from dam_renditions.lambda_utils import lambda_handler_decorator, logger
from dam_renditions.notifications import parse_notification
from dam_renditions.pipeline import RenditionPipeline

_pipeline: Optional[RenditionPipeline] = None


def get_pipeline() -> RenditionPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = RenditionPipeline.from_config(DamConfig.from_env())
    return _pipeline


@lambda_handler_decorator(
    cors=True, correlation_id_path=correlation_paths.API_GATEWAY_REST
)
@log_response
@warmer_short_circuit
def lambda_handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    body, is_base64 = http_body(event)
    notification = parse_notification(body, is_base64)
    logger.info(f"Received {notification.type} envelope")

    if notification.is_subscription_confirmation:
        if not notification.subscribe_url:
            return text_response(400, "SubscriptionConfirmation without SubscribeURL")
        confirmed = get_pipeline().client.confirm_subscription(
            notification.subscribe_url
        )
        return json_response(
            200,
            {
                "message": "Subscription confirmed"
                if confirmed
                else "Subscription confirmation failed",
                "confirmed": confirmed,
            },
        )

    if not notification.is_notification:
        return json_response(
            200, {"message": f"Ignored {notification.type} message"}
        )

    outcome = get_pipeline().process(notification)
    return json_response(200, outcome.to_dict())
