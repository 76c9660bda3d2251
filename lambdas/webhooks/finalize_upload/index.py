from typing import Any, Dict, Optional

from aws_lambda_powertools.logging import correlation_paths
from aws_lambda_powertools.utilities.typing import LambdaContext
from dam_renditions.config import DamConfig
from dam_renditions.lambda_middleware import (
    http_body,
    json_response,
    log_response,
    warmer_short_circuit,
)
from dam_renditions.lambda_utils import lambda_handler_decorator, logger
from dam_renditions.notifications import parse_finalize_request
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
    """Finalize and save a batch of previously uploaded renditions."""
    body, is_base64 = http_body(event)
    descriptors = parse_finalize_request(body, is_base64)
    logger.info(f"Finalizing {len(descriptors)} upload(s)")

    summary = get_pipeline().finalize_uploads(descriptors)
    return json_response(200, summary)
