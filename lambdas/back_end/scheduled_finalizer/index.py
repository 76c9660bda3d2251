"""
Scheduled drain of the pending-upload queue.

Triggered by an EventBridge schedule. Each run finalizes and saves the
queued uploads that have had time to be assembled on the DAM side.
"""

from typing import Any, Dict, Optional

from aws_lambda_powertools.logging import correlation_paths
from aws_lambda_powertools.utilities.typing import LambdaContext
from dam_renditions.config import DamConfig
from dam_renditions.lambda_middleware import (
    json_response,
    log_response,
    warmer_short_circuit,
)
from dam_renditions.lambda_utils import lambda_handler_decorator
from dam_renditions.pipeline import RenditionPipeline

_pipeline: Optional[RenditionPipeline] = None


def get_pipeline() -> RenditionPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = RenditionPipeline.from_config(DamConfig.from_env())
    return _pipeline


@lambda_handler_decorator(cors=False, correlation_id_path=correlation_paths.EVENT_BRIDGE)
@log_response
@warmer_short_circuit
def lambda_handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    summary = get_pipeline().drain()
    return json_response(200, summary)
