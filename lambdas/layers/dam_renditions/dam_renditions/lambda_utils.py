import os
import time
from functools import wraps
from typing import Any, Callable, Dict, Optional, TypeVar, Union, cast

from aws_lambda_powertools import Logger, Metrics, Tracer
from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities.typing import LambdaContext
from typing_extensions import Concatenate, ParamSpec

from dam_renditions.lambda_error_handler import (
    LambdaError,
    MalformedInputError,
    format_error_response,
)

# Type variables for better type hinting
P = ParamSpec("P")
R = TypeVar("R")

# Initialize core utilities with service name from environment variable
service_name = os.getenv("SERVICE_NAME", "dam-renditions")
namespace = os.getenv("POWERTOOLS_METRICS_NAMESPACE", "DamRenditions")

# Validate and set log level
valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
if log_level not in valid_log_levels:
    log_level = "WARNING"

logger = Logger(service=service_name, level=log_level)
tracer = Tracer(service=service_name)
metrics = Metrics(namespace=namespace, service=service_name)

CORS_HEADERS = {
    "Access-Control-Allow-Headers": "Content-Type,X-Amz-Date,Authorization,X-Api-Key",
    "Access-Control-Allow-Methods": "OPTIONS,POST,GET",
}


def handle_error(error: Exception, context: Optional[LambdaContext] = None) -> Dict[str, Any]:
    """
    Standardized error handling for Lambda functions

    Args:
        error: The exception that was raised
        context: Lambda context of the failing invocation

    Returns:
        Dict containing standardized error response
    """
    request_id = getattr(context, "aws_request_id", "unknown")

    if isinstance(error, MalformedInputError):
        logger.warning(f"Rejected malformed input: {error.message}")
        return format_error_response(error, status_code=400, request_id=request_id)

    error_type = error.__class__.__name__
    if isinstance(error, LambdaError):
        logger.error(
            f"Error occurred: {error_type}",
            extra={"error_message": error.message, "details": error.details},
        )
    else:
        logger.exception(f"Error occurred: {error_type}")

    return format_error_response(
        error,
        status_code=500,
        request_id=request_id,
        correlation_id=logger.get_correlation_id() or "",
    )


def _truncate_lists(obj, max_items=15):
    """
    Recursively walk obj and shorten long lists so large result payloads
    stay readable in the logs.
    """
    if isinstance(obj, dict):
        return {k: _truncate_lists(v, max_items) for k, v in obj.items()}
    if isinstance(obj, list):
        if len(obj) > max_items:
            return [_truncate_lists(x, max_items) for x in obj[:max_items]] + [
                f"... (+{len(obj) - max_items} more)"
            ]
        return [_truncate_lists(x, max_items) for x in obj]
    return obj


def lambda_handler_decorator(
    cors: bool = True, correlation_id_path: Optional[str] = None
) -> Callable:
    """
    Common decorator for Lambda handlers with tracing, metrics, and logging

    Args:
        cors: Whether to add CORS headers to response
        correlation_id_path: JMESPath of the correlation id inside the event

    Returns:
        Decorator function
    """

    def decorator(
        func: Callable[Concatenate[Dict[str, Any], LambdaContext, P], R],
    ) -> Callable[Concatenate[Dict[str, Any], LambdaContext, P], R]:
        @wraps(func)
        @tracer.capture_lambda_handler
        @logger.inject_lambda_context(correlation_id_path=correlation_id_path)
        @metrics.log_metrics(capture_cold_start_metric=True)
        def wrapper(
            event: Dict[str, Any],
            context: LambdaContext,
            *args: P.args,
            **kwargs: P.kwargs,
        ) -> R:
            start_time = time.time()

            try:
                metrics.add_dimension(
                    name="Environment", value=os.getenv("ENVIRONMENT", "undefined")
                )

                logger.info(
                    "Lambda invocation started",
                    extra={
                        "function_name": context.function_name,
                        "function_memory": context.memory_limit_in_mb,
                        "function_request_id": context.aws_request_id,
                    },
                )

                response = func(event, context, *args, **kwargs)

                execution_time = (time.time() - start_time) * 1000
                metrics.add_metric(
                    name="ExecutionTime",
                    unit=MetricUnit.Milliseconds,
                    value=execution_time,
                )

            except Exception as error:
                metrics.add_metric(name="Errors", unit=MetricUnit.Count, value=1)
                response = handle_error(error, context)

            finally:
                logger.info(
                    "Lambda invocation completed",
                    extra={"execution_time_ms": (time.time() - start_time) * 1000},
                )

            if cors and isinstance(response, dict) and "statusCode" in response:
                response.setdefault("headers", {})
                response["headers"].update(
                    {
                        "Access-Control-Allow-Origin": os.getenv(
                            "CORS_ALLOW_ORIGIN", "*"
                        ),
                        **CORS_HEADERS,
                    }
                )

            return cast(R, response)

        return wrapper

    return decorator


def add_business_metric(
    name: str,
    value: Union[float, int] = 1,
    unit: MetricUnit = MetricUnit.Count,
) -> None:
    """Add a business metric to the current invocation's metric set."""
    metrics.add_metric(name=name, unit=unit, value=value)
