"""
Lambda Error Handler

Error types shared by the rendition functions and the helpers that turn
remote responses into them:
1. Custom exception classes for the different failure scopes
2. Response status checking for DAM and queue service replies
3. Standardised error responses for the Lambda handlers

Usage:
    from dam_renditions.lambda_error_handler import ApiError, handle_api_response

    response = session.get(url)
    data = handle_api_response(response, "DAM", "media")
"""

import json
import os
from typing import Any, Dict, List, Optional

from aws_lambda_powertools import Logger

logger = Logger(service=os.getenv("SERVICE_NAME", "dam-renditions"))

# ─────────────────────────────────────────────────────────────────────────────
# Custom Exception Classes
# ─────────────────────────────────────────────────────────────────────────────


class LambdaError(Exception):
    """Base class for all Lambda errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ApiError(LambdaError):
    """Error for handling non-successful API responses"""

    def __init__(
        self,
        message: str,
        status_code: int,
        api_name: str,
        endpoint: str,
        response: Any,
    ):
        details = {
            "status_code": status_code,
            "api_name": api_name,
            "endpoint": endpoint,
            "response": response,
        }
        super().__init__(message, details)
        self.status_code = status_code
        self.api_name = api_name
        self.endpoint = endpoint
        self.response = response


class MalformedInputError(LambdaError):
    """Inbound body that cannot be parsed into something we can act on"""


class ConfigurationError(LambdaError):
    """Error for handling configuration issues"""

    def __init__(self, message: str, missing_configs: Optional[List[str]] = None):
        missing_configs = missing_configs or []
        super().__init__(message, {"missing_configs": missing_configs})
        self.missing_configs = missing_configs


class QueueError(LambdaError):
    """Durable queue transport failure"""


class UploadError(LambdaError):
    """Chunked upload of one rendition was abandoned"""


class FinalizeError(LambdaError):
    """Finalize or save of one upload did not complete"""


# ─────────────────────────────────────────────────────────────────────────────
# Response Status Checking
# ─────────────────────────────────────────────────────────────────────────────


def decode_response_body(response: Any) -> Any:
    """Return the JSON body of a requests response, or its text when not JSON."""
    try:
        return response.json()
    except ValueError:
        return {"text": response.text}


def handle_api_response(
    response: Any, api_name: str, endpoint: str = ""
) -> Any:
    """
    Check an API response status code and return the parsed JSON body.

    Args:
        response: The requests.Response to check
        api_name: The name of the API (used in logs and errors)
        endpoint: The API endpoint that was called

    Returns:
        The decoded response body

    Raises:
        ApiError: If the response status code is not 2xx
    """
    status_code = response.status_code
    response_data = decode_response_body(response)

    if not 200 <= status_code < 300:
        error_msg = "Unknown error"
        if isinstance(response_data, dict):
            error_msg = (
                response_data.get("message")
                or response_data.get("error")
                or response_data.get("errorMessage")
                or response_data.get("text")
                or error_msg
            )

        logger.error(
            f"{api_name} API call to {endpoint} failed",
            extra={
                "status_code": status_code,
                "api_name": api_name,
                "endpoint": endpoint,
                "response": response_data,
            },
        )

        raise ApiError(
            message=f"{api_name} API call failed: {error_msg} (status: {status_code})",
            status_code=status_code,
            api_name=api_name,
            endpoint=endpoint,
            response=response_data,
        )

    return response_data


# ─────────────────────────────────────────────────────────────────────────────
# Utility Functions
# ─────────────────────────────────────────────────────────────────────────────


def format_error_response(
    error: Exception,
    status_code: int = 500,
    request_id: str = "",
    correlation_id: str = "",
) -> Dict[str, Any]:
    """
    Format an error into a standardized API response.

    Malformed input is answered with a plain-text body, everything else
    with a JSON document describing the error.
    """
    if isinstance(error, MalformedInputError):
        return {
            "statusCode": 400,
            "headers": {"Content-Type": "text/plain"},
            "body": error.message,
        }

    error_type = error.__class__.__name__
    details = error.details if isinstance(error, LambdaError) else {}

    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(
            {
                "error": error_type,
                "message": str(error),
                "details": details,
                "requestId": request_id,
                "correlationId": correlation_id or logger.get_correlation_id(),
            },
            default=str,
        ),
    }
