import os
from enum import Enum
from typing import Dict, Mapping, Optional, Tuple

import boto3
from botocore.exceptions import ClientError
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from dam_renditions.lambda_error_handler import ConfigurationError
from dam_renditions.lambda_utils import logger

MIB = 1024 * 1024

# Presets recognised by the DAM transform service, in processing order.
DEFAULT_PRESETS: Tuple[str, ...] = ("crop300", "square600", "banner1200")


class TransformStrategy(str, Enum):
    AUTO = "auto"
    TEMPLATE = "template"
    MAPPING = "mapping"


class UploadMode(str, Enum):
    DEFERRED = "deferred"
    SYNC = "sync"


# Environment variable -> DamConfig field
ENV_FIELDS: Dict[str, str] = {
    "DAM_BASE_URL": "dam_base_url",
    "DAM_TOKEN": "dam_token",
    "DAM_TOKEN_SECRET_ARN": "dam_token_secret_arn",
    "DAM_UPLOAD_ENDPOINT": "upload_endpoint",
    "RENDITION_PRESETS": "presets",
    "TRANSFORM_STRATEGY": "transform_strategy",
    "UPLOAD_CHUNK_SIZE": "chunk_size",
    "METADATA_MAX_ATTEMPTS": "metadata_max_attempts",
    "METADATA_RETRY_DELAY": "metadata_retry_delay",
    "FINALIZE_MAX_ATTEMPTS": "finalize_max_attempts",
    "FINALIZE_RETRY_DELAY": "finalize_retry_delay",
    "POST_UPLOAD_SETTLE_DELAY": "settle_delay",
    "DERIVATIVE_SEPARATOR": "derivative_separator",
    "UPLOAD_MODE": "upload_mode",
    "UPSTASH_REDIS_URL": "queue_url",
    "UPSTASH_REDIS_TOKEN": "queue_token",
    "PENDING_UPLOADS_KEY": "queue_key",
    "QUEUE_MIN_AGE_SECONDS": "queue_min_age",
    "HTTP_TIMEOUT_SECONDS": "request_timeout",
}

REQUIRED_ENV_VARS = ("DAM_BASE_URL", "DAM_UPLOAD_ENDPOINT")


class DamConfig(BaseModel):
    """Settings shared by every component of the rendition pipeline."""

    dam_base_url: str
    dam_token: str = ""
    dam_token_secret_arn: Optional[str] = None
    upload_endpoint: str

    presets: Tuple[str, ...] = DEFAULT_PRESETS
    transform_strategy: TransformStrategy = TransformStrategy.AUTO

    chunk_size: int = Field(default=5 * MIB, gt=0)
    metadata_max_attempts: int = Field(default=5, ge=1)
    metadata_retry_delay: float = Field(default=2.0, ge=0)
    finalize_max_attempts: int = Field(default=10, ge=1)
    finalize_retry_delay: float = Field(default=3.0, ge=0)
    settle_delay: float = Field(default=5.0, ge=0)
    derivative_separator: str = Field(default="__", min_length=1)
    upload_mode: UploadMode = UploadMode.DEFERRED

    queue_url: Optional[str] = None
    queue_token: Optional[str] = None
    queue_key: str = "pending-uploads"
    queue_min_age: float = Field(default=180.0, ge=0)

    request_timeout: float = Field(default=30.0, gt=0)

    @field_validator("dam_base_url", "upload_endpoint", "queue_url")
    @classmethod
    def strip_trailing_slash(cls, v):
        if v is None:
            return v
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"URL must start with http:// or https://: {v!r}")
        return v

    @field_validator("presets", mode="before")
    @classmethod
    def split_presets(cls, v):
        if isinstance(v, str):
            v = v.split(",")
        presets = []
        for name in v:
            name = name.strip()
            if name and name not in presets:
                presets.append(name)
        if not presets:
            raise ValueError("At least one rendition preset is required")
        return tuple(presets)

    @model_validator(mode="after")
    def check_credentials(self):
        if not self.dam_token and not self.dam_token_secret_arn:
            raise ValueError("Either DAM_TOKEN or DAM_TOKEN_SECRET_ARN must be set")
        return self

    @property
    def queue_configured(self) -> bool:
        return bool(self.queue_url and self.queue_token)

    def resolve_token(self) -> str:
        """Return the DAM Authorization value, reading Secrets Manager when needed."""
        if self.dam_token:
            return self.dam_token
        self.dam_token = retrieve_secret(self.dam_token_secret_arn)
        return self.dam_token

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "DamConfig":
        environ = os.environ if environ is None else environ

        missing = [var for var in REQUIRED_ENV_VARS if not environ.get(var)]
        if missing:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing)}",
                missing_configs=missing,
            )

        values = {
            field: environ[var]
            for var, field in ENV_FIELDS.items()
            if environ.get(var) not in (None, "")
        }
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e


def retrieve_secret(secret_arn: str) -> str:
    logger.info(f"Retrieving DAM token for arn: {secret_arn}")
    try:
        client = boto3.client("secretsmanager")
        response = client.get_secret_value(SecretId=secret_arn)
        return response["SecretString"]
    except ClientError as e:
        logger.error(f"Error retrieving secret: {e}")
        raise ConfigurationError(
            f"Unable to read DAM token from {secret_arn}",
            missing_configs=["DAM_TOKEN"],
        ) from e
