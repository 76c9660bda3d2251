"""
Data model for the rendition pipeline.

Wire-facing records (asset metadata, upload descriptors, queue entries)
are pydantic models using the DAM's own field names; purely in-memory
values are dataclasses.
"""

import enum
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class AssetMetadata(BaseModel):
    """Media record as returned by the DAM metadata endpoint."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str = ""
    extension: List[str] = Field(default_factory=list)
    brandId: str = ""
    transformBaseUrl: str = ""
    thumbnails: Dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def lift_transform_base_url(cls, data: Any) -> Any:
        # The DAM nests the transform base inside the thumbnails block.
        if isinstance(data, dict) and not data.get("transformBaseUrl"):
            thumbnails = data.get("thumbnails")
            if isinstance(thumbnails, dict) and thumbnails.get("transformBaseUrl"):
                data = {**data, "transformBaseUrl": thumbnails["transformBaseUrl"]}
        return data

    @field_validator("extension", mode="before")
    @classmethod
    def normalize_extension(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [v] if v else []
        return [str(e) for e in v if e]

    @field_validator("thumbnails", mode="before")
    @classmethod
    def keep_string_thumbnails(cls, v):
        if not isinstance(v, dict):
            return {}
        return {
            k: u
            for k, u in v.items()
            if k != "transformBaseUrl" and isinstance(u, str) and u
        }

    @field_validator("brandId", "transformBaseUrl", "name", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return "" if v is None else v

    @property
    def primary_extension(self) -> str:
        if self.extension:
            return self.extension[0].lstrip(".").lower()
        if "." in self.name:
            return self.name.rsplit(".", 1)[1].lower()
        return "jpg"

    @property
    def stem(self) -> str:
        name = self.name or self.id
        suffix = f".{self.primary_extension}"
        if name.lower().endswith(suffix):
            return name[: -len(suffix)]
        return name


@dataclass(frozen=True)
class RenditionRequest:
    preset: str
    address: str


@dataclass
class RenditionBytes:
    preset: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


class UploadHandle(BaseModel):
    """Identifiers returned by the initialize phase, needed to finalize."""

    uploadId: str
    targetid: str
    s3_filename: str
    totalChunks: int = Field(default=1, ge=1)

    def chunk_key(self, index: int) -> str:
        return f"{self.s3_filename}/p{index}"

    @property
    def first_chunk_key(self) -> str:
        return self.chunk_key(1)


class UploadDescriptor(UploadHandle):
    """An upload handle plus what is needed to save it as a new asset."""

    model_config = ConfigDict(extra="ignore")

    filename: str
    presetName: str = ""
    brandId: str = ""

    @field_validator("brandId", "presetName", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return "" if v is None else v

    @field_validator("totalChunks", mode="before")
    @classmethod
    def default_chunks(cls, v):
        # Older descriptors were written without a chunk count.
        return 1 if v in (None, "", 0) else v

    @property
    def handle(self) -> UploadHandle:
        return UploadHandle(
            uploadId=self.uploadId,
            targetid=self.targetid,
            s3_filename=self.s3_filename,
            totalChunks=self.totalChunks,
        )


class RecordState(str, enum.Enum):
    """Lifecycle of a queued upload. Only ENQUEUED records are ever stored."""

    ENQUEUED = "ENQUEUED"
    FINALIZING = "FINALIZING"
    SAVED = "SAVED"


class InvalidTransition(Exception):
    pass


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PendingUploadRecord(UploadDescriptor):
    """Durable queue entry awaiting finalize + save."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    createdAt: datetime = Field(default_factory=utc_now)
    state: RecordState = Field(default=RecordState.ENQUEUED, exclude=True)

    @field_validator("createdAt")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)

    @classmethod
    def from_handle(
        cls,
        handle: UploadHandle,
        filename: str,
        preset: str,
        brand_id: str,
        created_at: Optional[datetime] = None,
    ) -> "PendingUploadRecord":
        values = dict(
            uploadId=handle.uploadId,
            targetid=handle.targetid,
            s3_filename=handle.s3_filename,
            totalChunks=handle.totalChunks,
            filename=filename,
            presetName=preset,
            brandId=brand_id,
        )
        if created_at is not None:
            values["createdAt"] = created_at
        return cls(**values)

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "PendingUploadRecord":
        """Rebuild a stored record; ``id`` and ``createdAt`` are never defaulted."""
        missing = [name for name in ("id", "createdAt") if not data.get(name)]
        if missing:
            raise ValueError(f"Stored record is missing {', '.join(missing)}")
        return cls.model_validate(data)

    def age(self, now: datetime) -> float:
        return (now - self.createdAt).total_seconds()

    def is_due(self, now: datetime, min_age: float) -> bool:
        return self.age(now) >= min_age

    def _transition(self, expected: RecordState, target: RecordState) -> None:
        if self.state is not expected:
            raise InvalidTransition(
                f"Record {self.id} cannot move from {self.state.value} to {target.value}"
            )
        self.state = target

    def begin_finalizing(self) -> None:
        self._transition(RecordState.ENQUEUED, RecordState.FINALIZING)

    def mark_saved(self) -> None:
        self._transition(RecordState.FINALIZING, RecordState.SAVED)

    def mark_failed(self) -> None:
        self._transition(RecordState.FINALIZING, RecordState.ENQUEUED)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


@dataclass
class RenditionResult:
    preset: str
    filename: str
    status: str
    upload_id: Optional[str] = None
    asset_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status in ("enqueued", "finalized")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "presetName": self.preset,
            "filename": self.filename,
            "status": self.status,
            "success": self.success,
            "uploadId": self.upload_id,
            "assetId": self.asset_id,
            "error": self.error,
        }


@dataclass
class FinalizeResult:
    presetName: str
    filename: str
    success: bool
    importId: Optional[str] = None
    assetId: Optional[str] = None
    error: Optional[str] = None
    id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "presetName": self.presetName,
            "filename": self.filename,
            "success": self.success,
            "importId": self.importId,
            "assetId": self.assetId,
            "error": self.error,
        }
        if self.id:
            out["id"] = self.id
        return out
