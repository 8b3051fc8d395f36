from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .domain import LedgerRecord


class AssemblyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    images: List[str] = Field(default_factory=list, validation_alias="images")
    audio: Optional[str] = Field(default=None, validation_alias="audio")
    duration_per_image: Optional[float] = Field(default=None, gt=0, validation_alias="durationPerImage")


class AssemblyResponse(BaseModel):
    id: str
    output: str
    url: str


class UploadRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    video_url: Optional[str] = Field(default=None, validation_alias="videoUrl")
    access_token: Optional[str] = Field(default=None, validation_alias="accessToken")
    title: str = Field(default="Short Video", validation_alias="title")
    description: str = Field(default="", validation_alias="description")
    tags: List[str] = Field(default_factory=list, validation_alias="tags")
    privacy_status: Optional[str] = Field(default=None, validation_alias="privacyStatus")

    @field_validator("tags", mode="before")
    @classmethod
    def split_tags(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value


class UploadResponse(BaseModel):
    success: bool = True
    result: Any


class CleanupResponse(BaseModel):
    removed: int


class DuplicateCheckResponse(BaseModel):
    exists: bool
    record: Optional[LedgerRecord] = None


class RecordRequest(BaseModel):
    key: Optional[str] = None
    title: Optional[str] = None
    url: Optional[str] = None
    platform: Optional[str] = None


class RecordResponse(BaseModel):
    success: bool = True
    record: LedgerRecord
