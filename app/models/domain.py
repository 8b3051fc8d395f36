from __future__ import annotations

from datetime import datetime, timezone
from typing import List

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AssemblyResult(BaseModel):
    id: str
    output_path: str
    workspace: str
    segments: int
    duration_per_image: float


class UploadMetadata(BaseModel):
    title: str = "Short Video"
    description: str = ""
    tags: List[str] = Field(default_factory=list)
    privacy_status: str = "public"

    def to_platform_payload(self) -> dict:
        return {
            "snippet": {
                "title": self.title,
                "description": self.description,
                "tags": list(self.tags),
            },
            "status": {"privacyStatus": self.privacy_status},
        }


class LedgerRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    key: str
    title: str = ""
    url: str = ""
    platform: str = "unknown"
    published_at: datetime = Field(default_factory=_utcnow, alias="publishedAt")
