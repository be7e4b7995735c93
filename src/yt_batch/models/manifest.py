"""Manifest (CSV) row model."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class PrivacyStatus(str, Enum):
    """Visibility of an uploaded video."""

    PUBLIC = "public"
    PRIVATE = "private"
    UNLISTED = "unlisted"


class ManifestRow(BaseModel):
    """One row of a job manifest."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    youtube_title: Optional[str] = None
    youtube_description: Optional[str] = None
    thumbnail_path: Optional[str] = None
    path: Optional[str] = None
    schedule_time: Optional[str] = Field(default=None, alias="scheduleTime")
    privacy_status: Optional[str] = Field(default=None, alias="privacyStatus")

    def missing_fields(self) -> list[str]:
        """Required fields that are absent or blank."""
        missing = []
        if not self.youtube_title or not self.youtube_title.strip():
            missing.append("youtube_title")
        if not self.youtube_description or not self.youtube_description.strip():
            missing.append("youtube_description")
        return missing
