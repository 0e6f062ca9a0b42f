from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FileRecord(BaseModel):
    """Metadata entry for one stored blob, serialized with camelCase keys."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    original_name: str = Field(alias="originalName")
    stored_name: str = Field(alias="storedName")
    mime_type: str = Field(alias="mimeType")
    size: int = Field(ge=0)
    uploaded_at: datetime = Field(default_factory=utc_now, alias="uploadedAt")

    @field_validator('uploaded_at')
    @classmethod
    def ensure_utc(cls, v):
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
