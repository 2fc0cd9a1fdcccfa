"""File request/response schemas."""
from datetime import datetime
from typing import Literal, Optional

from pydantic import Field

from filehub.models.file_record import FileRecord
from filehub.schemas.base import CamelModel, CamelORMModel


class FileResponse(CamelORMModel):
    id: int
    content_id: str
    filename: str
    mime_type: str
    size_bytes: int
    owner_id: Optional[str] = None
    visibility: Literal["public", "private"]
    tags: list[str] = []
    created_at: datetime

    @classmethod
    def from_record(cls, record: FileRecord) -> "FileResponse":
        return cls(
            id=record.id,
            content_id=record.content_id,
            filename=record.filename,
            mime_type=record.mime_type,
            size_bytes=record.size_bytes,
            owner_id=record.owner_id,
            visibility=record.visibility,
            tags=record.tag_list,
            created_at=record.created_at,
        )


class FileListResponse(CamelModel):
    files: list[FileResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class TagsUpdate(CamelModel):
    tags: list[str] = Field(default_factory=list)
