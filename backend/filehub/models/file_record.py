"""FileRecord model - file metadata (bytes live in the content store)."""
from typing import Optional
from sqlalchemy import String, BigInteger, Text, Index
from sqlalchemy.orm import Mapped, mapped_column
from filehub.models.base import Base, TimestampMixin

PUBLIC = "public"
PRIVATE = "private"
VISIBILITIES = (PUBLIC, PRIVATE)

TAG_SEPARATOR = ","


def join_tags(tags) -> str:
    return TAG_SEPARATOR.join(tags)


def split_tags(raw: Optional[str]) -> list[str]:
    if not raw:
        return []
    return [t for t in raw.split(TAG_SEPARATOR) if t]


class FileRecord(Base, TimestampMixin):
    __tablename__ = "files"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    content_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    filename: Mapped[str] = mapped_column(String(500), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(255), default="application/octet-stream")
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    owner_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    visibility: Mapped[str] = mapped_column(String(10), default=PUBLIC, nullable=False)
    tags: Mapped[str] = mapped_column(Text, default="", nullable=False)

    __table_args__ = (
        Index("idx_files_created_at", "created_at"),
    )

    @property
    def tag_list(self) -> list[str]:
        return split_tags(self.tags)

    @property
    def is_public(self) -> bool:
        return self.visibility == PUBLIC
