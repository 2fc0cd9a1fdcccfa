"""Metadata catalog of file records.

Thin data-access layer over the `files` table. Authorization decisions live in
filehub.services.access; the only policy applied here is the listing
visibility filter, which must run in SQL so counts and pages agree.
"""
import logging
import math
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy import delete, desc, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from filehub.models.file_record import FileRecord, PUBLIC, VISIBILITIES, join_tags
from filehub.services.access import Principal, is_authenticated, is_super_admin
from filehub.services.errors import NotFound

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


@dataclass
class ListPage:
    records: list[FileRecord]
    total: int
    total_pages: int
    page: int
    page_size: int


class MetadataCatalog:
    """CRUD and listing for FileRecord rows on one AsyncSession."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def insert(self, record: FileRecord) -> FileRecord:
        self.db.add(record)
        await self.db.commit()
        await self.db.refresh(record)
        return record

    async def get(self, record_id: int) -> FileRecord:
        record = await self.find(record_id)
        if record is None:
            raise NotFound("File not found")
        return record

    async def find(self, record_id: int) -> Optional[FileRecord]:
        # Skip the identity map so rows changed or deleted by other sessions are seen
        return await self.db.get(FileRecord, record_id, populate_existing=True)

    async def find_by_content_id(self, content_id: str) -> list[FileRecord]:
        result = await self.db.execute(
            select(FileRecord)
            .where(FileRecord.content_id == content_id)
            .order_by(FileRecord.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def count_by_content_id(self, content_id: str) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(FileRecord).where(FileRecord.content_id == content_id)
        )
        return result.scalar_one()

    async def update_visibility(self, record_id: int, visibility: str) -> FileRecord:
        if visibility not in VISIBILITIES:
            raise ValueError(f"Unknown visibility: {visibility}")
        return await self._update(record_id, visibility=visibility)

    async def update_tags(self, record_id: int, tags: Iterable[str]) -> FileRecord:
        # Keep first-seen order, drop duplicates
        unique = list(dict.fromkeys(tags))
        return await self._update(record_id, tags=join_tags(unique))

    async def _update(self, record_id: int, **values) -> FileRecord:
        result = await self.db.execute(
            update(FileRecord)
            .where(FileRecord.id == record_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.db.rollback()
            raise NotFound("File not found")
        await self.db.commit()
        return await self.get(record_id)

    async def delete(self, record_id: int) -> None:
        result = await self.db.execute(
            delete(FileRecord).where(FileRecord.id == record_id)
        )
        if result.rowcount == 0:
            await self.db.rollback()
            raise NotFound("File not found")
        await self.db.commit()

    async def list_visible(
        self,
        principal: Principal,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
        search: str = "",
        tag: str = "",
    ) -> ListPage:
        """List records visible to `principal`, newest first.

        Visible means public, owned by the principal, or anything at all for
        a super_admin. `search` matches filename substrings case-insensitively;
        `tag` matches a substring of the stored tag string.
        """
        page = max(1, page or 1)
        if not page_size or page_size < 1:
            page_size = DEFAULT_PAGE_SIZE
        page_size = min(page_size, MAX_PAGE_SIZE)

        conditions = []
        if not is_super_admin(principal):
            if is_authenticated(principal):
                conditions.append(or_(
                    FileRecord.visibility == PUBLIC,
                    FileRecord.owner_id == principal.id,
                ))
            else:
                conditions.append(FileRecord.visibility == PUBLIC)
        if search:
            conditions.append(FileRecord.filename.icontains(search, autoescape=True))
        if tag:
            conditions.append(FileRecord.tags.contains(tag, autoescape=True))

        count_result = await self.db.execute(
            select(func.count()).select_from(FileRecord).where(*conditions)
        )
        total = count_result.scalar_one()

        result = await self.db.execute(
            select(FileRecord)
            .where(*conditions)
            .order_by(desc(FileRecord.created_at), desc(FileRecord.id))
            .limit(page_size)
            .offset((page - 1) * page_size)
            .execution_options(populate_existing=True)
        )
        records = list(result.scalars().all())

        return ListPage(
            records=records,
            total=total,
            total_pages=math.ceil(total / page_size),
            page=page,
            page_size=page_size,
        )

    async def list_public(self) -> list[FileRecord]:
        """Every public record, newest first, unpaginated. Used by export."""
        result = await self.db.execute(
            select(FileRecord)
            .where(FileRecord.visibility == PUBLIC)
            .order_by(desc(FileRecord.created_at), desc(FileRecord.id))
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())
