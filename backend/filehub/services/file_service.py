"""File operations exposed to the API layer.

Every operation loads the current policy, runs the access checks and only then
touches the catalog or the content store.
"""
import logging
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from filehub.models.file_record import FileRecord, PRIVATE, PUBLIC
from filehub.services import access
from filehub.services.access import Operation, Principal
from filehub.services.catalog import ListPage, MetadataCatalog
from filehub.services.content_store import ContentStore
from filehub.services.errors import Forbidden, NotFound
from filehub.services.export import ExportPackager, RecordPredicate
from filehub.services.ingest import IngestPipeline
from filehub.services.policy_config import PolicyConfig, load_policy

logger = logging.getLogger(__name__)


@dataclass
class Download:
    record: FileRecord
    stream: AsyncIterator[bytes]


class FileService:
    def __init__(self, db: AsyncSession, store: ContentStore):
        self.db = db
        self.store = store
        self.catalog = MetadataCatalog(db)

    async def policy(self) -> PolicyConfig:
        return await load_policy(self.db)

    async def upload(
        self,
        principal: Principal,
        stream: AsyncIterable[bytes],
        filename: str,
        mime_type: Optional[str],
        is_public: bool = True,
    ) -> FileRecord:
        config = await self.policy()
        visibility = PUBLIC if is_public else PRIVATE
        access.authorize_upload(principal, config, visibility)

        pipeline = IngestPipeline(self.store, self.catalog)
        return await pipeline.ingest(
            stream,
            filename=filename,
            mime_type=mime_type,
            max_bytes=config.max_file_size,
            allowed_extensions=config.allowed_extensions,
            owner_id=principal.id if access.is_authenticated(principal) else None,
            visibility=visibility,
        )

    async def list_files(
        self,
        principal: Principal,
        page: int = 1,
        page_size: int = 10,
        search: str = "",
        tag: str = "",
    ) -> ListPage:
        return await self.catalog.list_visible(principal, page, page_size, search, tag)

    async def get(self, principal: Principal, record_id: int) -> FileRecord:
        config = await self.policy()
        record = await self.catalog.find(record_id)
        access.authorize(principal, record, Operation.READ, config)
        return record

    async def download(self, principal: Principal, content_id: str, preview: bool = False) -> Download:
        """Open the bytes for `content_id` if any record carrying it is visible.

        Several records may share one content id; the first visible one
        supplies the filename and mime type.
        """
        config = await self.policy()
        operation = Operation.PREVIEW if preview else Operation.DOWNLOAD
        access.check_anonymous_gate(principal, operation, config)

        records = await self.catalog.find_by_content_id(content_id)
        if not records:
            raise NotFound("File not found")

        visible = next((r for r in records if access.can_see(principal, r)), None)
        if visible is None:
            logger.info(f"Denied {operation.value} of {content_id} to principal {principal.id!r}")
            raise Forbidden("Unauthorized access to private file")
        access.authorize(principal, visible, operation, config)

        stream = await self.store.get(content_id)
        return Download(record=visible, stream=stream)

    async def toggle_visibility(self, principal: Principal, record_id: int) -> FileRecord:
        config = await self.policy()
        record = await self.catalog.find(record_id)
        access.authorize(principal, record, Operation.TOGGLE_VISIBILITY, config)

        new_visibility = PRIVATE if record.is_public else PUBLIC
        if new_visibility == PRIVATE and record.owner_id is None:
            # Anonymous uploads have no owner who could still read them
            raise Forbidden("Files without an owner must stay public")
        updated = await self.catalog.update_visibility(record_id, new_visibility)
        logger.info(f"Record {record_id} visibility -> {new_visibility} by {principal.id!r}")
        return updated

    async def retag(self, principal: Principal, record_id: int, tags: Iterable[str]) -> FileRecord:
        tags = [t.strip() for t in tags if t and t.strip()]
        config = await self.policy()
        record = await self.catalog.find(record_id)
        access.authorize(principal, record, Operation.RETAG, config, proposed_tags=tags)

        updated = await self.catalog.update_tags(record_id, tags)
        logger.info(f"Record {record_id} tags -> {tags} by {principal.id!r}")
        return updated

    async def delete(self, principal: Principal, record_id: int) -> None:
        config = await self.policy()
        record = await self.catalog.find(record_id)
        access.authorize(principal, record, Operation.DELETE, config)

        content_id = record.content_id
        await self.catalog.delete(record_id)
        logger.info(f"Record {record_id} deleted by {principal.id!r}")

        remaining = await self.catalog.count_by_content_id(content_id)
        await self.store.release(content_id, remaining)

    async def export(
        self,
        principal: Principal,
        predicate: Optional[RecordPredicate] = None,
    ) -> AsyncIterator[bytes]:
        """Zip of every routed public file; anonymous callers need anonymous download."""
        config = await self.policy()
        access.check_anonymous_gate(principal, Operation.DOWNLOAD, config)
        packager = ExportPackager(self.store, self.catalog, marker_tag=config.export_marker_tag)
        return await packager.export_public(predicate)
