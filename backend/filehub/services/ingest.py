"""Streaming upload ingestion.

Takes an async stream of byte chunks and turns it into a stored blob plus a
catalog record, or into nothing at all:

1. reject disallowed extensions before touching the stream;
2. hash and buffer chunk by chunk, aborting the moment the running total
   passes the size ceiling;
3. write the blob, then insert the record. The record insert is the commit
   point, so a crash in between leaves at most an unreferenced blob, never a
   record without bytes.
"""
import logging
import os
from typing import AsyncIterable, Iterable, Optional

from filehub.models.file_record import FileRecord, PUBLIC, VISIBILITIES
from filehub.services.catalog import MetadataCatalog
from filehub.services.content_store import ContentStore
from filehub.services.errors import PayloadTooLarge, UnsupportedType

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"


def file_extension(filename: str) -> str:
    """Lowercased extension including the dot, or '' when there is none."""
    return os.path.splitext(filename or "")[1].lower()


def check_extension(filename: str, allowed_extensions: Iterable[str]) -> str:
    ext = file_extension(filename)
    allowed = {e.lower() for e in allowed_extensions}
    if ext not in allowed:
        raise UnsupportedType(
            f"File type not allowed. Allowed: {','.join(sorted(allowed))}"
        )
    return ext


class IngestPipeline:
    """Validates, hashes and commits uploads."""

    def __init__(self, store: ContentStore, catalog: MetadataCatalog):
        self.store = store
        self.catalog = catalog

    async def ingest(
        self,
        stream: AsyncIterable[bytes],
        filename: str,
        mime_type: Optional[str],
        max_bytes: Optional[int],
        allowed_extensions: Iterable[str],
        owner_id: Optional[str] = None,
        visibility: str = PUBLIC,
    ) -> FileRecord:
        """Consume `stream` and return the committed FileRecord.

        Raises:
            UnsupportedType: extension not allowed; the stream is never read.
            PayloadTooLarge: more than `max_bytes` arrived; nothing is stored.
            StorageIOFailure: the blob could not be written; no record is created.
        """
        if visibility not in VISIBILITIES:
            raise ValueError(f"Unknown visibility: {visibility}")
        check_extension(filename, allowed_extensions)

        hasher = self.store.new_hash()
        buffer = bytearray()
        total = 0
        try:
            async for chunk in stream:
                if not chunk:
                    continue
                total += len(chunk)
                if max_bytes and total > max_bytes:
                    logger.warning(
                        f"Rejected upload {filename!r}: exceeded {max_bytes} bytes"
                    )
                    raise PayloadTooLarge(f"File too large. Limit is {max_bytes} bytes")
                hasher.update(chunk)
                buffer.extend(chunk)

            content_id = hasher.hexdigest()
            result = await self.store.put(bytes(buffer), content_id=content_id)
        finally:
            # Release the upload buffer whether we finished, failed or were cancelled
            buffer.clear()

        record = FileRecord(
            content_id=result.content_id,
            filename=filename,
            mime_type=mime_type or DEFAULT_MIME_TYPE,
            size_bytes=total,
            owner_id=owner_id,
            visibility=visibility,
            tags="",
        )
        record = await self.catalog.insert(record)
        logger.info(
            f"Ingested {filename!r} as record {record.id} "
            f"(content {result.content_id}, {total} bytes, duplicate={result.is_duplicate})"
        )
        return record
