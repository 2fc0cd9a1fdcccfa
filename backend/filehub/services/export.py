"""Zip export of public files.

Public records are routed into a fixed folder layout by extension (and, for
.js, by tag). Each blob is read whole before its deflated entry is opened, so
at most one file is buffered at a time and a failed read never leaves a partial
entry behind. The archive is produced as an async iterator of byte chunks so a
large export never sits in memory as one buffer.

Layout:
    json/               .json .txt .m3u
    spider/js_<marker>/ .js tagged with the marker tag
    spider/js/          other .js
    spider/php/         .php
    spider/py/          .py
    errors/             one note per file whose bytes could not be read

Files whose name starts with "_" and files with any other extension are left
out.
"""
import logging
import posixpath
import zipfile
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator, Callable, Optional, Sequence

from filehub.models.file_record import FileRecord
from filehub.services.catalog import MetadataCatalog
from filehub.services.content_store import ContentStore
from filehub.services.errors import NotFound, StorageIOFailure
from filehub.services.ingest import file_extension

logger = logging.getLogger(__name__)

RecordPredicate = Callable[[FileRecord], bool]

HIDDEN_PREFIX = "_"
ERRORS_DIR = "errors/"

_STATIC_ROUTES = {
    ".json": "json/",
    ".txt": "json/",
    ".m3u": "json/",
    ".php": "spider/php/",
    ".py": "spider/py/",
}

# zip timestamps cannot predate 1980
_ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)


def safe_basename(filename: str) -> str:
    name = posixpath.basename((filename or "").replace("\\", "/"))
    return name or "unnamed"


def route(record: FileRecord, marker_tag: Optional[str]) -> Optional[str]:
    """Archive path for `record`, or None when it is excluded."""
    if record.filename.startswith(HIDDEN_PREFIX):
        return None

    ext = file_extension(record.filename)
    if ext == ".js":
        if marker_tag and marker_tag in record.tag_list:
            prefix = f"spider/js_{marker_tag}/"
        else:
            prefix = "spider/js/"
    else:
        prefix = _STATIC_ROUTES.get(ext)
        if prefix is None:
            return None
    return prefix + safe_basename(record.filename)


def _zip_timestamp(value: Optional[datetime]) -> tuple:
    if value is None:
        return _ZIP_EPOCH
    stamp = value.timetuple()[:6]
    return max(stamp, _ZIP_EPOCH)


@dataclass
class ExportReport:
    included: list[str] = field(default_factory=list)
    excluded: list[int] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class _ArchiveSink:
    """Write-only, non-seekable buffer that zipfile writes into.

    zipfile falls back to streaming mode (data descriptors) when the target
    has no tell()/seek(), so bytes can be drained as soon as they are written.
    """

    def __init__(self):
        self._chunks: list[bytes] = []

    def write(self, data) -> int:
        self._chunks.append(bytes(data))
        return len(data)

    def flush(self) -> None:
        pass

    def drain(self) -> bytes:
        data = b"".join(self._chunks)
        self._chunks.clear()
        return data


class ExportPackager:
    """Builds the routed zip archive of public files."""

    def __init__(self, store: ContentStore, catalog: MetadataCatalog, marker_tag: Optional[str] = None):
        self.store = store
        self.catalog = catalog
        self.marker_tag = marker_tag
        self.report = ExportReport()

    async def export_public(self, predicate: Optional[RecordPredicate] = None) -> AsyncIterator[bytes]:
        """Query public records now and return the archive byte stream.

        The catalog is read once up front; packaging afterwards only touches
        the content store, so no database session is held while streaming.
        """
        records = await self.catalog.list_public()
        if predicate is not None:
            records = [r for r in records if predicate(r)]
        return self.pack(records)

    async def pack(self, records: Sequence[FileRecord]) -> AsyncIterator[bytes]:
        self.report = ExportReport()
        sink = _ArchiveSink()
        used: set[str] = set()

        with zipfile.ZipFile(sink, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
            for record in records:
                arcname = route(record, self.marker_tag)
                if arcname is None:
                    self.report.excluded.append(record.id)
                    continue
                arcname = self._unique_name(arcname, record, used)

                info = zipfile.ZipInfo(arcname, date_time=_zip_timestamp(record.created_at))
                info.compress_type = zipfile.ZIP_DEFLATED
                try:
                    # Read the whole blob before the entry is opened, so a read
                    # failure never leaves a truncated entry under the routed path
                    content = await self.store.read(record.content_id)
                except (NotFound, StorageIOFailure) as e:
                    logger.warning(f"Export: could not read record {record.id} ({record.filename!r}): {e}")
                    used.discard(arcname)
                    error_name = self._unique_name(
                        f"{ERRORS_DIR}{safe_basename(record.filename)}.txt", record, used
                    )
                    zf.writestr(
                        error_name,
                        f"Failed to export {record.filename} "
                        f"(record {record.id}, content {record.content_id}): {e}\n",
                    )
                    self.report.failed.append(arcname)
                else:
                    info.file_size = len(content)
                    step = self.store.chunk_size
                    with zf.open(info, mode="w") as entry:
                        for start in range(0, len(content), step):
                            entry.write(content[start:start + step])
                            data = sink.drain()
                            if data:
                                yield data
                    del content
                    self.report.included.append(arcname)

                data = sink.drain()
                if data:
                    yield data

        logger.info(
            f"Export finished: {len(self.report.included)} included, "
            f"{len(self.report.excluded)} excluded, {len(self.report.failed)} failed"
        )
        data = sink.drain()
        if data:
            yield data

    @staticmethod
    def _unique_name(arcname: str, record: FileRecord, used: set[str]) -> str:
        """Disambiguate colliding paths with a short content id suffix."""
        candidate = arcname
        if candidate in used:
            stem, ext = posixpath.splitext(arcname)
            candidate = f"{stem}_{record.content_id[:8]}{ext}"
            n = 2
            while candidate in used:
                candidate = f"{stem}_{record.content_id[:8]}_{n}{ext}"
                n += 1
        used.add(candidate)
        return candidate
