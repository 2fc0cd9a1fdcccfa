"""Content-addressed blob storage on the local filesystem.

Blobs are saved under a path derived from the hash of their bytes, sharded
into subfolders so no single directory grows too large:

    <root>/ab/cd/ef0123...   (depth=2, width=2)

A blob is written once and never modified. Writing identical bytes again is a
no-op that returns the same content id, which is what gives deduplication of
user uploads for free. File metadata is stored elsewhere (the catalog).
"""
import asyncio
import contextlib
import hashlib
import logging
import os
import re
import uuid
import weakref
from pathlib import Path
from typing import AsyncIterator, NamedTuple, Optional

import aiofiles
import aiofiles.os

from filehub.config import settings
from filehub.services.errors import NotFound, StorageIOFailure

logger = logging.getLogger(__name__)

_TMP_DIRNAME = ".tmp"


class PutResult(NamedTuple):
    content_id: str
    path: Path
    is_duplicate: bool


class RetentionPolicy:
    """Decides whether a blob may be reclaimed once catalog references drop.

    Subclass and pass to ContentStore to plug in reference-counting reclamation.
    """

    def reclaimable(self, content_id: str, references: int) -> bool:
        raise NotImplementedError


class RetainForever(RetentionPolicy):
    """Default policy: blobs are kept even when no record points at them."""

    def reclaimable(self, content_id: str, references: int) -> bool:
        return False


def shard(digest: str, depth: int, width: int) -> list[str]:
    # `depth` tokens of `width` chars from the front of the digest, plus the remainder.
    parts = [digest[i * width: width * (i + 1)] for i in range(depth)]
    parts.append(digest[depth * width:])
    return [p for p in parts if p]


class ContentStore:
    """Content addressable blob manager.

    Attributes:
        root: Directory used as the root of the storage space.
        algorithm: hashlib algorithm name used to compute content ids.
        depth: Number of shard subfolders.
        width: Characters per shard subfolder name.
        chunk_size: Read size when streaming blobs back out.
        dmode: Permission mode for created directories.
    """

    def __init__(
        self,
        root,
        algorithm: str = "sha256",
        depth: int = 2,
        width: int = 2,
        chunk_size: int = 64 * 1024,
        dmode: int = 0o755,
        retention: Optional[RetentionPolicy] = None,
    ):
        self.root = Path(root)
        self.algorithm = algorithm
        self.depth = depth
        self.width = width
        self.chunk_size = chunk_size
        self.dmode = dmode
        self.retention = retention or RetainForever()

        digest_size = hashlib.new(algorithm).digest_size
        self._id_pattern = re.compile(rf"[0-9a-f]{{{digest_size * 2}}}")
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    # ── Hashing ──────────────────────────────────────────────────

    def new_hash(self):
        """Return a fresh hash object for incremental content id computation."""
        return hashlib.new(self.algorithm)

    def compute_id(self, data: bytes) -> str:
        h = self.new_hash()
        h.update(data)
        return h.hexdigest()

    def is_valid_id(self, content_id: str) -> bool:
        return isinstance(content_id, str) and bool(self._id_pattern.fullmatch(content_id))

    def path_for(self, content_id: str) -> Path:
        """Build the on-disk path for a content id."""
        if not self.is_valid_id(content_id):
            raise NotFound(f"Invalid content id: {content_id!r}")
        return self.root.joinpath(*shard(content_id, self.depth, self.width))

    # ── Writes ───────────────────────────────────────────────────

    async def put(self, data: bytes, content_id: Optional[str] = None) -> PutResult:
        """Store `data` under its content hash.

        `content_id`, when given, must be the hex digest of `data` produced by
        `new_hash()`; callers that already hashed a stream pass it to avoid a
        second pass. The blob is durable on disk before this returns.
        """
        if content_id is None:
            content_id = self.compute_id(data)
        elif not self.is_valid_id(content_id):
            raise ValueError(f"Malformed content id: {content_id!r}")

        path = self.path_for(content_id)
        lock = self._lock_for(content_id)
        async with lock:
            if await aiofiles.os.path.isfile(path):
                logger.debug(f"Blob {content_id} already stored, skipping write")
                return PutResult(content_id, path, True)
            try:
                written = await self._write_blob(path, data)
            except OSError as e:
                logger.error(f"Failed to store blob {content_id}: {e}")
                raise StorageIOFailure(f"Failed to store content {content_id}") from e

        if written:
            logger.info(f"Stored blob {content_id} ({len(data)} bytes)")
        return PutResult(content_id, path, not written)

    async def _write_blob(self, path: Path, data: bytes) -> bool:
        """Write to a temp file, fsync, then link into place.

        Returns False when another writer linked the same blob first; the
        existing file is left untouched in that case.
        """
        tmp_dir = self.root / _TMP_DIRNAME
        await aiofiles.os.makedirs(path.parent, mode=self.dmode, exist_ok=True)
        await aiofiles.os.makedirs(tmp_dir, mode=self.dmode, exist_ok=True)
        tmp_path = tmp_dir / f"{uuid.uuid4().hex}.part"
        try:
            async with aiofiles.open(tmp_path, "wb") as f:
                await f.write(data)
                await f.flush()
                await asyncio.to_thread(os.fsync, f.fileno())
            try:
                await aiofiles.os.link(tmp_path, path)
            except FileExistsError:
                return False
            return True
        finally:
            with contextlib.suppress(FileNotFoundError):
                await aiofiles.os.remove(tmp_path)

    def _lock_for(self, content_id: str) -> asyncio.Lock:
        lock = self._locks.get(content_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[content_id] = lock
        return lock

    # ── Reads ────────────────────────────────────────────────────

    async def has(self, content_id: str) -> bool:
        if not self.is_valid_id(content_id):
            return False
        return await aiofiles.os.path.isfile(self.path_for(content_id))

    async def size(self, content_id: str) -> int:
        path = await self._existing_path(content_id)
        try:
            return (await aiofiles.os.stat(path)).st_size
        except FileNotFoundError as e:
            raise NotFound(f"Content not found: {content_id}") from e
        except OSError as e:
            raise StorageIOFailure(f"Failed to stat content {content_id}") from e

    async def get(self, content_id: str) -> AsyncIterator[bytes]:
        """Return an async iterator over the blob's bytes.

        Raises NotFound immediately, before any byte is yielded, when the
        blob does not exist.
        """
        path = await self._existing_path(content_id)
        return self._iter_chunks(content_id, path)

    async def read(self, content_id: str) -> bytes:
        chunks = []
        async for chunk in await self.get(content_id):
            chunks.append(chunk)
        return b"".join(chunks)

    async def _existing_path(self, content_id: str) -> Path:
        if not await self.has(content_id):
            raise NotFound(f"Content not found: {content_id}")
        return self.path_for(content_id)

    async def _iter_chunks(self, content_id: str, path: Path) -> AsyncIterator[bytes]:
        try:
            async with aiofiles.open(path, "rb") as f:
                while True:
                    chunk = await f.read(self.chunk_size)
                    if not chunk:
                        break
                    yield chunk
        except FileNotFoundError as e:
            raise NotFound(f"Content not found: {content_id}") from e
        except OSError as e:
            raise StorageIOFailure(f"Failed to read content {content_id}") from e

    # ── Reclamation ──────────────────────────────────────────────

    async def release(self, content_id: str, references: int) -> bool:
        """Offer a blob for reclamation after a catalog record was removed.

        `references` is the number of records still pointing at the blob.
        Returns True if the blob was removed.
        """
        if not self.retention.reclaimable(content_id, references):
            return False
        path = self.path_for(content_id)
        async with self._lock_for(content_id):
            try:
                await aiofiles.os.remove(path)
            except FileNotFoundError:
                return False
            except OSError as e:
                raise StorageIOFailure(f"Failed to reclaim content {content_id}") from e
            await self._remove_empty(path.parent)
        logger.info(f"Reclaimed blob {content_id}")
        return True

    async def _remove_empty(self, directory: Path) -> None:
        """Remove empty shard folders from `directory` up to the root."""
        root = self.root.resolve()
        current = directory
        while current.resolve() != root and root in current.resolve().parents:
            try:
                await aiofiles.os.rmdir(current)
            except OSError:
                return
            current = current.parent


def create_content_store() -> ContentStore:
    return ContentStore(
        settings.FILE_STORAGE_PATH,
        algorithm=settings.HASH_ALGORITHM,
        depth=settings.STORAGE_SHARD_DEPTH,
        width=settings.STORAGE_SHARD_WIDTH,
        chunk_size=settings.UPLOAD_CHUNK_SIZE,
    )
