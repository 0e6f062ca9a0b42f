import asyncio
import json
import os
from pathlib import Path
from typing import List

import aiofiles
import aiofiles.os
from pydantic import ValidationError

from app.exceptions import IndexReadError, IndexWriteError, RecordNotFoundError
from app.models.file_record import FileRecord
from logger_config import setup_logger

logger = setup_logger()


class MetadataIndex:
    """Ordered collection of FileRecords persisted as one JSON array.

    The records are mirrored in memory and every mutation rewrites the whole
    document while holding ``self.lock``, so concurrent uploads and deletes are
    applied one at a time and none of them is lost. The document is written to
    a temporary file and renamed over the old one; after a crash the file on
    disk is always either the previous or the new version.
    """

    def __init__(self, index_path: Path):
        self.index_path = index_path
        self.temp_path = index_path.with_name(index_path.name + ".tmp")
        self.lock = asyncio.Lock()
        self._records: List[FileRecord] = []

    async def load(self):
        """Read the document from disk. A missing document is an empty index."""
        async with self.lock:
            if not await aiofiles.os.path.exists(self.index_path):
                logger.info(f"No index found at {self.index_path}, starting empty")
                self._records = []
                return

            try:
                async with aiofiles.open(self.index_path, 'r', encoding='utf-8') as f:
                    content = await f.read()
                data = json.loads(content) if content.strip() else []
                if not isinstance(data, list):
                    raise ValueError("index document is not a JSON array")
                records = [FileRecord.model_validate(item) for item in data]
            except (OSError, ValueError, ValidationError) as e:
                logger.error(f"Could not read index {self.index_path}: {e}")
                raise IndexReadError(f"Index document {self.index_path.name} is unreadable") from e

            self._records = records
            logger.info(f"Loaded {len(records)} records from {self.index_path}")

    async def append(self, record: FileRecord):
        async with self.lock:
            if any(r.id == record.id for r in self._records):
                raise IndexWriteError(f"Duplicate record id {record.id}")
            records = self._records + [record]
            await self._persist(records)
            self._records = records
            logger.debug(f"Index append {record.id}, {len(records)} records")

    async def find(self, file_id: str) -> FileRecord:
        async with self.lock:
            return self._find(file_id)

    async def remove(self, file_id: str) -> FileRecord:
        async with self.lock:
            record = self._find(file_id)
            records = [r for r in self._records if r.id != file_id]
            await self._persist(records)
            self._records = records
            logger.debug(f"Index remove {file_id}, {len(records)} records")
            return record

    async def list(self, offset: int = 0, limit: int = 100) -> List[FileRecord]:
        """Return records ``[offset, offset + limit)`` in insertion order."""
        offset = max(0, offset)
        limit = max(0, limit)
        async with self.lock:
            return self._records[offset:offset + limit]

    async def snapshot(self) -> List[FileRecord]:
        async with self.lock:
            return list(self._records)

    def _find(self, file_id: str) -> FileRecord:
        for record in self._records:
            if record.id == file_id:
                return record
        raise RecordNotFoundError(f"Record {file_id} not found")

    def _fsync_directory(self):
        fd = os.open(self.index_path.parent, os.O_RDONLY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)

    async def _persist(self, records: List[FileRecord]):
        """Durably replace the document with ``records``. Caller holds the lock."""
        document = json.dumps([r.to_json() for r in records], indent=2)
        try:
            async with aiofiles.open(self.temp_path, 'w', encoding='utf-8') as f:
                await f.write(document)
                await f.flush()
                await asyncio.to_thread(os.fsync, f.fileno())
            await aiofiles.os.replace(str(self.temp_path), str(self.index_path))
        except OSError as e:
            logger.error(f"Error writing index {self.index_path}: {e}", exc_info=True)
            try:
                await aiofiles.os.unlink(self.temp_path)
            except FileNotFoundError:
                pass
            raise IndexWriteError("Could not persist the metadata index") from e

        # The new document is in place; only the durability of the rename is at stake
        try:
            await asyncio.to_thread(self._fsync_directory)
        except OSError as e:
            logger.warning(f"Could not fsync directory of {self.index_path}: {e}")
