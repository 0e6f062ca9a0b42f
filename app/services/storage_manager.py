import uuid
from pathlib import Path
from typing import AsyncIterator, Iterable, List, Optional, Set, Tuple

from app.exceptions import (
    BlobNotFoundError,
    MissingFileError,
    PayloadTooLargeError,
    RecordNotFoundError,
    StorageError,
    UnsupportedMediaTypeError,
)
from app.models.file_record import FileRecord
from app.services.blob_store import BlobStore, extension_from_name
from app.services.metadata_index import MetadataIndex
from logger_config import setup_logger
import config

logger = setup_logger()


class StorageManager:
    """Coordinates the blob store and the metadata index.

    Each public method is a self-contained transaction. Blob files and index
    entries are kept one-to-one: an upload whose index write fails removes its
    blob again, and a delete removes the blob before the record so that an
    interruption can only leave a record without a blob, which the startup
    scan reports.
    """

    def __init__(
        self,
        upload_dir: Path,
        max_file_size: Optional[int] = None,
        allowed_mime_types: Optional[Iterable[str]] = None,
    ):
        self.upload_dir = Path(upload_dir)
        self.temp_dir = self.upload_dir / config.TEMP_DIRNAME
        self.max_file_size = max_file_size if max_file_size is not None else config.MAX_FILE_SIZE
        self.allowed_mime_types = list(
            allowed_mime_types if allowed_mime_types is not None else config.ALLOWED_MIME_TYPES
        )
        self.blob_store = BlobStore(self.upload_dir, self.temp_dir)
        self.index = MetadataIndex(self.upload_dir / config.METADATA_FILENAME)
        # Ids whose delete has removed or is removing the blob
        self._deleting: Set[str] = set()

    async def initialize(self):
        """Prepare directories, load the index and check it against the blobs."""
        logger.info("Initializing storage manager...")

        self.upload_dir.mkdir(exist_ok=True, parents=True)
        self.temp_dir.mkdir(exist_ok=True, parents=True)
        logger.debug(f"Storage directories created/verified: {self.upload_dir}, {self.temp_dir}")

        files_removed = await self.blob_store.cleanup_temp()
        logger.info(f"Cleaned temporary directory, removed {files_removed} files")

        await self.index.load()
        await self.reconcile()

    async def reconcile(self) -> Tuple[List[str], List[str]]:
        """Report records without blobs and blobs without records.

        Returns ``(orphan_record_ids, orphan_blob_names)``. Nothing is repaired.
        """
        records = await self.index.snapshot()
        blob_names = self.blob_store.stored_names(exclude={
            self.index.index_path.name,
            self.index.temp_path.name,
        })
        known_names = {r.stored_name for r in records}

        orphan_records = [r.id for r in records if r.stored_name not in blob_names]
        orphan_blobs = sorted(blob_names - known_names)

        for file_id in orphan_records:
            logger.warning(f"Index/blob mismatch: record {file_id} has no blob")
        for name in orphan_blobs:
            logger.warning(f"Index/blob mismatch: blob {name} has no record")
        logger.info(
            f"Index holds {len(records)} records "
            f"({len(orphan_records)} orphan records, {len(orphan_blobs)} orphan blobs)"
        )
        return orphan_records, orphan_blobs

    def validate_upload(self, filename: Optional[str], mime_type: Optional[str], size: int):
        if filename is None:
            raise MissingFileError()
        if size > self.max_file_size:
            raise PayloadTooLargeError()
        if mime_type not in self.allowed_mime_types:
            raise UnsupportedMediaTypeError()

    async def upload(self, filename: Optional[str], mime_type: Optional[str], size: int, payload) -> FileRecord:
        """Store a payload and record it in the index.

        ``size`` is the declared size used for validation; the recorded size is
        the number of bytes actually written.
        """
        self.validate_upload(filename, mime_type, size)

        file_id = str(uuid.uuid4())
        stored_name, written = await self.blob_store.put(
            payload, extension_from_name(filename), blob_id=file_id
        )

        if written > self.max_file_size:
            await self.blob_store.delete(stored_name)
            raise PayloadTooLargeError()

        record = FileRecord(
            id=file_id,
            original_name=filename,
            stored_name=stored_name,
            mime_type=mime_type,
            size=written,
        )

        try:
            await self.index.append(record)
        except StorageError:
            logger.error(f"Index append failed for {file_id}, removing blob {stored_name}")
            try:
                await self.blob_store.delete(stored_name)
            except StorageError:
                logger.error(f"Could not remove blob {stored_name} after failed upload", exc_info=True)
            raise

        logger.info(f"Uploaded {file_id} ({filename}, {mime_type}, {written} bytes)")
        return record

    async def info(self, file_id: str) -> FileRecord:
        return await self.index.find(file_id)

    async def fetch(self, file_id: str) -> Tuple[FileRecord, AsyncIterator[bytes]]:
        """Return the record and an iterator over its blob content."""
        record = await self.index.find(file_id)
        try:
            content = await self.blob_store.get(record.stored_name)
        except BlobNotFoundError:
            # A delete in flight removes the blob before the record
            if file_id in self._deleting:
                raise RecordNotFoundError(f"Record {file_id} is being deleted")
            await self.index.find(file_id)
            logger.error(f"Index/blob mismatch: record {file_id} exists but blob {record.stored_name} is missing")
            raise
        return record, content

    async def delete(self, file_id: str) -> FileRecord:
        record = await self.index.find(file_id)
        if file_id in self._deleting:
            raise RecordNotFoundError(f"Record {file_id} is being deleted")

        self._deleting.add(file_id)
        try:
            try:
                await self.blob_store.delete(record.stored_name)
            except BlobNotFoundError:
                logger.warning(
                    f"Index/blob mismatch: blob {record.stored_name} already missing, "
                    f"removing orphan record {file_id}"
                )
            await self.index.remove(file_id)
        finally:
            self._deleting.discard(file_id)

        logger.info(f"Deleted {file_id}")
        return record

    async def list(self, offset: int = 0, limit: int = 100) -> List[FileRecord]:
        return await self.index.list(offset=offset, limit=limit)
