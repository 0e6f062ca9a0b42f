import uuid
from pathlib import Path
from typing import AsyncIterator, Optional, Set, Tuple, Union

import aiofiles
import aiofiles.os

from app.exceptions import BlobNotFoundError, StorageIOError
from logger_config import setup_logger

logger = setup_logger()

CHUNK_SIZE = 8192  # 8KB chunks


def extension_from_name(filename: str) -> str:
    """Return the extension of ``filename`` including the dot, or ''."""
    if not filename:
        return ""
    last_dot = filename.rfind(".")
    if last_dot == -1:
        return ""
    extension = filename[last_dot:]
    # Stored names must stay inside the upload directory
    if "/" in extension or "\\" in extension:
        return ""
    return extension


class BlobStore:
    """Payload files kept flat in one directory as ``{id}{extension}``."""

    def __init__(self, root_dir: Path, temp_dir: Path):
        self.root_dir = root_dir
        self.temp_dir = temp_dir

    def get_blob_path(self, stored_name: str) -> Path:
        path = self.root_dir / stored_name
        if path.parent != self.root_dir:
            raise BlobNotFoundError(f"Invalid stored name: {stored_name}")
        return path

    async def put(self, payload, extension: str = "", blob_id: Optional[str] = None) -> Tuple[str, int]:
        """Write a payload under a fresh name and return ``(stored_name, size)``.

        ``payload`` is either ``bytes`` or an object with an async ``read(n)``
        such as FastAPI's ``UploadFile``. Bytes are streamed to a temporary file
        first and renamed into place, so a blob never appears half written.
        """
        blob_id = blob_id or str(uuid.uuid4())
        stored_name = f"{blob_id}{extension}"
        blob_path = self.get_blob_path(stored_name)
        temp_path = self.temp_dir / f"{stored_name}.part"

        size = 0
        try:
            async with aiofiles.open(temp_path, 'wb') as f:
                if isinstance(payload, (bytes, bytearray, memoryview)):
                    await f.write(payload)
                    size = len(payload)
                else:
                    while chunk := await payload.read(CHUNK_SIZE):
                        size += len(chunk)
                        await f.write(chunk)
            await aiofiles.os.replace(str(temp_path), str(blob_path))
        except OSError as e:
            logger.error(f"Error writing blob {stored_name}: {e}", exc_info=True)
            await self._discard(temp_path)
            raise StorageIOError(f"Could not write blob {stored_name}") from e

        logger.debug(f"Stored blob {stored_name} ({size} bytes)")
        return stored_name, size

    async def get(self, stored_name: str) -> AsyncIterator[bytes]:
        """Open a blob and return an iterator over its content in chunks.

        The file is opened before returning, so a missing blob raises here
        rather than halfway through a response.
        """
        blob_path = self.get_blob_path(stored_name)
        try:
            f = await aiofiles.open(blob_path, 'rb')
        except FileNotFoundError:
            raise BlobNotFoundError(f"Blob {stored_name} not found")
        except OSError as e:
            raise StorageIOError(f"Could not read blob {stored_name}") from e
        return self._iter_chunks(f)

    async def _iter_chunks(self, f) -> AsyncIterator[bytes]:
        try:
            while chunk := await f.read(CHUNK_SIZE):  # 8KB chunks
                yield chunk
        finally:
            await f.close()

    async def delete(self, stored_name: str) -> None:
        """Remove a blob. Deleting a blob that is already gone is an error."""
        blob_path = self.get_blob_path(stored_name)
        try:
            await aiofiles.os.unlink(blob_path)
        except FileNotFoundError:
            raise BlobNotFoundError(f"Blob {stored_name} not found")
        except OSError as e:
            raise StorageIOError(f"Could not delete blob {stored_name}") from e
        logger.debug(f"Deleted blob {stored_name}")

    def stored_names(self, exclude: Union[Set[str], None] = None) -> Set[str]:
        """Names of every blob file currently in the root directory."""
        exclude = exclude or set()
        return {
            entry.name for entry in self.root_dir.iterdir()
            if entry.is_file() and entry.name not in exclude
        }

    async def cleanup_temp(self) -> int:
        """Remove partial uploads left behind by an interrupted process."""
        files_removed = 0
        for file in self.temp_dir.glob("*"):
            if file.is_file():
                await aiofiles.os.unlink(file)
                files_removed += 1
        return files_removed

    async def _discard(self, path: Path) -> None:
        try:
            await aiofiles.os.unlink(path)
        except FileNotFoundError:
            pass
