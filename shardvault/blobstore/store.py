"""
Blob Storage

Design Decision: Storage Strategy
=================================

Options Considered:
1. Single directory with id-named files
2. Two-level directory (first 2 chars of id)
3. SQLite blob storage

Decision: Two-level directory structure
- blobs/ab/abcdef12-... (first 2 chars as subdirectory)
- Prevents filesystem issues with too many files
- Easy to inspect manually

The node knows nothing about files, part order or keys. A blob is an
opaque byte string under an id chosen by the panel.

Storage Layout:
```
data/
├── blobs/            # Encrypted parts
│   └── ab/
│       └── abcdef12-...
├── keys/             # TLS material and pairing state
└── temp/             # Blobs being received
```
"""

import re
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional

import aiofiles
import aiofiles.os

# Blob ids become file names, so nothing but [A-Za-z0-9-]
BLOB_ID_PATTERN = re.compile(r'^[A-Za-z0-9-]{1,128}$')

READ_BLOCK_SIZE = 256 * 1024


class InvalidBlobIdError(ValueError):
    pass


@dataclass
class StorageStats:
    """Statistics about stored data."""
    total_blobs: int
    total_bytes: int


def is_valid_blob_id(blob_id: Optional[str]) -> bool:
    return bool(blob_id) and BLOB_ID_PATTERN.match(blob_id) is not None


class BlobStore:
    """Local storage for opaque encrypted blobs."""

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self.blobs_dir = self.data_dir / "blobs"
        self.temp_dir = self.data_dir / "temp"

        for dir_path in [self.blobs_dir, self.temp_dir]:
            dir_path.mkdir(parents=True, exist_ok=True)

    def _blob_path(self, blob_id: str) -> Path:
        if not is_valid_blob_id(blob_id):
            raise InvalidBlobIdError(f"Invalid blob id: {blob_id!r}")
        return self.blobs_dir / blob_id[:2] / blob_id

    def has_blob(self, blob_id: str) -> bool:
        return self._blob_path(blob_id).exists()

    async def write_blob(self, blob_id: str, chunks: AsyncIterator[bytes]) -> int:
        """
        Store (or overwrite) a blob from a byte stream.

        Written to a temp file first, then renamed into place, so a broken
        upload never leaves a truncated blob behind.

        Returns:
            Number of bytes written
        """
        blob_path = self._blob_path(blob_id)
        await aiofiles.os.makedirs(blob_path.parent, exist_ok=True)

        temp_path = self.temp_dir / f"{blob_id}.{uuid.uuid4().hex}.tmp"
        written = 0
        try:
            async with aiofiles.open(temp_path, 'wb') as f:
                async for chunk in chunks:
                    await f.write(chunk)
                    written += len(chunk)
            await aiofiles.os.replace(temp_path, blob_path)
        finally:
            if temp_path.exists():
                await aiofiles.os.remove(temp_path)

        return written

    async def iter_blob(self, blob_id: str) -> AsyncIterator[bytes]:
        """Stream a blob in fixed-size blocks."""
        async with aiofiles.open(self._blob_path(blob_id), 'rb') as f:
            while True:
                data = await f.read(READ_BLOCK_SIZE)
                if not data:
                    break
                yield data

    async def delete_blob(self, blob_id: str) -> bool:
        """Delete a blob. Returns False if it did not exist."""
        blob_path = self._blob_path(blob_id)
        if not blob_path.exists():
            return False
        await aiofiles.os.remove(blob_path)
        return True

    async def get_stats(self) -> StorageStats:
        total_blobs = 0
        total_bytes = 0

        for prefix_dir in self.blobs_dir.iterdir():
            if prefix_dir.is_dir():
                for blob_file in prefix_dir.iterdir():
                    total_blobs += 1
                    total_bytes += blob_file.stat().st_size

        return StorageStats(total_blobs=total_blobs, total_bytes=total_bytes)
