"""
Download & Reconstruction

Design Decision: Download Strategy
==================================

Options Considered:
1. Sequential fetch, append as we go
   - Simple, but one node at a time
2. Parallel fetch, concatenate in completion order
   - Fast, but produces garbage whenever a later part arrives first
3. Parallel fetch, concatenate by sequence index
   - Fast and correct regardless of which node answers first

Decision: Parallel fetch (bounded), reassemble by sequence index
- Each part is decrypted while it streams in
- Decrypted parts are held by index and joined in ascending numeric order
- Any failing part aborts the whole download; nothing is resumable

Download Flow:
1. Look up the file and its parts (ordered by index)
2. Check the upload completed and the indices are contiguous
3. Fetch + decrypt all parts concurrently
4. Join by index, check the total length
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

import aiofiles

from ..errors import (
    ConnectivityError, ConsistencyError, DownloadInProgressError, NoSuchFileError,
    ShardVaultError,
)
from ..file.cipher import DecryptTransform
from ..storage.database import Database
from ..storage.models import FileRecord, FileStatus, NodeInfo, PartRecord
from ..utils import clean_path
from .protocol import ClientFactory, NodeClient, TRANSFER_TIMEOUT

logger = logging.getLogger(__name__)


class DownloadSession:
    """
    Per-session download state.

    A session runs at most one download; a second concurrent request is
    rejected, not queued.
    """

    def __init__(self, session_id: str = 'default'):
        self.session_id = session_id
        self.downloading = False


@dataclass
class DownloadProgress:
    """Track download progress."""
    file_name: str
    total_parts: int
    parts_done: int = 0
    bytes_downloaded: int = 0
    phase: str = 'initializing'  # 'initializing', 'downloading', 'merging', 'complete', 'failed'
    start_time: float = field(default_factory=time.time)

    @property
    def progress_percent(self) -> float:
        if self.total_parts == 0:
            return 100.0
        return self.parts_done / self.total_parts * 100

    def to_dict(self) -> dict:
        return {
            'file_name': self.file_name,
            'total_parts': self.total_parts,
            'parts_done': self.parts_done,
            'bytes_downloaded': self.bytes_downloaded,
            'progress_percent': self.progress_percent,
            'phase': self.phase,
            'elapsed_seconds': time.time() - self.start_time,
        }


ProgressCallback = Callable[[DownloadProgress], None]


class PartFetchError(ConnectivityError):
    """A single part could not be fetched; aborts the whole download."""


def check_contiguous(parts: List[PartRecord]):
    """Indices must be exactly 0..n-1."""
    indices = [part.i for part in parts]
    if indices != list(range(len(parts))):
        raise ConsistencyError(f'Part indices are not contiguous: {indices}')


def reassemble(buffers: Dict[int, bytes]) -> bytes:
    """Join decrypted parts by ascending numeric sequence index."""
    return b''.join(buffers[index] for index in sorted(buffers))


class FileDownloader:
    """Fetches, decrypts and reorders the parts of a file."""

    def __init__(self, db: Database, client_factory: ClientFactory = NodeClient,
                 max_concurrent: int = 4, transfer_timeout: float = TRANSFER_TIMEOUT):
        self.db = db
        self.client_factory = client_factory
        self.max_concurrent = max(1, max_concurrent)
        self.transfer_timeout = transfer_timeout

        # Statistics
        self.files_downloaded = 0
        self.total_bytes = 0

    async def _load(self, path: str, name: str):
        file = await self.db.get_file(clean_path(path), name)
        if file is None:
            raise NoSuchFileError()
        if file.status != FileStatus.COMPLETE:
            raise ConsistencyError(f'That file is not completely uploaded ({file.status.value})!')

        parts = await self.db.get_parts(file.id)
        if not parts:
            raise NoSuchFileError()
        check_contiguous(parts)
        return file, parts

    async def _fetch_part(self, file: FileRecord, part: PartRecord, total: int,
                          nodes: Dict[str, Optional[NodeInfo]]) -> bytes:
        node = nodes.get(part.node)
        label = f"{file.path}{file.name} ({part.i + 1}/{total})"
        if node is None:
            raise PartFetchError(f'{label}: node {part.node[:8]} is no longer registered')

        client = self.client_factory(node.ip, node.port, node.ca, timeout=self.transfer_timeout)
        decrypt = DecryptTransform(node.key, part.iv)
        chunks: List[bytes] = []

        logger.debug(f"{label} downloading from {node.address}")
        response = await client.read_blob(
            node.ckey, part.id, lambda chunk: chunks.append(decrypt.next(chunk))
        )
        if not response.success:
            raise PartFetchError(f'{label} failed: {response.message}')

        chunks.append(decrypt.finish())
        logger.debug(f"{label} decrypted")
        return b''.join(chunks)

    async def download(self, path: str, name: str,
                       session: Optional[DownloadSession] = None,
                       progress_callback: ProgressCallback = None) -> bytes:
        """
        Reconstruct the original bytes of (path, name).

        Raises:
            DownloadInProgressError: the session already downloads a file
            NoSuchFileError: no such file, or it has no parts
            ConsistencyError: upload incomplete, gaps in the parts, or a
                length mismatch after reassembly
            PartFetchError: a part could not be fetched
        """
        if session is not None:
            if session.downloading:
                raise DownloadInProgressError()
            session.downloading = True

        try:
            return await self._download(path, name, progress_callback)
        finally:
            if session is not None:
                session.downloading = False

    async def _download(self, path: str, name: str,
                        progress_callback: Optional[ProgressCallback]) -> bytes:
        file, parts = await self._load(path, name)
        logger.info(f"Downloading {file.path}{file.name} ({len(parts)} parts)")

        progress = DownloadProgress(file_name=file.name, total_parts=len(parts),
                                    phase='downloading')
        _notify(progress_callback, progress)

        nodes = {node_id: await self.db.get_node(node_id)
                 for node_id in {part.node for part in parts}}
        slots = asyncio.Semaphore(self.max_concurrent)
        buffers: Dict[int, bytes] = {}

        async def fetch(part: PartRecord):
            async with slots:
                data = await self._fetch_part(file, part, len(parts), nodes)
            buffers[part.i] = data
            progress.parts_done += 1
            progress.bytes_downloaded += len(data)
            _notify(progress_callback, progress)

        tasks = [asyncio.create_task(fetch(part)) for part in parts]
        try:
            await asyncio.gather(*tasks)
        except Exception as e:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            progress.phase = 'failed'
            _notify(progress_callback, progress)
            logger.error(f"Download of {file.path}{file.name} aborted: {e}")
            if isinstance(e, ShardVaultError):
                raise
            raise PartFetchError(f'Decrypting a part failed: {e}') from e

        progress.phase = 'merging'
        _notify(progress_callback, progress)

        content = reassemble(buffers)
        if len(content) != file.size:
            raise ConsistencyError(
                f'Reassembled {len(content)} bytes, expected {file.size}'
            )

        self.files_downloaded += 1
        self.total_bytes += len(content)
        progress.phase = 'complete'
        _notify(progress_callback, progress)
        logger.info(f"Downloaded {file.path}{file.name} ({len(content):,} bytes)")
        return content

    async def download_to(self, path: str, name: str, output_path: Path,
                          session: Optional[DownloadSession] = None,
                          progress_callback: ProgressCallback = None) -> Path:
        """Download and write the result to disk."""
        content = await self.download(path, name, session, progress_callback)

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(output_path, 'wb') as f:
            await f.write(content)
        return output_path

    def get_stats(self) -> dict:
        return {
            'files_downloaded': self.files_downloaded,
            'total_bytes': self.total_bytes,
        }


def _notify(callback: Optional[ProgressCallback], progress: DownloadProgress):
    if callback:
        callback(progress)
