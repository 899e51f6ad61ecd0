"""
Panel - Main Controller

Orchestrates all panel components:
- Node registry and trust handshake
- Upload orchestrator (shard, encrypt, distribute)
- Download/reconstruction engine
- Deletion coordinator

Every component receives the same database and registry instance; there is
no process-wide state.
"""

import logging
import random
import weakref
from pathlib import Path
from typing import AsyncIterator, Optional

import aiofiles

from .config import Config
from .registry import NodeRegistry
from .storage import Database
from .transfer import (
    ClientFactory, DeleteResult, DownloadSession, FileDeleter, FileDownloader,
    FileUploader, NodeClient, UploadResult,
)
from .transfer.downloader import ProgressCallback as DownloadProgressCallback
from .transfer.uploader import ProgressCallback as UploadProgressCallback
from .utils import clean_path

logger = logging.getLogger(__name__)


class Panel:
    """
    The storage panel.

    Combines all components into a unified interface:
    - pair/reconfigure/unpair nodes
    - upload(path, name, size, stream)
    - download(path, name)
    - delete(path, name)
    - list_directory(path)
    """

    def __init__(self, config: Config = None, db: Database = None,
                 client_factory: ClientFactory = NodeClient,
                 rng: Optional[random.Random] = None):
        """
        Args:
            config: panel configuration (defaults if not provided)
            db: database to use instead of the one under the data dir
            client_factory: how to reach nodes (tests inject in-process ones)
            rng: random source for part placement
        """
        self.config = config or Config()
        self.db = db or Database(self.config.database_path)

        self.registry = NodeRegistry(
            self.db,
            client_factory=client_factory,
            probe_timeout=self.config.probe_timeout,
        )
        self.uploader = FileUploader(
            self.db,
            self.registry,
            client_factory=client_factory,
            shard_size=self.config.shard_size,
            force_spreading=self.config.force_spreading,
            max_concurrent=self.config.max_concurrent,
            transfer_timeout=self.config.transfer_timeout,
            rng=rng,
        )
        self.downloader = FileDownloader(
            self.db,
            client_factory=client_factory,
            max_concurrent=self.config.max_concurrent,
            transfer_timeout=self.config.transfer_timeout,
        )
        self.deleter = FileDeleter(
            self.db,
            client_factory=client_factory,
            transfer_timeout=self.config.transfer_timeout,
        )

        # A session lives only while one of its downloads holds it
        self._sessions = weakref.WeakValueDictionary()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self):
        """Open the database."""
        if self._running:
            return
        await self.db.connect()
        self._running = True
        logger.info(f"Panel started (shard size {self.config.shard_size:,} bytes, "
                    f"force spreading {'on' if self.config.force_spreading else 'off'})")

    async def stop(self):
        if not self._running:
            return
        self._running = False
        await self.db.close()
        logger.info("Panel stopped")

    def session(self, session_id: Optional[str]) -> Optional[DownloadSession]:
        """Per-session state, created on first use."""
        if session_id is None:
            return None
        session = self._sessions.get(session_id)
        if session is None:
            session = DownloadSession(session_id)
            self._sessions[session_id] = session
        return session

    # === File Operations ===

    async def upload(self, path: str, name: str, size: int, source: AsyncIterator[bytes],
                     progress_callback: UploadProgressCallback = None) -> UploadResult:
        return await self.uploader.upload(path, name, size, source, progress_callback)

    async def upload_file(self, file_path: Path, path: str = '/', name: str = None,
                          progress_callback: UploadProgressCallback = None) -> UploadResult:
        """Upload a local file."""
        file_path = Path(file_path)
        if not file_path.is_file():
            raise FileNotFoundError(f"File not found: {file_path}")

        async def read_file():
            async with aiofiles.open(file_path, 'rb') as f:
                while True:
                    data = await f.read(256 * 1024)
                    if not data:
                        break
                    yield data

        return await self.upload(path, name or file_path.name, file_path.stat().st_size,
                                 read_file(), progress_callback)

    async def download(self, path: str, name: str, session_id: Optional[str] = None,
                       progress_callback: DownloadProgressCallback = None) -> bytes:
        return await self.downloader.download(path, name, self.session(session_id),
                                              progress_callback)

    async def download_to(self, path: str, name: str, output_path: Path,
                          session_id: Optional[str] = None,
                          progress_callback: DownloadProgressCallback = None) -> Path:
        return await self.downloader.download_to(path, name, output_path,
                                                 self.session(session_id), progress_callback)

    async def delete(self, path: str, name: str) -> DeleteResult:
        return await self.deleter.delete(path, name)

    async def list_directory(self, path: str = '/') -> dict:
        path = clean_path(path)
        files, directories = await self.db.list_directory(path)
        return {
            'path': path,
            'files': [f.to_dict() for f in files],
            'directories': directories,
        }

    def get_stats(self) -> dict:
        return {
            'running': self._running,
            'uploader': self.uploader.get_stats(),
            'downloader': self.downloader.get_stats(),
        }
