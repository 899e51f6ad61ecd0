"""
Upload Orchestrator

Design Decision: Upload Strategy
================================

Options Considered:
1. Sequential: encrypt and send one part at a time
   - Simple, but one slow node stalls the whole upload
2. Unbounded: one task per part as soon as it is cut
   - Fast, but memory grows with the file size
3. Bounded worker pool
   - Parts are sent in parallel, the producer blocks when the pool is full

Decision: Bounded worker pool
- A single producer slices the incoming stream at part boundaries
  (ShardSplitter) and feeds each slice into the PartStream of its part
- Each part is one unit of work: pick node, encrypt, stream, record
- A PartStream holds at most PART_QUEUE_DEPTH slices, so a part is never
  held in memory as a whole; bytes flow source -> cipher -> node
- At most `max_concurrent` parts are in flight
- Every unit is joined before the upload is declared COMPLETE

Upload Flow:
1. Validate, check (path, name) is free, find reachable nodes
2. Insert the file placeholder row (PENDING), the uniqueness lock
3. Cut, encrypt and send parts (IN_PROGRESS)
4. Persist a part row only after the node confirmed the write
5. COMPLETE when all parts are confirmed, FAILED otherwise

Failure Semantics:
No rollback. Parts already confirmed stay on their nodes and keep their
rows; the file row stays behind with status FAILED. Deleting the file
cleans both up.
"""

import asyncio
import logging
import random
import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, AsyncIterator, Callable, List, Optional

from ..errors import AlreadyExistsError, NoNodesError, ShardVaultError, ValidationError
from ..file.chunker import NodePicker, ShardSplitter, plan_shards
from ..file.cipher import EncryptTransform, generate_nonce, pipe
from ..storage.database import Database
from ..storage.models import FileStatus, NodeInfo, PartRecord
from ..utils import clean_path
from .protocol import ClientFactory, NodeClient, TRANSFER_TIMEOUT

if TYPE_CHECKING:
    from ..registry.registry import NodeRegistry

logger = logging.getLogger(__name__)

# Slices buffered between the producer and the sender of one part
PART_QUEUE_DEPTH = 4


@dataclass
class UploadProgress:
    """Observable upload state."""
    file_name: str
    total_bytes: int
    total_parts: int
    bytes_received: int = 0
    parts_confirmed: int = 0
    status: FileStatus = FileStatus.PENDING
    start_time: float = field(default_factory=time.time)

    @property
    def progress_percent(self) -> float:
        """Percentage of the source stream consumed so far."""
        if self.total_bytes == 0:
            return 100.0
        return self.bytes_received / self.total_bytes * 100

    def to_dict(self) -> dict:
        return {
            'file_name': self.file_name,
            'total_bytes': self.total_bytes,
            'bytes_received': self.bytes_received,
            'progress_percent': round(self.progress_percent, 1),
            'total_parts': self.total_parts,
            'parts_confirmed': self.parts_confirmed,
            'status': self.status.value,
            'elapsed_seconds': time.time() - self.start_time,
        }


ProgressCallback = Callable[[UploadProgress], None]


class PartAborted(Exception):
    """The producer gave up on a part before all of its bytes arrived."""


class PartStream:
    """
    Bounded hand-off of one part's bytes from the producer to its sender.

    The producer ends every stream with close() or abort(); the sender
    always calls discard() so the producer never blocks on a dead reader.
    """

    _END = object()
    _ABORT = object()

    def __init__(self, depth: int = PART_QUEUE_DEPTH):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=depth)
        self._finished = False

    async def feed(self, piece: bytes):
        await self._queue.put(piece)

    async def close(self):
        await self._queue.put(self._END)

    async def abort(self):
        await self._queue.put(self._ABORT)

    async def chunks(self) -> AsyncIterator[bytes]:
        """
        Yield the part's bytes as they arrive.

        Raises:
            PartAborted: the producer aborted the part
        """
        while not self._finished:
            item = await self._queue.get()
            if item is self._END or item is self._ABORT:
                self._finished = True
                if item is self._ABORT:
                    raise PartAborted()
                return
            yield item

    async def discard(self):
        """Drop whatever the reader did not consume, up to the end marker."""
        while not self._finished:
            item = await self._queue.get()
            if item is self._END or item is self._ABORT:
                self._finished = True


@dataclass
class UploadResult:
    """Outcome of an upload that got as far as inserting its file row."""
    file_id: str
    path: str
    name: str
    status: FileStatus
    total_parts: int
    confirmed_parts: List[int] = field(default_factory=list)
    message: str = ''

    @property
    def success(self) -> bool:
        return self.status == FileStatus.COMPLETE

    def to_dict(self) -> dict:
        return {
            'success': self.success,
            'message': self.message,
            'file_id': self.file_id,
            'path': self.path,
            'name': self.name,
            'status': self.status.value,
            'parts': self.total_parts,
            'confirmed_parts': len(self.confirmed_parts),
        }


class FileUploader:
    """Splits, encrypts and distributes a byte stream across nodes."""

    def __init__(self, db: Database, registry: 'NodeRegistry',
                 client_factory: ClientFactory = NodeClient,
                 shard_size: int = 8 * 1000 * 1000,
                 force_spreading: bool = True,
                 max_concurrent: int = 4,
                 transfer_timeout: float = TRANSFER_TIMEOUT,
                 rng: Optional[random.Random] = None):
        self.db = db
        self.registry = registry
        self.client_factory = client_factory
        self.shard_size = shard_size
        self.force_spreading = force_spreading
        self.max_concurrent = max(1, max_concurrent)
        self.transfer_timeout = transfer_timeout
        self.rng = rng

        # Statistics
        self.files_uploaded = 0
        self.bytes_uploaded = 0

    async def upload(self, path: str, name: str, size: int,
                     source: AsyncIterator[bytes],
                     progress_callback: ProgressCallback = None) -> UploadResult:
        """
        Upload a byte stream as the file (path, name).

        Args:
            path: logical directory
            name: file name
            size: declared total length in bytes
            source: the raw bytes, in order
            progress_callback: called after every received chunk and every
                confirmed part

        Returns:
            UploadResult with status COMPLETE or FAILED

        Raises:
            ValidationError: missing name, bad size (nothing was created)
            AlreadyExistsError: (path, name) is taken
            NoNodesError: no node is reachable
        """
        if not name or '/' in name:
            raise ValidationError('A file name is required!')
        if not isinstance(size, int) or size <= 0:
            raise ValidationError('A positive file size is required!')
        path = clean_path(path)

        if await self.db.get_file(path, name):
            raise AlreadyExistsError()

        nodes = await self.registry.list_reachable(
            include_connection_details=True, include_content_key=True
        )
        if not nodes:
            raise NoNodesError()

        plan = plan_shards(size, self.shard_size, self.force_spreading, len(nodes))
        picker = NodePicker(nodes, self.rng)

        file_id = str(uuid.uuid4())
        await self.db.insert_file(file_id, name, path, size)
        logger.info(f"Uploading {path}{name}: {size:,} bytes in {plan.loops} parts "
                    f"across {len(nodes)} reachable nodes")

        progress = UploadProgress(file_name=name, total_bytes=size, total_parts=plan.loops)
        result = UploadResult(
            file_id=file_id, path=path, name=name,
            status=FileStatus.IN_PROGRESS, total_parts=plan.loops,
        )

        await self.db.set_file_status(file_id, FileStatus.IN_PROGRESS)
        progress.status = FileStatus.IN_PROGRESS
        _notify(progress_callback, progress)

        failure: List[str] = []
        slots = asyncio.Semaphore(self.max_concurrent)
        tasks: List[asyncio.Task] = []

        async def send_part(index: int, stream: PartStream, node: NodeInfo):
            """One unit of work: encrypt, stream, confirm, record."""
            try:
                if failure:
                    return
                part_id = str(uuid.uuid4())
                nonce = generate_nonce()
                client = self.client_factory(node.ip, node.port, node.ca,
                                             timeout=self.transfer_timeout)

                logger.debug(f"{path}{name} ({index + 1}/{plan.loops}) uploading to {node.address}")
                response = await client.write_blob(
                    node.ckey, part_id, pipe(stream.chunks(), EncryptTransform(node.key, nonce))
                )
                if not response.success:
                    failure.append(f"Part {index + 1}/{plan.loops} failed on node "
                                   f"{node.id[:8]}: {response.message}")
                    logger.warning(failure[-1])
                    return

                await self.db.add_part(PartRecord(
                    id=part_id, file=file_id, node=node.id, iv=nonce, i=index,
                ))
                result.confirmed_parts.append(index)
                progress.parts_confirmed += 1
                self.bytes_uploaded += plan.chunk_length(index)
                logger.debug(f"{path}{name} ({index + 1}/{plan.loops}) stored on {node.address}")
                _notify(progress_callback, progress)
            except PartAborted:
                logger.debug(f"{path}{name} ({index + 1}/{plan.loops}) aborted mid-stream")
            except Exception as e:
                failure.append(f"Storing part {index + 1}/{plan.loops} failed: {e}")
                logger.error(f"Part of {path}{name} crashed: {e!r}")
            finally:
                await stream.discard()
                slots.release()

        splitter = ShardSplitter(plan)
        stream: Optional[PartStream] = None
        try:
            async for index, piece, done in splitter.split(
                    _counting(source, progress, progress_callback)):
                if stream is None:
                    if failure:
                        break
                    await slots.acquire()
                    stream = PartStream()
                    tasks.append(asyncio.create_task(send_part(index, stream, picker.pick())))
                await stream.feed(piece)
                if done:
                    await stream.close()
                    stream = None
        except ShardVaultError as e:
            failure.append(e.message)
            logger.warning(f"Upload of {path}{name} aborted: {e.message}")
        except Exception as e:
            failure.append(f"Reading the upload stream failed: {e}")
            logger.error(f"Upload of {path}{name} aborted", exc_info=True)
        finally:
            if stream is not None:
                await stream.abort()
            # Join barrier: nothing is declared done while a part is in flight
            await asyncio.gather(*tasks, return_exceptions=True)

        if failure:
            result.status = FileStatus.FAILED
            result.message = failure[0]
            await self.db.set_file_status(file_id, FileStatus.FAILED)
            logger.error(f"Upload of {path}{name} failed after {len(result.confirmed_parts)}/"
                         f"{plan.loops} parts; confirmed parts are left in place")
        else:
            result.status = FileStatus.COMPLETE
            result.message = 'Success!'
            await self.db.set_file_status(file_id, FileStatus.COMPLETE)
            self.files_uploaded += 1
            logger.info(f"Uploaded {path}{name} ({plan.loops} parts)")

        result.confirmed_parts.sort()
        progress.status = result.status
        _notify(progress_callback, progress)
        return result

    def get_stats(self) -> dict:
        return {
            'files_uploaded': self.files_uploaded,
            'bytes_uploaded': self.bytes_uploaded,
        }


async def _counting(source: AsyncIterator[bytes], progress: UploadProgress,
                    progress_callback: Optional[ProgressCallback]) -> AsyncIterator[bytes]:
    """Pass bytes through while tracking how much of the source was consumed."""
    async for chunk in source:
        progress.bytes_received += len(chunk)
        _notify(progress_callback, progress)
        yield chunk


def _notify(callback: Optional[ProgressCallback], progress: UploadProgress):
    if callback:
        callback(progress)
