"""
Deletion Coordinator

Parts are deleted one by one, in sequence order. The first failure stops
the run: parts deleted so far stay deleted, the failed part and everything
after it stay intact, and the file row remains. Only when every part is
gone is the file row removed. Running delete again resumes where the
last run stopped.

Files whose upload is still running are refused; only COMPLETE and
FAILED rows can be deleted.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..errors import ConsistencyError, NoSuchFileError
from ..storage.models import FileStatus
from ..storage.database import Database
from ..utils import clean_path
from .protocol import ClientFactory, NodeClient, TRANSFER_TIMEOUT

logger = logging.getLogger(__name__)


@dataclass
class DeleteResult:
    path: str
    name: str
    parts_total: int
    parts_deleted: int
    file_removed: bool
    failed_index: Optional[int] = None
    message: str = ''

    @property
    def success(self) -> bool:
        return self.file_removed

    def to_dict(self) -> dict:
        return {
            'success': self.success,
            'message': self.message,
            'path': self.path,
            'name': self.name,
            'parts_total': self.parts_total,
            'parts_deleted': self.parts_deleted,
            'failed_index': self.failed_index,
        }


class FileDeleter:
    """Sequential per-part remote delete with explicit partial failure."""

    def __init__(self, db: Database, client_factory: ClientFactory = NodeClient,
                 transfer_timeout: float = TRANSFER_TIMEOUT):
        self.db = db
        self.client_factory = client_factory
        self.transfer_timeout = transfer_timeout

    async def delete(self, path: str, name: str) -> DeleteResult:
        """
        Delete the file (path, name) from its nodes and the registry.

        Raises:
            NoSuchFileError: there is no such file
            ConsistencyError: the file is still being uploaded
        """
        path = clean_path(path)
        file = await self.db.get_file(path, name)
        if file is None:
            raise NoSuchFileError()
        if file.status in (FileStatus.PENDING, FileStatus.IN_PROGRESS):
            raise ConsistencyError('That file is still being uploaded!')

        parts = await self.db.get_parts(file.id)
        if not parts:
            await self.db.delete_file(file.id)
            logger.info(f"Deleted {path}{name} (no parts)")
            return DeleteResult(path=path, name=name, parts_total=0, parts_deleted=0,
                                file_removed=True, message='Success!')

        deleted = 0
        for part in parts:
            label = f"{path}{name} ({part.i + 1}/{len(parts)})"
            node = await self.db.get_node(part.node)

            if node is None:
                message = f'{label} failed: node {part.node[:8]} is no longer registered'
            else:
                client = self.client_factory(node.ip, node.port, node.ca,
                                             timeout=self.transfer_timeout)
                response = await client.delete_blob(node.ckey, part.id)
                if response.success:
                    await self.db.delete_part(part.id)
                    deleted += 1
                    logger.debug(f"{label} deleted from {node.address}")
                    continue
                message = f'{label} failed: {response.message}'

            logger.warning(f"Delete stopped, {deleted}/{len(parts)} parts removed. {message}")
            return DeleteResult(path=path, name=name, parts_total=len(parts),
                                parts_deleted=deleted, file_removed=False,
                                failed_index=part.i, message=message)

        await self.db.delete_file(file.id)
        logger.info(f"Deleted {path}{name} ({len(parts)} parts)")
        return DeleteResult(path=path, name=name, parts_total=len(parts),
                            parts_deleted=deleted, file_removed=True, message='Success!')
