"""
SQLite Database for Panel Metadata

Design Decision: Why SQLite?
============================

Options Considered:
1. SQLite - Embedded, no server, ACID compliant
2. JSON files - Simple, but no querying and no uniqueness constraints
3. PostgreSQL/MySQL - Overkill, requires server

Decision: SQLite with aiosqlite
- Zero configuration, single file next to the panel
- UNIQUE(path, name) gives us the upload lock for free
- Async support via aiosqlite

Tables:
- nodes: paired storage nodes (address, pinned cert, content key, token)
- files: one row per logical file, inserted before any byte is sent
- parts: one row per confirmed encrypted part
"""

import logging
from pathlib import Path
from typing import Optional, List, Tuple

import aiosqlite

from .models import NodeInfo, FileRecord, FileStatus, PartRecord
from ..errors import AlreadyExistsError

logger = logging.getLogger(__name__)

# Schema version for migrations
SCHEMA_VERSION = 1


class Database:
    """
    SQLite database for persistent panel state.

    All writes commit immediately; the panel never holds a transaction
    open across a remote call.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._connection: Optional[aiosqlite.Connection] = None

    async def connect(self):
        """Open database connection."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self.db_path)
        self._connection.row_factory = aiosqlite.Row

        await self._connection.execute("PRAGMA foreign_keys = ON")

        await self._init_schema()

        logger.info(f"Database connected: {self.db_path}")

    async def close(self):
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def _init_schema(self):
        """Initialize database schema."""
        await self._connection.executescript("""
            CREATE TABLE IF NOT EXISTS nodes (
                id TEXT PRIMARY KEY,
                ip TEXT NOT NULL,
                port INTEGER NOT NULL,
                ca TEXT NOT NULL,
                key TEXT NOT NULL,
                ckey TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS files (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                path TEXT NOT NULL,
                size INTEGER NOT NULL DEFAULT 0,
                status TEXT NOT NULL DEFAULT 'PENDING',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                UNIQUE (path, name)
            );

            -- No foreign key on node: a force-unpaired node leaves its
            -- parts behind and they must stay visible
            CREATE TABLE IF NOT EXISTS parts (
                id TEXT PRIMARY KEY,
                file TEXT NOT NULL,
                node TEXT NOT NULL,
                iv BLOB NOT NULL,
                i INTEGER NOT NULL,
                FOREIGN KEY (file) REFERENCES files(id)
            );

            CREATE INDEX IF NOT EXISTS idx_parts_file ON parts(file, i);
            CREATE INDEX IF NOT EXISTS idx_files_path ON files(path);
        """)

        await self._connection.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        await self._connection.commit()

    # === Nodes ===

    async def add_node(self, node: NodeInfo):
        """Insert a freshly paired node."""
        await self._connection.execute(
            """INSERT INTO nodes (id, ip, port, ca, key, ckey)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (node.id, node.ip, node.port, node.ca, node.key.hex(), node.ckey)
        )
        await self._connection.commit()

    async def get_node(self, node_id: str) -> Optional[NodeInfo]:
        async with self._connection.execute(
            "SELECT * FROM nodes WHERE id = ?", (node_id,)
        ) as cursor:
            row = await cursor.fetchone()
            return NodeInfo.from_row(row) if row else None

    async def get_nodes(self) -> List[NodeInfo]:
        async with self._connection.execute(
            "SELECT * FROM nodes ORDER BY rowid"
        ) as cursor:
            rows = await cursor.fetchall()
            return [NodeInfo.from_row(row) for row in rows]

    async def update_node_address(self, node_id: str, ip: str, port: int, ca: str):
        """Point a node row at a new address; key and token never change."""
        await self._connection.execute(
            "UPDATE nodes SET ip = ?, port = ?, ca = ? WHERE id = ?",
            (ip, port, ca, node_id)
        )
        await self._connection.commit()

    async def remove_node(self, node_id: str):
        await self._connection.execute(
            "DELETE FROM nodes WHERE id = ?", (node_id,)
        )
        await self._connection.commit()

    async def count_parts_on_node(self, node_id: str) -> int:
        async with self._connection.execute(
            "SELECT COUNT(*) AS n FROM parts WHERE node = ?", (node_id,)
        ) as cursor:
            row = await cursor.fetchone()
            return row['n']

    # === Files ===

    async def insert_file(self, file_id: str, name: str, path: str, size: int) -> FileRecord:
        """
        Insert the placeholder row for a new upload.

        Raises:
            AlreadyExistsError: if (path, name) is already taken
        """
        try:
            await self._connection.execute(
                """INSERT INTO files (id, name, path, size, status)
                   VALUES (?, ?, ?, ?, ?)""",
                (file_id, name, path, size, FileStatus.PENDING.value)
            )
            await self._connection.commit()
        except aiosqlite.IntegrityError:
            await self._connection.rollback()
            raise AlreadyExistsError()

        return FileRecord(id=file_id, name=name, path=path, size=size)

    async def get_file(self, path: str, name: str) -> Optional[FileRecord]:
        async with self._connection.execute(
            "SELECT * FROM files WHERE path = ? AND name = ?", (path, name)
        ) as cursor:
            row = await cursor.fetchone()
            return FileRecord.from_row(row) if row else None

    async def set_file_status(self, file_id: str, status: FileStatus):
        await self._connection.execute(
            "UPDATE files SET status = ? WHERE id = ?", (status.value, file_id)
        )
        await self._connection.commit()

    async def delete_file(self, file_id: str):
        await self._connection.execute(
            "DELETE FROM files WHERE id = ?", (file_id,)
        )
        await self._connection.commit()

    async def list_directory(self, path: str) -> Tuple[List[FileRecord], List[str]]:
        """
        List a logical directory.

        Returns:
            (files stored directly at path, names of immediate sub-directories)
        """
        async with self._connection.execute(
            "SELECT * FROM files WHERE path = ? ORDER BY name", (path,)
        ) as cursor:
            files = [FileRecord.from_row(row) for row in await cursor.fetchall()]

        async with self._connection.execute(
            "SELECT DISTINCT path FROM files WHERE substr(path, 1, length(?)) = ? AND path != ?",
            (path, path, path)
        ) as cursor:
            nested = [row['path'] for row in await cursor.fetchall()]

        directories = sorted({p[len(path):].split('/', 1)[0] for p in nested})
        return files, directories

    # === Parts ===

    async def add_part(self, part: PartRecord):
        """Record a part. Only called after the node confirmed the write."""
        await self._connection.execute(
            """INSERT INTO parts (id, file, node, iv, i)
               VALUES (?, ?, ?, ?, ?)""",
            (part.id, part.file, part.node, part.iv, part.i)
        )
        await self._connection.commit()

    async def get_parts(self, file_id: str) -> List[PartRecord]:
        """All parts of a file ordered by sequence index."""
        async with self._connection.execute(
            "SELECT * FROM parts WHERE file = ? ORDER BY i", (file_id,)
        ) as cursor:
            rows = await cursor.fetchall()
            return [PartRecord.from_row(row) for row in rows]

    async def delete_part(self, part_id: str):
        await self._connection.execute(
            "DELETE FROM parts WHERE id = ?", (part_id,)
        )
        await self._connection.commit()


async def init_database(data_dir: Path) -> Database:
    """Initialize and return a database instance."""
    db_path = Path(data_dir) / "shardvault.db"
    db = Database(db_path)
    await db.connect()
    return db
