"""
Row Types

Plain dataclasses for the three persisted tables. A row is built from an
aiosqlite.Row with from_row() and never carries database handles.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional


class FileStatus(Enum):
    """Upload lifecycle of a file row."""
    PENDING = "PENDING"          # row inserted, nothing sent yet
    IN_PROGRESS = "IN_PROGRESS"  # parts are being produced/sent
    COMPLETE = "COMPLETE"        # every part confirmed
    FAILED = "FAILED"            # abandoned, confirmed parts stay behind


@dataclass
class NodeInfo:
    """
    A paired storage node.

    key is the content key and never leaves the panel. ckey is the bearer
    token shared with the node. connected is derived by probing and is
    never persisted.
    """
    id: str
    ip: Optional[str] = None
    port: Optional[int] = None
    ca: Optional[str] = None
    key: Optional[bytes] = None
    ckey: Optional[str] = None
    connected: Optional[bool] = None

    @property
    def address(self) -> str:
        return f"{self.ip}:{self.port}"

    def redacted(self, include_connection_details: bool,
                 include_content_key: bool) -> 'NodeInfo':
        """Copy with the fields the caller may not see cleared."""
        node = replace(self)
        if not include_connection_details:
            node.ip = None
            node.port = None
            node.ca = None
            node.ckey = None
        if not include_content_key:
            node.key = None
        return node

    def to_dict(self) -> dict:
        """Public view, secrets are never included."""
        return {
            'id': self.id,
            'ip': self.ip,
            'port': self.port,
            'ca': self.ca,
            'connected': self.connected,
        }

    @classmethod
    def from_row(cls, row) -> 'NodeInfo':
        return cls(
            id=row['id'],
            ip=row['ip'],
            port=row['port'],
            ca=row['ca'],
            key=bytes.fromhex(row['key']) if row['key'] else None,
            ckey=row['ckey'],
        )


@dataclass
class FileRecord:
    id: str
    name: str
    path: str
    size: int = 0
    status: FileStatus = FileStatus.PENDING

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'path': self.path,
            'size': self.size,
            'status': self.status.value,
        }

    @classmethod
    def from_row(cls, row) -> 'FileRecord':
        return cls(
            id=row['id'],
            name=row['name'],
            path=row['path'],
            size=row['size'],
            status=FileStatus(row['status']),
        )


@dataclass
class PartRecord:
    """One encrypted slice of a file, stored on exactly one node."""
    id: str
    file: str
    node: str
    iv: bytes
    i: int

    @classmethod
    def from_row(cls, row) -> 'PartRecord':
        return cls(
            id=row['id'],
            file=row['file'],
            node=row['node'],
            iv=bytes(row['iv']),
            i=row['i'],
        )
