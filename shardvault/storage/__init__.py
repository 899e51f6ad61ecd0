"""
Storage Module - Persistent Panel Metadata

Uses SQLite for the node, file and part rows.
"""

from .database import Database, init_database
from .models import NodeInfo, FileRecord, FileStatus, PartRecord

__all__ = [
    'Database',
    'init_database',
    'NodeInfo',
    'FileRecord',
    'FileStatus',
    'PartRecord',
]
