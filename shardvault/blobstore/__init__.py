"""
Blob Store Module - The Storage Node Process

An authenticated, opaque byte-blob store paired with exactly one panel.
"""

from .store import BlobStore, StorageStats
from .pairing import PairingState, PairResult
from .server import create_node_app, run_node_server

__all__ = [
    'BlobStore',
    'StorageStats',
    'PairingState',
    'PairResult',
    'create_node_app',
    'run_node_server',
]
