"""
ShardVault - sharded, encrypted file storage across paired nodes.

A panel splits every file into parts, encrypts each part with the content
key of the node it is sent to, and keeps the part metadata in SQLite.
Nodes are opaque blob stores that only talk to the one panel they are
paired with.
"""

__version__ = "1.0.0"
