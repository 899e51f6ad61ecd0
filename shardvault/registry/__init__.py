"""
Registry Module - Paired Nodes and the Trust Handshake
"""

from .registry import NodeRegistry

__all__ = ['NodeRegistry']
