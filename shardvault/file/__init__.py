"""
File Module - Sharding, Placement and Encryption

Decides how a file is cut into parts, where each part goes, and how each
part is encrypted on its way out.
"""

from .chunker import ShardPlan, ShardSplitter, NodePicker, plan_shards
from .cipher import (
    StreamTransform, EncryptTransform, DecryptTransform,
    generate_content_key, generate_nonce, pipe,
)

__all__ = [
    'ShardPlan',
    'ShardSplitter',
    'NodePicker',
    'plan_shards',
    'StreamTransform',
    'EncryptTransform',
    'DecryptTransform',
    'generate_content_key',
    'generate_nonce',
    'pipe',
]
