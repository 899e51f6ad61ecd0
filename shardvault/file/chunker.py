"""
Sharding & Placement

Design Decision: Shard Count
============================

A file of L bytes is cut into ceil(L / S) parts, S being the configured
maximum shard size. With force spreading on, a small file is still cut into
at least as many parts as there are reachable nodes, so every node may get
a share of it.

Every part gets floor(L / loops) bytes; the final part also absorbs the
L mod loops remainder bytes.

Example: 25 MB, S = 8 MB, 2 nodes
    loops = ceil(25 / 8) = 4
    amount = 6.25 MB per part, no remainder

Design Decision: Placement
==========================

Each part independently goes to a uniform-random reachable node (sampling
with replacement). Capacity and load are ignored. The random source is
injectable so tests can pin placement.
"""

import math
import random
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Tuple

from ..errors import NoNodesError, ValidationError
from ..storage.models import NodeInfo


@dataclass(frozen=True)
class ShardPlan:
    """How a file of a given size is cut into parts."""
    total_size: int
    loops: int
    amount_per_chunk: int
    remainder: int

    def chunk_length(self, index: int) -> int:
        """Length of part `index`; only the last one carries the remainder."""
        if index < 0 or index >= self.loops:
            raise IndexError(f"Part index {index} out of range (0..{self.loops - 1})")
        if index == self.loops - 1:
            return self.amount_per_chunk + self.remainder
        return self.amount_per_chunk

    def chunk_lengths(self) -> List[int]:
        return [self.chunk_length(i) for i in range(self.loops)]


def plan_shards(total_size: int, shard_size: int, force_spreading: bool,
                reachable_count: int) -> ShardPlan:
    """
    Decide how many parts a file is cut into.

    Args:
        total_size: declared file length in bytes
        shard_size: maximum part size in bytes
        force_spreading: cut into at least `reachable_count` parts
        reachable_count: number of currently reachable nodes

    Raises:
        NoNodesError: if no node is reachable
        ValidationError: for a non-positive size or shard size
    """
    if reachable_count <= 0:
        raise NoNodesError()
    if total_size <= 0:
        raise ValidationError('Empty files cannot be uploaded!')
    if shard_size <= 0:
        raise ValidationError('Shard size must be positive!')

    loops = math.ceil(total_size / shard_size)
    if force_spreading and loops < reachable_count:
        loops = reachable_count

    # Never plan an empty part: more nodes than bytes caps the spread
    loops = min(loops, total_size)

    return ShardPlan(
        total_size=total_size,
        loops=loops,
        amount_per_chunk=total_size // loops,
        remainder=total_size % loops,
    )


class NodePicker:
    """Uniform random choice with replacement over the reachable nodes."""

    def __init__(self, nodes: List[NodeInfo], rng: Optional[random.Random] = None):
        if not nodes:
            raise NoNodesError()
        self.nodes = list(nodes)
        self._rng = rng or random.Random()

    def pick(self) -> NodeInfo:
        return self._rng.choice(self.nodes)


class SizeMismatchError(ValidationError):
    """The stream carried more or fewer bytes than declared."""


class ShardSplitter:
    """
    Cuts an incoming byte stream into the parts of a ShardPlan.

    Nothing is buffered: every source chunk is sliced at part boundaries and
    handed on as (index, piece, done), done marking the piece that completes
    part `index`.
    """

    def __init__(self, plan: ShardPlan):
        self.plan = plan
        self.bytes_received = 0

    @property
    def progress_percent(self) -> float:
        return self.bytes_received / self.plan.total_size * 100

    async def split(self, source: AsyncIterator[bytes]) -> AsyncIterator[Tuple[int, bytes, bool]]:
        """
        Yield (sequence index, piece, done) in stream order.

        Raises:
            SizeMismatchError: when the stream is longer or shorter than
                the planned total
        """
        index = 0
        remaining = self.plan.chunk_length(0)

        async for chunk in source:
            if not chunk:
                continue
            self.bytes_received += len(chunk)
            if self.bytes_received > self.plan.total_size:
                raise SizeMismatchError(
                    f"Received more than the declared {self.plan.total_size} bytes"
                )

            view = memoryview(chunk)
            while view:
                take = min(remaining, len(view))
                remaining -= take
                yield index, bytes(view[:take]), remaining == 0
                view = view[take:]

                if remaining == 0:
                    index += 1
                    if index < self.plan.loops:
                        remaining = self.plan.chunk_length(index)

        if index < self.plan.loops:
            raise SizeMismatchError(
                f"Stream ended after {self.bytes_received} of {self.plan.total_size} bytes"
            )
