"""
Node Pairing State

One node belongs to at most one panel. The panel proves itself with the
token it generated at pairing time; the node remembers that token and the
IPs the panel connected from, and both survive a restart.
"""

import json
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Optional, Set

logger = logging.getLogger(__name__)


class PairResult(Enum):
    PAIRED = "PAIRED"              # first pairing, token stored
    CONFIRMED = "CONFIRMED"        # same token offered again
    REJECTED = "REJECTED"          # a different panel owns this node
    NOT_PAIRED = "NOT_PAIRED"      # unpair/auth while unpaired
    UNPAIRED = "UNPAIRED"


class PairingState:
    """Persistent token + observed panel IPs, stored as JSON."""

    def __init__(self, keys_dir: Path):
        self.keys_dir = Path(keys_dir)
        self.keys_dir.mkdir(parents=True, exist_ok=True)
        self.path = self.keys_dir / 'pairing.json'
        self.token: Optional[str] = None
        self.ips: Set[str] = set()
        self._load()

    @property
    def paired(self) -> bool:
        return self.token is not None

    def _load(self):
        if not self.path.exists():
            return
        with open(self.path) as f:
            data = json.load(f)
        self.token = data.get('token') or None
        self.ips = set(data.get('ips', []))
        if self.token:
            logger.info(f"Restored pairing ({len(self.ips)} known panel IPs)")

    def _save(self):
        temp_path = self.path.with_suffix('.tmp')
        with open(temp_path, 'w') as f:
            json.dump({'token': self.token, 'ips': sorted(self.ips)}, f)
        os.replace(temp_path, self.path)

    def pair(self, token: str, ip: str) -> PairResult:
        """
        Accept a token if unpaired, or if it equals the stored one.

        The caller's IP is recorded either way on success.
        """
        if self.token is not None and self.token != token:
            return PairResult.REJECTED

        result = PairResult.CONFIRMED if self.token is not None else PairResult.PAIRED
        self.token = token
        self.ips.add(ip)
        self._save()

        if result == PairResult.PAIRED:
            logger.info(f"Paired with panel at {ip}")
        return result

    def unpair(self, token: str) -> PairResult:
        if self.token is None:
            return PairResult.NOT_PAIRED
        if token != self.token:
            return PairResult.REJECTED

        self.token = None
        self.ips.clear()
        if self.path.exists():
            self.path.unlink()
        logger.info("Unpaired from panel")
        return PairResult.UNPAIRED

    def authorize(self, token: Optional[str], ip: str) -> bool:
        """Token must match and the IP must have paired before."""
        return self.token is not None and token == self.token and ip in self.ips
