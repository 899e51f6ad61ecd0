"""Shared test fixtures for shardvault.

Storage nodes run in-process: every fake node is the real node FastAPI app
behind an httpx.ASGITransport, wrapped in an httpx.MockTransport so tests
can take a node down, fail an endpoint or slow it down.
"""

import asyncio
from pathlib import Path
from typing import Dict, List, Tuple

import httpx
import pytest
import pytest_asyncio

from shardvault.blobstore import BlobStore, PairingState, create_node_app
from shardvault.config import Config
from shardvault.panel import Panel
from shardvault.storage import Database
from shardvault.transfer import NodeClient
from shardvault.transfer.protocol import TRANSFER_TIMEOUT


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line("markers", "integration: Panel and nodes wired together in-process")


class RoundRobin:
    """Stand-in for random.Random that places parts on nodes in turn."""

    def __init__(self):
        self.calls = 0

    def choice(self, seq):
        picked = seq[self.calls % len(seq)]
        self.calls += 1
        return picked


class FakeNode:
    """A real node app reachable without sockets."""

    def __init__(self, name: str, ip: str, port: int, data_dir: Path):
        self.name = name
        self.ip = ip
        self.port = port
        self.ca = f"-----BEGIN CERTIFICATE-----\n{name}\n-----END CERTIFICATE-----\n"
        self.store = BlobStore(data_dir)
        self.pairing = PairingState(data_dir / 'keys')
        self.app = create_node_app(self.store, self.pairing)
        self._asgi = httpx.ASGITransport(app=self.app)

        self.down = False
        self.failures: Dict[str, int] = {}   # path -> injected HTTP status
        self.delays: Dict[str, float] = {}   # path -> seconds
        self.requests: List[str] = []

    async def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append(path)
        if path in self.delays:
            await asyncio.sleep(self.delays[path])
        if path in self.failures:
            return httpx.Response(self.failures[path],
                                  json={'success': False, 'message': 'Injected failure'})
        return await self._asgi.handle_async_request(request)

    async def blob_count(self) -> int:
        return (await self.store.get_stats()).total_blobs


class FakeNetwork:
    """Address book of fake nodes plus the client factory the panel uses."""

    def __init__(self, root: Path):
        self.root = root
        self.nodes: Dict[Tuple[str, int], FakeNode] = {}

    def add_node(self, name: str, port: int = 3001) -> FakeNode:
        ip = f"10.0.0.{len(self.nodes) + 1}"
        node = FakeNode(name, ip, port, self.root / name)
        self.nodes[(ip, port)] = node
        return node

    def move(self, node: FakeNode, ip: str, port: int = None):
        del self.nodes[(node.ip, node.port)]
        node.ip = ip
        node.port = port or node.port
        self.nodes[(node.ip, node.port)] = node

    def client_factory(self, ip: str, port: int, ca: str,
                       timeout: float = TRANSFER_TIMEOUT) -> NodeClient:
        node = self.nodes.get((ip, int(port)))

        async def handler(request: httpx.Request) -> httpx.Response:
            if node is None or node.down:
                raise httpx.ConnectError('Connection refused', request=request)
            if ca != node.ca:
                raise httpx.ConnectError('certificate verify failed', request=request)
            return await node.handle(request)

        return NodeClient(ip, port, ca, timeout=timeout,
                          transport=httpx.MockTransport(handler))


async def collect(source) -> bytes:
    return b''.join([chunk async for chunk in source])


async def stream_of(data: bytes, chunk_size: int = 7):
    for offset in range(0, len(data), chunk_size):
        yield data[offset:offset + chunk_size]


@pytest.fixture
def network(tmp_path):
    return FakeNetwork(tmp_path / 'nodes')


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(tmp_path / 'panel' / 'shardvault.db')
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
def config(tmp_path):
    return Config(panel_data_dir=tmp_path / 'panel')


@pytest_asyncio.fixture
async def panel(config, network):
    instance = Panel(config, client_factory=network.client_factory, rng=RoundRobin())
    await instance.start()
    yield instance
    await instance.stop()
