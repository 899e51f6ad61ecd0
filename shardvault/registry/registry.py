"""
Node Registry & Trust Handshake

Durable record of the paired nodes plus their derived liveness.

Pairing Flow:
1. Panel generates a random content key and a random auth token
2. Panel calls POST /init on the node, TLS pinned to the node certificate
3. Node accepts iff it is unpaired or already holds that same token
4. Only then is the node row persisted

The token never changes until the node is unpaired. Reconfiguration re-runs
the handshake with the same token, which proves the new address still
leads to the node we paired with.
"""

import asyncio
import logging
import uuid
from typing import List

from ..errors import (
    AuthorizationError, ConnectivityError, NoSuchNodeError, ValidationError,
)
from ..file.cipher import generate_content_key
from ..storage.database import Database
from ..storage.models import NodeInfo
from ..transfer.protocol import (
    ClientFactory, NodeClient, NodeResponse, PROBE_TIMEOUT,
)
from ..utils import random_string

logger = logging.getLogger(__name__)

TOKEN_LENGTH = 128


def _validate_address(ip: str, port, ca: str) -> int:
    if not ip or not port or not ca or not str(ca).strip():
        raise ValidationError('An address, port and certificate are required!')
    try:
        port = int(port)
    except (TypeError, ValueError):
        raise ValidationError(f'Invalid port: {port!r}')
    if not 0 < port < 65536:
        raise ValidationError(f'Invalid port: {port}')
    return port


def _handshake_error(response: NodeResponse):
    """Turn a failed /init into the matching error."""
    if response.unauthorized:
        return AuthorizationError(response.message or None)
    return ConnectivityError(response.message or None)


class NodeRegistry:
    """
    Registry of paired storage nodes.

    Injected into every component that needs nodes; there is no global
    instance.
    """

    def __init__(self, db: Database, client_factory: ClientFactory = NodeClient,
                 probe_timeout: float = PROBE_TIMEOUT):
        """
        Args:
            db: panel database
            client_factory: builds a NodeClient for (ip, port, ca, timeout=...)
            probe_timeout: ceiling for a single handshake/probe
        """
        self.db = db
        self.client_factory = client_factory
        self.probe_timeout = probe_timeout

    def _client(self, ip: str, port: int, ca: str) -> NodeClient:
        return self.client_factory(ip, port, ca, timeout=self.probe_timeout)

    async def _handshake(self, ip: str, port: int, ca: str, token: str) -> NodeResponse:
        client = self._client(ip, port, ca)
        try:
            # Outer ceiling in case a transport ignores its own timeout
            return await asyncio.wait_for(client.init(token), timeout=self.probe_timeout + 1)
        except asyncio.TimeoutError:
            logger.warning(f"Handshake with {ip}:{port} timed out")
            return NodeResponse(success=False, message='The node did not answer in time!')

    # === Lookup ===

    async def get(self, node_id: str) -> NodeInfo:
        node = await self.db.get_node(node_id)
        if node is None:
            raise NoSuchNodeError()
        return node

    async def probe(self, node: NodeInfo) -> bool:
        """Reachability check, reusing the /init handshake."""
        response = await self._handshake(node.ip, node.port, node.ca, node.ckey)
        if not response.success:
            logger.warning(f"Node {node.id[:8]} at {node.address} unreachable: {response.message}")
        return response.success

    async def list_nodes(self, skip_unreachable: bool = True,
                         include_connection_details: bool = False,
                         include_content_key: bool = False) -> List[NodeInfo]:
        """
        Probe every node concurrently and report its liveness.

        Args:
            skip_unreachable: drop nodes that failed the probe
            include_connection_details: keep address, certificate and token
            include_content_key: keep the content key
        """
        nodes = await self.db.get_nodes()
        if not nodes:
            return []

        statuses = await asyncio.gather(*(self.probe(node) for node in nodes))

        result = []
        for node, connected in zip(nodes, statuses):
            if skip_unreachable and not connected:
                continue
            node.connected = connected
            result.append(node.redacted(include_connection_details, include_content_key))
        return result

    async def list_reachable(self, include_connection_details: bool = False,
                             include_content_key: bool = False) -> List[NodeInfo]:
        return await self.list_nodes(
            skip_unreachable=True,
            include_connection_details=include_connection_details,
            include_content_key=include_content_key,
        )

    # === Pairing ===

    async def pair(self, ip: str, port, ca: str) -> NodeInfo:
        """
        Pair a new node.

        Nothing is persisted unless the node accepted the token.

        Raises:
            ValidationError: missing address, port or certificate
            AuthorizationError: the node belongs to another panel
            ConnectivityError: the node could not be reached
        """
        port = _validate_address(ip, port, ca)

        node = NodeInfo(
            id=str(uuid.uuid4()),
            ip=ip,
            port=port,
            ca=ca,
            key=generate_content_key(),
            ckey=random_string(TOKEN_LENGTH),
        )

        response = await self._handshake(ip, port, ca, node.ckey)
        if not response.success:
            logger.warning(f"Pairing with {ip}:{port} failed: {response.message}")
            raise _handshake_error(response)

        await self.db.add_node(node)
        node.connected = True
        logger.info(f"Paired node {node.id[:8]} at {node.address}")
        return node

    async def reconfigure(self, node_id: str, ip: str, port, ca: str,
                          force: bool = False) -> NodeInfo:
        """
        Move a node to a new address and/or certificate.

        The existing token is offered to the new address; a node holding a
        different token refuses it. With force the new details are stored
        even if the handshake failed.

        Raises:
            NoSuchNodeError, ValidationError, AuthorizationError, ConnectivityError
        """
        port = _validate_address(ip, port, ca)
        node = await self.get(node_id)

        response = await self._handshake(ip, port, ca, node.ckey)
        if not response.success:
            if not force:
                logger.warning(f"Reconfiguring node {node_id[:8]} rejected: {response.message}")
                raise _handshake_error(response)
            logger.warning(f"Reconfiguring node {node_id[:8]} forced despite: {response.message}")

        await self.db.update_node_address(node_id, ip, port, ca)
        logger.info(f"Node {node_id[:8]} now at {ip}:{port}")

        node.ip, node.port, node.ca = ip, port, ca
        node.connected = response.success
        return node

    async def unpair(self, node_id: str, force: bool = False) -> NodeResponse:
        """
        Unpair a node and remove its row.

        With force the row is removed even when the node could not be told,
        which leaves the node still paired to us on its side.

        Raises:
            NoSuchNodeError
            ConnectivityError / AuthorizationError: the node refused or was
                unreachable and force is off (the row is kept)
        """
        node = await self.get(node_id)

        client = self.client_factory(node.ip, node.port, node.ca, timeout=self.probe_timeout)
        response = await client.deinit(node.ckey)

        if not response.success:
            if not force:
                logger.warning(f"Unpairing node {node_id[:8]} failed: {response.message}")
                raise _handshake_error(response)
            logger.warning(f"Force-removing node {node_id[:8]}, node keeps its pairing")

        orphaned = await self.db.count_parts_on_node(node_id)
        if orphaned:
            logger.warning(f"Node {node_id[:8]} still holds {orphaned} parts, they become unreadable")

        await self.db.remove_node(node_id)
        logger.info(f"Removed node {node_id[:8]}")
        return response
