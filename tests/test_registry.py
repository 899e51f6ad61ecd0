"""Tests for node pairing, reconfiguration and liveness."""

import pytest
import pytest_asyncio

from shardvault.errors import (
    AuthorizationError, ConnectivityError, NoSuchNodeError, ValidationError,
)
from shardvault.registry import NodeRegistry


@pytest_asyncio.fixture
async def registry(db, network):
    return NodeRegistry(db, client_factory=network.client_factory, probe_timeout=1.0)


class TestPair:

    @pytest.mark.asyncio
    async def test_pair_persists_node(self, registry, network, db):
        fake = network.add_node('alpha')

        node = await registry.pair(fake.ip, fake.port, fake.ca)

        assert node.connected is True
        assert len(node.key) == 32
        assert len(node.ckey) == 128
        assert fake.pairing.token == node.ckey
        stored = await db.get_node(node.id)
        assert stored.ckey == node.ckey
        assert stored.key == node.key

    @pytest.mark.asyncio
    async def test_node_of_another_panel(self, registry, network, db):
        fake = network.add_node('alpha')
        fake.pairing.pair('someone-else', '127.0.0.1')

        with pytest.raises(AuthorizationError):
            await registry.pair(fake.ip, fake.port, fake.ca)

        assert await db.get_nodes() == []

    @pytest.mark.asyncio
    async def test_unreachable(self, registry, network, db):
        fake = network.add_node('alpha')
        fake.down = True

        with pytest.raises(ConnectivityError):
            await registry.pair(fake.ip, fake.port, fake.ca)

        assert await db.get_nodes() == []

    @pytest.mark.asyncio
    async def test_wrong_certificate(self, registry, network):
        fake = network.add_node('alpha')

        with pytest.raises(ConnectivityError):
            await registry.pair(fake.ip, fake.port, 'some other certificate')

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ip,port,ca", [
        ('', 3001, 'PEM'), ('10.0.0.1', None, 'PEM'), ('10.0.0.1', 3001, ''),
        ('10.0.0.1', 70000, 'PEM'), ('10.0.0.1', 'http', 'PEM'),
    ])
    async def test_validation(self, registry, ip, port, ca):
        with pytest.raises(ValidationError):
            await registry.pair(ip, port, ca)


class TestListing:

    @pytest.mark.asyncio
    async def test_unreachable_nodes_skipped(self, registry, network):
        alpha = network.add_node('alpha')
        beta = network.add_node('beta')
        await registry.pair(alpha.ip, alpha.port, alpha.ca)
        await registry.pair(beta.ip, beta.port, beta.ca)
        beta.down = True

        reachable = await registry.list_reachable()
        everything = await registry.list_nodes(skip_unreachable=False)

        assert len(reachable) == 1
        assert [n.connected for n in everything] == [True, False]

    @pytest.mark.asyncio
    async def test_secrets_only_on_request(self, registry, network):
        alpha = network.add_node('alpha')
        await registry.pair(alpha.ip, alpha.port, alpha.ca)

        public = (await registry.list_nodes())[0]
        internal = (await registry.list_nodes(include_connection_details=True,
                                              include_content_key=True))[0]

        assert public.ip is None and public.ckey is None and public.key is None
        assert internal.address == alpha.ip + ':3001'
        assert internal.key is not None
        assert 'key' not in internal.to_dict() and 'ckey' not in internal.to_dict()

    @pytest.mark.asyncio
    async def test_no_nodes(self, registry):
        assert await registry.list_nodes() == []

    @pytest.mark.asyncio
    async def test_get_unknown(self, registry):
        with pytest.raises(NoSuchNodeError):
            await registry.get('missing')


class TestReconfigure:

    @pytest.mark.asyncio
    async def test_node_moved(self, registry, network, db):
        alpha = network.add_node('alpha')
        node = await registry.pair(alpha.ip, alpha.port, alpha.ca)
        network.move(alpha, '10.0.1.50', 4001)

        updated = await registry.reconfigure(node.id, '10.0.1.50', 4001, alpha.ca)

        assert updated.connected is True
        stored = await db.get_node(node.id)
        assert (stored.ip, stored.port) == ('10.0.1.50', 4001)
        assert stored.ckey == node.ckey
        assert stored.key == node.key

    @pytest.mark.asyncio
    async def test_new_address_owned_by_another_panel(self, registry, network, db):
        alpha = network.add_node('alpha')
        beta = network.add_node('beta')
        beta.pairing.pair('someone-else', '127.0.0.1')
        node = await registry.pair(alpha.ip, alpha.port, alpha.ca)

        with pytest.raises(AuthorizationError):
            await registry.reconfigure(node.id, beta.ip, beta.port, beta.ca)

        assert (await db.get_node(node.id)).ip == alpha.ip

    @pytest.mark.asyncio
    async def test_force_stores_unreachable_address(self, registry, network, db):
        alpha = network.add_node('alpha')
        node = await registry.pair(alpha.ip, alpha.port, alpha.ca)

        updated = await registry.reconfigure(node.id, '10.0.9.9', 3001, alpha.ca, force=True)

        assert updated.connected is False
        assert (await db.get_node(node.id)).ip == '10.0.9.9'

    @pytest.mark.asyncio
    async def test_unforced_unreachable_is_rejected(self, registry, network, db):
        alpha = network.add_node('alpha')
        node = await registry.pair(alpha.ip, alpha.port, alpha.ca)

        with pytest.raises(ConnectivityError):
            await registry.reconfigure(node.id, '10.0.9.9', 3001, alpha.ca)

        assert (await db.get_node(node.id)).ip == alpha.ip


class TestUnpair:

    @pytest.mark.asyncio
    async def test_unpair(self, registry, network, db):
        alpha = network.add_node('alpha')
        node = await registry.pair(alpha.ip, alpha.port, alpha.ca)

        await registry.unpair(node.id)

        assert await db.get_node(node.id) is None
        assert not alpha.pairing.paired

    @pytest.mark.asyncio
    async def test_unreachable_needs_force(self, registry, network, db):
        alpha = network.add_node('alpha')
        node = await registry.pair(alpha.ip, alpha.port, alpha.ca)
        alpha.down = True

        with pytest.raises(ConnectivityError):
            await registry.unpair(node.id)
        assert await db.get_node(node.id) is not None

        await registry.unpair(node.id, force=True)
        assert await db.get_node(node.id) is None
        assert alpha.pairing.paired

    @pytest.mark.asyncio
    async def test_unknown_node(self, registry):
        with pytest.raises(NoSuchNodeError):
            await registry.unpair('missing')
