"""Tests for the panel SQLite store."""

import pytest

from shardvault.errors import AlreadyExistsError
from shardvault.file.cipher import generate_content_key, generate_nonce
from shardvault.storage.models import FileStatus, NodeInfo, PartRecord


def make_node(node_id: str = 'node-1') -> NodeInfo:
    return NodeInfo(id=node_id, ip='10.0.0.1', port=3001, ca='PEM',
                    key=generate_content_key(), ckey='token')


class TestNodes:

    @pytest.mark.asyncio
    async def test_add_and_get(self, db):
        node = make_node()
        await db.add_node(node)

        loaded = await db.get_node('node-1')

        assert loaded.key == node.key
        assert loaded.ckey == 'token'
        assert loaded.address == '10.0.0.1:3001'
        assert loaded.connected is None

    @pytest.mark.asyncio
    async def test_update_address_keeps_secrets(self, db):
        node = make_node()
        await db.add_node(node)

        await db.update_node_address('node-1', '10.0.0.9', 4000, 'NEW PEM')
        loaded = await db.get_node('node-1')

        assert (loaded.ip, loaded.port, loaded.ca) == ('10.0.0.9', 4000, 'NEW PEM')
        assert loaded.key == node.key
        assert loaded.ckey == node.ckey

    @pytest.mark.asyncio
    async def test_remove(self, db):
        await db.add_node(make_node())
        await db.remove_node('node-1')

        assert await db.get_node('node-1') is None
        assert await db.get_nodes() == []


class TestFiles:

    @pytest.mark.asyncio
    async def test_insert_is_unique_per_path_and_name(self, db):
        await db.insert_file('f1', 'a.txt', '/docs/', 10)

        with pytest.raises(AlreadyExistsError):
            await db.insert_file('f2', 'a.txt', '/docs/', 20)

        await db.insert_file('f3', 'a.txt', '/other/', 20)
        assert (await db.get_file('/docs/', 'a.txt')).id == 'f1'

    @pytest.mark.asyncio
    async def test_status_transitions(self, db):
        await db.insert_file('f1', 'a.txt', '/', 10)
        assert (await db.get_file('/', 'a.txt')).status == FileStatus.PENDING

        await db.set_file_status('f1', FileStatus.COMPLETE)
        assert (await db.get_file('/', 'a.txt')).status == FileStatus.COMPLETE

    @pytest.mark.asyncio
    async def test_list_directory(self, db):
        await db.insert_file('f1', 'a.txt', '/', 1)
        await db.insert_file('f2', 'b.txt', '/docs/', 1)
        await db.insert_file('f3', 'c.txt', '/docs/2024/', 1)
        await db.insert_file('f4', 'd.txt', '/music/live/', 1)
        await db.insert_file('f5', 'e.txt', '/docsextra/', 1)

        files, directories = await db.list_directory('/')
        assert [f.name for f in files] == ['a.txt']
        assert directories == ['docs', 'docsextra', 'music']

        files, directories = await db.list_directory('/docs/')
        assert [f.name for f in files] == ['b.txt']
        assert directories == ['2024']

    @pytest.mark.asyncio
    async def test_list_directory_treats_wildcards_literally(self, db):
        await db.insert_file('f1', 'a.txt', '/a_b/', 1)
        await db.insert_file('f2', 'b.txt', '/axb/', 1)

        files, directories = await db.list_directory('/a_b/')

        assert [f.name for f in files] == ['a.txt']
        assert directories == []


class TestParts:

    @pytest.mark.asyncio
    async def test_parts_ordered_by_index(self, db):
        await db.add_node(make_node())
        await db.insert_file('f1', 'a.txt', '/', 10)
        for i in [2, 0, 10, 1]:
            await db.add_part(PartRecord(id=f'p{i}', file='f1', node='node-1',
                                         iv=generate_nonce(), i=i))

        parts = await db.get_parts('f1')

        assert [p.i for p in parts] == [0, 1, 2, 10]
        assert await db.count_parts_on_node('node-1') == 4

    @pytest.mark.asyncio
    async def test_delete_part(self, db):
        await db.insert_file('f1', 'a.txt', '/', 10)
        nonce = generate_nonce()
        await db.add_part(PartRecord(id='p0', file='f1', node='node-1', iv=nonce, i=0))

        assert (await db.get_parts('f1'))[0].iv == nonce

        await db.delete_part('p0')
        assert await db.get_parts('f1') == []
