"""Tests for the storage node: blob store, pairing and HTTP endpoints."""

import httpx
import pytest
import pytest_asyncio
from cryptography import x509

from shardvault.blobstore import BlobStore, PairingState, PairResult, create_node_app
from shardvault.blobstore.certs import ensure_identity
from shardvault.blobstore.store import InvalidBlobIdError

from conftest import collect, stream_of


class TestBlobStore:
    """Tests for local blob files."""

    @pytest.fixture
    def store(self, tmp_path):
        return BlobStore(tmp_path)

    @pytest.mark.asyncio
    async def test_write_read_delete(self, store):
        written = await store.write_blob('blob-1', stream_of(b'encrypted bytes'))

        assert written == 15
        assert store.has_blob('blob-1')
        assert await collect(store.iter_blob('blob-1')) == b'encrypted bytes'

        assert await store.delete_blob('blob-1') is True
        assert await store.delete_blob('blob-1') is False
        assert not store.has_blob('blob-1')

    @pytest.mark.asyncio
    async def test_broken_stream_leaves_nothing_behind(self, store):
        async def broken():
            yield b'first half'
            raise ConnectionResetError('panel went away')

        with pytest.raises(ConnectionResetError):
            await store.write_blob('blob-2', broken())

        assert not store.has_blob('blob-2')
        assert list(store.temp_dir.iterdir()) == []

    @pytest.mark.parametrize("blob_id", ['../escape', 'a/b', '', 'x' * 129, 'a.b'])
    def test_invalid_ids(self, store, blob_id):
        with pytest.raises(InvalidBlobIdError):
            store.has_blob(blob_id)

    @pytest.mark.asyncio
    async def test_stats(self, store):
        await store.write_blob('aa-1', stream_of(b'1234'))
        await store.write_blob('bb-2', stream_of(b'123456'))

        stats = await store.get_stats()

        assert stats.total_blobs == 2
        assert stats.total_bytes == 10


class TestPairingState:
    """Tests for the one-panel pairing rule."""

    def test_exclusive(self, tmp_path):
        pairing = PairingState(tmp_path)

        assert pairing.pair('T', '10.0.0.100') == PairResult.PAIRED
        assert pairing.pair('T', '10.0.0.101') == PairResult.CONFIRMED
        assert pairing.pair('T2', '10.0.0.102') == PairResult.REJECTED
        assert pairing.token == 'T'
        assert pairing.ips == {'10.0.0.100', '10.0.0.101'}

    def test_authorize_needs_token_and_known_ip(self, tmp_path):
        pairing = PairingState(tmp_path)
        pairing.pair('T', '10.0.0.100')

        assert pairing.authorize('T', '10.0.0.100')
        assert not pairing.authorize('T', '10.0.0.200')
        assert not pairing.authorize('T2', '10.0.0.100')

    def test_survives_restart(self, tmp_path):
        PairingState(tmp_path).pair('T', '10.0.0.100')

        restored = PairingState(tmp_path)

        assert restored.paired
        assert restored.authorize('T', '10.0.0.100')

    def test_unpair(self, tmp_path):
        pairing = PairingState(tmp_path)
        assert pairing.unpair('T') == PairResult.NOT_PAIRED

        pairing.pair('T', '10.0.0.100')
        assert pairing.unpair('T2') == PairResult.REJECTED
        assert pairing.unpair('T') == PairResult.UNPAIRED
        assert not PairingState(tmp_path).paired


class TestCertificates:

    def test_generated_once(self, tmp_path):
        first = ensure_identity(tmp_path / 'keys', '127.0.0.1')
        second = ensure_identity(tmp_path / 'keys', '127.0.0.1')

        assert first.created is True
        assert second.created is False
        assert first.certificate_pem == second.certificate_pem

    def test_self_signed_ca(self, tmp_path):
        identity = ensure_identity(tmp_path / 'keys', 'node.example.org')
        certificate = x509.load_pem_x509_certificate(identity.certificate_pem.encode())

        assert certificate.subject == certificate.issuer
        constraints = certificate.extensions.get_extension_for_class(x509.BasicConstraints)
        assert constraints.value.ca is True
        names = certificate.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        assert names.value.get_values_for_type(x509.DNSName) == ['node.example.org']


class TestNodeEndpoints:
    """Tests for the node HTTP API."""

    @pytest.fixture
    def app(self, tmp_path):
        return create_node_app(BlobStore(tmp_path), PairingState(tmp_path / 'keys'))

    @pytest_asyncio.fixture
    async def client(self, app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url='http://node') as client:
            yield client

    @pytest_asyncio.fixture
    async def stranger(self, app):
        transport = httpx.ASGITransport(app=app, client=('10.9.9.9', 4000))
        async with httpx.AsyncClient(transport=transport, base_url='http://node') as client:
            yield client

    async def upload(self, client, token, blob_id, data):
        return await client.post('/files/upload', content=data, headers={
            'Authorization': f'Bearer {token}',
            'X-Blob-Id': blob_id,
        })

    @pytest.mark.asyncio
    async def test_pairing_is_exclusive(self, client):
        assert (await client.post('/init', json={'token': 'T'})).status_code == 200
        assert (await client.post('/init', json={'token': 'T'})).status_code == 200

        response = await client.post('/init', json={'token': 'T2'})

        assert response.status_code == 403
        assert response.json()['success'] is False

    @pytest.mark.asyncio
    async def test_init_requires_token(self, client):
        assert (await client.post('/init', json={})).status_code == 400
        assert (await client.post('/init', content=b'not json')).status_code == 400

    @pytest.mark.asyncio
    async def test_deinit(self, client):
        assert (await client.post('/deinit', json={'token': 'T'})).status_code == 400

        await client.post('/init', json={'token': 'T'})
        assert (await client.post('/deinit', json={'token': 'T2'})).status_code == 403
        assert (await client.post('/deinit', json={'token': 'T'})).status_code == 200

        assert (await client.post('/init', json={'token': 'T2'})).status_code == 200

    @pytest.mark.asyncio
    async def test_blob_lifecycle(self, client):
        await client.post('/init', json={'token': 'T'})

        assert (await self.upload(client, 'T', 'blob-1', b'ciphertext')).status_code == 200

        response = await client.post('/files/download', json={'id': 'blob-1', 'token': 'T'})
        assert response.status_code == 200
        assert response.content == b'ciphertext'

        response = await client.post('/files/delete', json={'id': 'blob-1', 'token': 'T'})
        assert response.json() == {'success': True, 'message': 'Success!'}

        response = await client.post('/files/download', json={'id': 'blob-1', 'token': 'T'})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_unpaired_node_refuses_blobs(self, client):
        response = await self.upload(client, 'T', 'blob-1', b'data')

        assert response.status_code == 400
        assert response.json()['reconnect'] is True

    @pytest.mark.asyncio
    async def test_wrong_token(self, client):
        await client.post('/init', json={'token': 'T'})

        assert (await self.upload(client, 'T2', 'blob-1', b'data')).status_code == 403
        response = await client.post('/files/download', json={'id': 'blob-1', 'token': 'T2'})
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_unknown_ip(self, client, stranger):
        await client.post('/init', json={'token': 'T'})

        assert (await self.upload(stranger, 'T', 'blob-1', b'data')).status_code == 403

    @pytest.mark.asyncio
    async def test_invalid_blob_id(self, client):
        await client.post('/init', json={'token': 'T'})

        assert (await self.upload(client, 'T', '../../etc', b'data')).status_code == 400
        response = await client.post('/files/delete', json={'id': '../../etc', 'token': 'T'})
        assert response.status_code == 400
