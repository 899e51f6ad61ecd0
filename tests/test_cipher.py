"""Tests for the per-part AES-256-CTR stream cipher."""

import pytest

from shardvault.file.cipher import (
    KEY_SIZE, NONCE_SIZE, DecryptTransform, EncryptTransform,
    generate_content_key, generate_nonce, pipe,
)

from conftest import collect, stream_of


async def encrypt(data: bytes, key: bytes, nonce: bytes, chunk_size: int = 1000) -> bytes:
    return await collect(pipe(stream_of(data, chunk_size), EncryptTransform(key, nonce)))


class TestKeys:

    def test_sizes(self):
        assert len(generate_content_key()) == KEY_SIZE
        assert len(generate_nonce()) == NONCE_SIZE

    def test_nonces_differ(self):
        assert generate_nonce() != generate_nonce()

    def test_wrong_key_length(self):
        with pytest.raises(ValueError):
            EncryptTransform(b'short', generate_nonce())

    def test_wrong_nonce_length(self):
        with pytest.raises(ValueError):
            DecryptTransform(generate_content_key(), b'short')


class TestStreaming:

    @pytest.mark.asyncio
    async def test_decrypts_across_arbitrary_chunk_boundaries(self):
        key, nonce = generate_content_key(), generate_nonce()
        data = bytes(range(256)) * 50

        ciphertext = await encrypt(data, key, nonce, chunk_size=1000)
        plaintext = await collect(pipe(stream_of(ciphertext, 333), DecryptTransform(key, nonce)))

        assert len(ciphertext) == len(data)
        assert ciphertext != data
        assert plaintext == data

    @pytest.mark.asyncio
    async def test_chunking_does_not_change_ciphertext(self):
        key, nonce = generate_content_key(), generate_nonce()
        data = bytes(range(256)) * 10

        assert await encrypt(data, key, nonce, 7) == await encrypt(data, key, nonce, 2000)

    @pytest.mark.asyncio
    async def test_nonce_changes_ciphertext(self):
        key = generate_content_key()
        data = b'same plaintext' * 10

        first = await encrypt(data, key, generate_nonce())
        second = await encrypt(data, key, generate_nonce())

        assert first != second

    @pytest.mark.asyncio
    async def test_wrong_key_garbles(self):
        nonce = generate_nonce()
        data = b'secret part contents'

        ciphertext = await encrypt(data, generate_content_key(), nonce)
        transform = DecryptTransform(generate_content_key(), nonce)

        assert transform.next(ciphertext) + transform.finish() != data
