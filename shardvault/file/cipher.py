"""
Per-Part Encryption Pipeline

Design Decision: Cipher
=======================

Options Considered:
1. AES-256-GCM - Authenticated, but needs the whole part before the tag
   can be checked, which breaks streaming decryption
2. AES-256-CTR - Streaming, any chunk size, no padding
3. ChaCha20 - Streaming too, less hardware support

Decision: AES-256-CTR (via cryptography)
- Every part gets its own random 16-byte nonce, stored with the part row
- The content key is per node and never leaves the panel
- Confidentiality only. No tag is computed, so a node could flip bits
  without the panel noticing.

Streaming Interface:
Every stage implements StreamTransform: next(chunk) returns the transformed
bytes for that chunk and finish() flushes whatever is left. Input chunks are
not retained after next() returns; the returned bytes belong to the caller.
"""

import secrets
from typing import AsyncIterator

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

KEY_SIZE = 32    # AES-256
NONCE_SIZE = 16  # one AES block, the initial CTR counter


def generate_content_key() -> bytes:
    """Random per-node content key."""
    return secrets.token_bytes(KEY_SIZE)


def generate_nonce() -> bytes:
    """Random per-part nonce."""
    return secrets.token_bytes(NONCE_SIZE)


class StreamTransform:
    """A streaming stage: bytes in, bytes out, no whole-part buffering."""

    def next(self, chunk: bytes) -> bytes:
        raise NotImplementedError

    def finish(self) -> bytes:
        return b''


class _CtrTransform(StreamTransform):
    def __init__(self, key: bytes, nonce: bytes):
        if len(key) != KEY_SIZE:
            raise ValueError(f"Content key must be {KEY_SIZE} bytes, got {len(key)}")
        if len(nonce) != NONCE_SIZE:
            raise ValueError(f"Nonce must be {NONCE_SIZE} bytes, got {len(nonce)}")
        cipher = Cipher(algorithms.AES(key), modes.CTR(nonce))
        self._context = self._make_context(cipher)

    def _make_context(self, cipher: Cipher):
        raise NotImplementedError

    def next(self, chunk: bytes) -> bytes:
        return self._context.update(chunk)

    def finish(self) -> bytes:
        return self._context.finalize()


class EncryptTransform(_CtrTransform):
    def _make_context(self, cipher: Cipher):
        return cipher.encryptor()


class DecryptTransform(_CtrTransform):
    def _make_context(self, cipher: Cipher):
        return cipher.decryptor()


async def pipe(source: AsyncIterator[bytes], transform: StreamTransform) -> AsyncIterator[bytes]:
    """
    Run an async byte source through a transform.

    Used directly as an httpx request body, so ciphertext flows onto the
    wire as the plaintext arrives.
    """
    async for chunk in source:
        out = transform.next(chunk)
        if out:
            yield out
    tail = transform.finish()
    if tail:
        yield tail
