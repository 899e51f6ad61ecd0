"""
Panel-to-Node Protocol

Design Decision: Transfer Protocol
==================================

Options Considered:
1. Raw TCP with custom framing
   - Lightweight, but TLS, auth headers and streaming bodies by hand
2. HTTPS with a small JSON API
   - Standard TLS, certificate pinning via the ssl module
   - Streaming request/response bodies for free
3. gRPC streaming
   - Heavy dependency for five endpoints

Decision: HTTPS (httpx client, FastAPI on the node)
- Every connection is pinned to the node's own certificate; nothing else
  is trusted
- Hostname checks are off: the pinned certificate is the identity, and
  nodes are often addressed by a bare IP

Endpoints:
```
POST /init           {"token"}         200 paired, 403 other panel, 400 bad body
POST /deinit         {"token"}         200 unpaired, 403 token mismatch, 400 never paired
POST /files/upload   headers: Authorization: Bearer <token>, X-Blob-Id: <id>
                     body: raw encrypted bytes
POST /files/download {"id", "token"}   raw encrypted bytes, 400 missing blob
POST /files/delete   {"id", "token"}   200 deleted, 400 missing blob
```

Every method returns a NodeResponse; network errors, TLS errors, timeouts
and malformed bodies never escape as exceptions.
"""

import logging
import ssl
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional

import httpx

logger = logging.getLogger(__name__)

BLOB_ID_HEADER = 'X-Blob-Id'

# Reachability probes must not hang the registry listing
PROBE_TIMEOUT = 5.0
TRANSFER_TIMEOUT = 30.0

UNREACHABLE_MESSAGE = 'There are problems connecting to the node, please try again!'


@dataclass
class NodeResponse:
    """Normalized outcome of one remote call."""
    success: bool
    message: str = ''
    status: Optional[int] = None  # None: no HTTP response at all

    @property
    def unauthorized(self) -> bool:
        return self.status == 403


def pinned_ssl_context(ca: str) -> ssl.SSLContext:
    """SSL context that trusts exactly the given PEM certificate."""
    context = ssl.create_default_context(cadata=ca)
    context.check_hostname = False
    context.verify_mode = ssl.CERT_REQUIRED
    return context


class NodeClient:
    """
    Client for one storage node.

    A fresh httpx.AsyncClient is opened per call; calls are independent and
    may run concurrently.
    """

    def __init__(self, ip: str, port: int, ca: str,
                 timeout: float = TRANSFER_TIMEOUT,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Args:
            ip: node host or IP
            port: node HTTPS port
            ca: PEM certificate the connection is pinned to
            timeout: ceiling for connect/read/write of each call
            transport: replaces the network (used by tests)
        """
        self.ip = ip
        self.port = port
        self.ca = ca
        self.timeout = timeout
        self._transport = transport

    @property
    def base_url(self) -> str:
        return f"https://{self.ip}:{self.port}"

    def _open(self) -> httpx.AsyncClient:
        kwargs = {
            'base_url': self.base_url,
            'timeout': httpx.Timeout(self.timeout),
        }
        if self._transport is not None:
            kwargs['transport'] = self._transport
        else:
            kwargs['verify'] = pinned_ssl_context(self.ca)
        return httpx.AsyncClient(**kwargs)

    async def _post_json(self, url: str, body: dict) -> NodeResponse:
        try:
            async with self._open() as client:
                response = await client.post(url, json=body)
                return _to_node_response(response)
        except (httpx.HTTPError, ssl.SSLError, OSError, ValueError) as e:
            logger.warning(f"Request {url} to {self.ip}:{self.port} failed: {e!r}")
            return NodeResponse(success=False, message=UNREACHABLE_MESSAGE)

    # === Pairing ===

    async def init(self, token: str) -> NodeResponse:
        """Pair with the node, or prove an existing pairing (probe)."""
        return await self._post_json('/init', {'token': token})

    async def deinit(self, token: str) -> NodeResponse:
        return await self._post_json('/deinit', {'token': token})

    # === Blobs ===

    async def write_blob(self, token: str, blob_id: str,
                         body: AsyncIterator[bytes]) -> NodeResponse:
        """Stream an encrypted blob to the node."""
        headers = {
            'Authorization': f'Bearer {token}',
            BLOB_ID_HEADER: blob_id,
            'Content-Type': 'application/octet-stream',
        }
        try:
            async with self._open() as client:
                response = await client.post('/files/upload', content=body, headers=headers)
                return _to_node_response(response)
        except (httpx.HTTPError, ssl.SSLError, OSError, ValueError) as e:
            logger.warning(f"Upload of {blob_id} to {self.ip}:{self.port} failed: {e!r}")
            return NodeResponse(success=False, message=UNREACHABLE_MESSAGE)

    async def read_blob(self, token: str, blob_id: str,
                        on_chunk: Callable[[bytes], None]) -> NodeResponse:
        """
        Stream an encrypted blob from the node.

        Every received chunk is handed to on_chunk as it arrives.
        """
        try:
            async with self._open() as client:
                async with client.stream('POST', '/files/download',
                                         json={'id': blob_id, 'token': token}) as response:
                    if response.status_code != 200:
                        await response.aread()
                        return _to_node_response(response)
                    async for chunk in response.aiter_bytes():
                        on_chunk(chunk)
                    return NodeResponse(success=True, status=200)
        except (httpx.HTTPError, ssl.SSLError, OSError, ValueError) as e:
            logger.warning(f"Download of {blob_id} from {self.ip}:{self.port} failed: {e!r}")
            return NodeResponse(success=False, message=UNREACHABLE_MESSAGE)

    async def delete_blob(self, token: str, blob_id: str) -> NodeResponse:
        return await self._post_json('/files/delete', {'id': blob_id, 'token': token})


# Builds a client for (ip, port, ca); tests swap in in-process transports
ClientFactory = Callable[..., NodeClient]


def _to_node_response(response: httpx.Response) -> NodeResponse:
    """Normalize a node answer; a body that is not our JSON is a failure."""
    try:
        data = response.json()
    except ValueError:
        return NodeResponse(
            success=False,
            message=f'Malformed response from node (HTTP {response.status_code})',
            status=response.status_code,
        )

    if not isinstance(data, dict):
        return NodeResponse(success=False, message='Malformed response from node',
                            status=response.status_code)

    success = bool(data.get('success')) and response.status_code == 200
    return NodeResponse(
        success=success,
        message=str(data.get('message', '')),
        status=response.status_code,
    )
