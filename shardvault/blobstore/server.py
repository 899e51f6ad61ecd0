"""
Node Blob Store Server

The node-side half of the system: an authenticated, opaque blob store.
It knows nothing about files, part ordering or encryption keys.

Every blob endpoint requires the pairing token and a caller IP that was
seen during a successful /init.
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from .pairing import PairingState, PairResult
from .store import BlobStore, is_valid_blob_id
from .certs import ensure_identity
from ..transfer.protocol import BLOB_ID_HEADER

logger = logging.getLogger(__name__)

SUCCESS = 'Success!'
INVALID_BODY = 'You sent an incomplete or wrong request body (you probably want to try again)!'
ALREADY_CONNECTED_TO_PANEL = 'The node is already connected to a different panel!'
NOT_CONNECTED_TO_PANEL = 'The node is not (yet) connected to a panel!'
NO_SUCH_FILE_OR_DIR = "That file or directory doesn't exist!"


# === Pydantic Models ===

class TokenRequest(BaseModel):
    token: Optional[str] = None


class BlobRequest(BaseModel):
    id: Optional[str] = None
    token: Optional[str] = None


def _reply(status: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content={'success': status == 200, 'message': message, **extra},
    )


def _caller_ip(request: Request) -> str:
    return request.client.host if request.client else ''


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.startswith('Bearer '):
        return authorization[len('Bearer '):]
    return None


def create_node_app(store: BlobStore, pairing: PairingState) -> FastAPI:
    """
    Create the node FastAPI application.

    Args:
        store: where blobs live
        pairing: the persisted panel pairing
    """
    app = FastAPI(
        title="ShardVault Node",
        description="Opaque encrypted blob store paired with one panel",
        version="1.0.0",
    )
    app.state.store = store
    app.state.pairing = pairing

    @app.exception_handler(RequestValidationError)
    async def invalid_body(request: Request, exc: RequestValidationError):
        return _reply(400, INVALID_BODY)

    def check_access(token: Optional[str], request: Request) -> Optional[JSONResponse]:
        if not pairing.paired:
            return _reply(400, NOT_CONNECTED_TO_PANEL, reconnect=True)
        if not pairing.authorize(token, _caller_ip(request)):
            logger.warning(f"Rejected blob request from {_caller_ip(request)}")
            return _reply(403, ALREADY_CONNECTED_TO_PANEL)
        return None

    # === Pairing ===

    @app.post("/init")
    async def init(body: TokenRequest, request: Request):
        if not body.token:
            return _reply(400, INVALID_BODY)

        result = pairing.pair(body.token, _caller_ip(request))
        if result == PairResult.REJECTED:
            return _reply(403, ALREADY_CONNECTED_TO_PANEL)
        return _reply(200, SUCCESS)

    @app.post("/deinit")
    async def deinit(body: TokenRequest):
        result = pairing.unpair(body.token or '')
        if result == PairResult.NOT_PAIRED:
            return _reply(400, NOT_CONNECTED_TO_PANEL, reconnect=True)
        if result == PairResult.REJECTED:
            return _reply(403, ALREADY_CONNECTED_TO_PANEL)
        return _reply(200, SUCCESS)

    # === Blobs ===

    @app.post("/files/upload")
    async def write_blob(request: Request,
                         authorization: Optional[str] = Header(None),
                         x_blob_id: Optional[str] = Header(None, alias=BLOB_ID_HEADER)):
        denied = check_access(_bearer(authorization), request)
        if denied:
            return denied
        if not is_valid_blob_id(x_blob_id):
            return _reply(400, INVALID_BODY)

        written = await store.write_blob(x_blob_id, request.stream())
        logger.debug(f"Stored blob {x_blob_id} ({written:,} bytes)")
        return _reply(200, SUCCESS)

    @app.post("/files/download")
    async def read_blob(body: BlobRequest, request: Request):
        denied = check_access(body.token, request)
        if denied:
            return denied
        if not is_valid_blob_id(body.id):
            return _reply(400, INVALID_BODY)
        if not store.has_blob(body.id):
            return _reply(400, NO_SUCH_FILE_OR_DIR)

        return StreamingResponse(
            store.iter_blob(body.id),
            media_type="application/octet-stream",
        )

    @app.post("/files/delete")
    async def delete_blob(body: BlobRequest, request: Request):
        denied = check_access(body.token, request)
        if denied:
            return denied
        if not is_valid_blob_id(body.id):
            return _reply(400, INVALID_BODY)

        if not await store.delete_blob(body.id):
            return _reply(400, NO_SUCH_FILE_OR_DIR)
        logger.debug(f"Deleted blob {body.id}")
        return _reply(200, SUCCESS)

    @app.get("/")
    async def root():
        return {"message": "Please use the panel!"}

    return app


async def run_node_server(data_dir: Path, host: str = "0.0.0.0", port: int = 3001,
                          common_name: str = "127.0.0.1",
                          on_identity_created=None):
    """
    Run a storage node over HTTPS.

    Args:
        data_dir: node data directory (blobs, keys)
        host: Host to bind to
        port: Port to listen on
        common_name: name or IP the certificate is issued for
        on_identity_created: called with the certificate PEM the first time
            the node generates its certificate
    """
    import uvicorn

    data_dir = Path(data_dir)
    identity = ensure_identity(data_dir / 'keys', common_name)
    if identity.created and on_identity_created:
        on_identity_created(identity.certificate_pem)

    app = create_node_app(BlobStore(data_dir), PairingState(data_dir / 'keys'))

    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="info",
        ssl_keyfile=str(identity.key_path),
        ssl_certfile=str(identity.cert_path),
    )
    server = uvicorn.Server(config)
    await server.serve()
