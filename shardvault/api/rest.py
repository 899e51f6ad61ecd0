"""
REST API for the Panel

Design Decision: API Framework
==============================

Options Considered:
1. FastAPI - async, pydantic validation, auto-docs
2. Flask - simple, but sync-focused
3. Starlette - what FastAPI is built on, less validation

Decision: FastAPI
- Same framework as the node blob store
- Request bodies validated with pydantic models
- Upload bodies are streamed straight from the request into the orchestrator

API Design:
- Nodes under /api/nodes, files under /api/files
- Every expected failure is a ShardVaultError mapped to its status with a
  {"success": false, "message": ...} body
- The panel lives on app.state, there is no module-level instance
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from ..errors import PermissionDeniedError, ShardVaultError, ValidationError
from ..permissions import Permissions, decode_permissions

logger = logging.getLogger(__name__)

SESSION_HEADER = 'X-Session-Id'


# === Pydantic Models ===

class NodeRequest(BaseModel):
    """Address and certificate of a node to pair or move."""
    ip: Optional[str] = None
    port: Optional[int] = None
    ca: Optional[str] = None
    force: bool = False


# === Auth ===

def _caller_permissions(request: Request,
                        authorization: Optional[str] = Header(None)) -> Permissions:
    """
    Resolve the permissions of the caller.

    Without a configured API token the API is open and every caller gets the
    configured permissions.
    """
    config = request.app.state.panel.config
    if config.api_token:
        if authorization != f'Bearer {config.api_token}':
            raise HTTPException(status_code=401, detail='Invalid or missing API token')
    return decode_permissions(config.api_permissions)


def require(resource: str, capability: str):
    """Route dependency that checks a single capability."""
    def check(permissions: Permissions = Depends(_caller_permissions)) -> Permissions:
        if not permissions.allows(resource, capability):
            raise PermissionDeniedError()
        return permissions
    return check


# === API Creation ===

def create_app(panel) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        panel: Panel instance to control

    Returns:
        FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle startup and shutdown."""
        logger.info("API server starting...")
        await panel.start()
        yield
        await panel.stop()
        logger.info("API server stopping...")

    app = FastAPI(
        title="ShardVault Panel API",
        description="Sharded, encrypted file storage across paired nodes",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.panel = panel

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ShardVaultError)
    async def shardvault_error(request: Request, exc: ShardVaultError):
        return JSONResponse(status_code=exc.status, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content=ValidationError().to_dict())

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
        return JSONResponse(status_code=500,
                            content={'success': False, 'message': 'Internal server error'})

    # === Endpoints ===

    @app.get("/", tags=["General"])
    async def root():
        return {
            "name": "ShardVault Panel",
            "version": "1.0.0",
            "status": "running" if panel.is_running else "not running",
        }

    @app.get("/api/stats", tags=["General"])
    async def get_stats(_: Permissions = Depends(_caller_permissions)):
        return panel.get_stats()

    # === Nodes ===

    @app.get("/api/nodes", tags=["Nodes"])
    async def list_nodes(_: Permissions = Depends(require('node', 'edit'))):
        """All nodes with their probed liveness."""
        nodes = await panel.registry.list_nodes(
            skip_unreachable=False, include_connection_details=True
        )
        return {'success': True, 'nodes': [node.to_dict() for node in nodes]}

    @app.get("/api/nodes/{node_id}", tags=["Nodes"])
    async def get_node(node_id: str, _: Permissions = Depends(require('node', 'edit'))):
        node = await panel.registry.get(node_id)
        node.connected = await panel.registry.probe(node)
        return {'success': True, 'node': node.to_dict()}

    @app.post("/api/nodes/create", tags=["Nodes"])
    async def create_node(body: NodeRequest, _: Permissions = Depends(require('node', 'add'))):
        node = await panel.registry.pair(body.ip, body.port, body.ca)
        return {'success': True, 'message': 'Success!', 'node': node.to_dict()}

    @app.put("/api/nodes/{node_id}", tags=["Nodes"])
    async def update_node(node_id: str, body: NodeRequest,
                          _: Permissions = Depends(require('node', 'edit'))):
        node = await panel.registry.reconfigure(node_id, body.ip, body.port, body.ca,
                                                force=body.force)
        return {'success': True, 'message': 'Success!', 'node': node.to_dict()}

    @app.delete("/api/nodes/{node_id}", tags=["Nodes"])
    async def delete_node(node_id: str, force: bool = False,
                          _: Permissions = Depends(require('node', 'delete'))):
        await panel.registry.unpair(node_id, force=force)
        return {'success': True, 'message': 'Success!'}

    # === Files ===

    @app.get("/api/files", tags=["Files"])
    async def list_files(path: str = '/',
                         _: Permissions = Depends(require('file', 'download'))):
        listing = await panel.list_directory(path)
        return {'success': True, **listing}

    @app.post("/api/files/upload", tags=["Files"])
    async def upload_file(request: Request, name: str, size: int, path: str = '/',
                          _: Permissions = Depends(require('file', 'upload'))):
        """Upload the raw request body as (path, name)."""
        result = await panel.upload(path, name, size, request.stream())
        status = 200 if result.success else 502
        return JSONResponse(status_code=status, content=result.to_dict())

    @app.get("/api/files/download", tags=["Files"])
    async def download_file(name: str, path: str = '/',
                            session_id: str = Header(..., alias=SESSION_HEADER),
                            _: Permissions = Depends(require('file', 'download'))):
        content = await panel.download(path, name, session_id=session_id)
        return Response(
            content=content,
            media_type="application/octet-stream",
            headers={"Content-Disposition": f'attachment; filename="{name}"'},
        )

    @app.delete("/api/files", tags=["Files"])
    async def delete_file(name: str, path: str = '/',
                          _: Permissions = Depends(require('file', 'delete'))):
        result = await panel.delete(path, name)
        status = 200 if result.success else 502
        return JSONResponse(status_code=status, content=result.to_dict())

    return app


async def run_api_server(panel, host: str = "0.0.0.0", port: int = 3000):
    """
    Run the API server.

    Args:
        panel: Panel instance
        host: Host to bind to
        port: Port to listen on
    """
    import uvicorn

    app = create_app(panel)

    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="info",
    )
    server = uvicorn.Server(config)
    await server.serve()
