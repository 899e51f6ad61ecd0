"""
Error Types

Every error the panel raises on purpose derives from ShardVaultError and
carries the HTTP status the REST layer should answer with.
"""

from typing import Optional


class ShardVaultError(Exception):
    """Base class for expected, user-facing failures."""
    status: int = 400
    default_message: str = 'Invalid request'

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {'success': False, 'message': self.message}


class ValidationError(ShardVaultError):
    """Rejected before any remote call was attempted."""
    status = 400
    default_message = 'You sent an incomplete or wrong request body!'


class NoSuchFileError(ShardVaultError):
    status = 404
    default_message = "That file or directory doesn't exist!"


class NoSuchNodeError(ShardVaultError):
    status = 404
    default_message = 'No node with that ID found!'


class AlreadyExistsError(ShardVaultError):
    status = 409
    default_message = 'That file or directory already exists!'


class NoNodesError(ShardVaultError):
    status = 503
    default_message = 'There are no reachable nodes to store the file on!'


class ConnectivityError(ShardVaultError):
    """A node could not be reached. Never retried automatically."""
    status = 502
    default_message = 'There are problems connecting to the node, please try again!'


class AuthorizationError(ShardVaultError):
    """Token or IP mismatch on the node side."""
    status = 403
    default_message = 'The node is already connected to a different panel!'


class PermissionDeniedError(ShardVaultError):
    status = 403
    default_message = 'You do not have enough permissions to do that action!'


class DownloadInProgressError(ShardVaultError):
    status = 429
    default_message = "You're already downloading a file!"


class ConsistencyError(ShardVaultError):
    """Stored parts do not describe a complete, readable file."""
    status = 409
    default_message = 'The stored parts of that file are incomplete!'
