"""
Transfer Module - Upload/Download/Delete Orchestration

Talks to storage nodes over pinned HTTPS.
"""

from .protocol import NodeClient, NodeResponse, ClientFactory
from .uploader import FileUploader, UploadResult, UploadProgress
from .downloader import FileDownloader, DownloadSession, DownloadProgress
from .deleter import FileDeleter, DeleteResult

__all__ = [
    'NodeClient',
    'NodeResponse',
    'ClientFactory',
    'FileUploader',
    'UploadResult',
    'UploadProgress',
    'FileDownloader',
    'DownloadSession',
    'DownloadProgress',
    'FileDeleter',
    'DeleteResult',
]
