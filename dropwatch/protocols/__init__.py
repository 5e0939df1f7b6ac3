"""Protocol adapters for FTP, HTTPS and S3-compatible object storage."""

from dropwatch.protocols.base import ProtocolAdapter, matches_name
from dropwatch.protocols.ftp import FtpAdapter
from dropwatch.protocols.https import HttpsAdapter
from dropwatch.protocols.object_storage import ObjectStorageAdapter
from dropwatch.protocols.registry import AdapterRegistry

__all__ = [
    "AdapterRegistry",
    "FtpAdapter",
    "HttpsAdapter",
    "ObjectStorageAdapter",
    "ProtocolAdapter",
    "matches_name",
]
