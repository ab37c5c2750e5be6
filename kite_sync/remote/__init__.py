"""
Remote storage module for kite-sync.

Provides the HTTP client for the remote storage API and the immutable
models it returns.

Usage:
    from kite_sync.remote import RemoteStorageClient

    client = RemoteStorageClient(config.remote)
    page = client.fetch_delta_page(cursor)
"""

from kite_sync.remote.client import RemoteStorageClient
from kite_sync.remote.models import (
    DeltaEntry,
    DeltaPage,
    RemoteMetadata,
    TemporaryLink,
    parse_remote_timestamp,
)

__all__ = [
    "RemoteStorageClient",
    "DeltaEntry",
    "DeltaPage",
    "RemoteMetadata",
    "TemporaryLink",
    "parse_remote_timestamp",
]
