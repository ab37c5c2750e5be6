"""
Sync module for kite-sync.

This module keeps the local mirror in step with the remote storage:
    - service: Delta sync, metadata fill, cache policy and album art
    - queue: Deduplicating background queue for metadata enrichment
    - network: Metered-network oracle used by the cache policy

Usage:
    from kite_sync.sync import SyncService

    service = SyncService.from_config(config)
    for entry_id in service.synchronize_entry_db():
        ...
"""

from kite_sync.sync.network import NetworkCostOracle
from kite_sync.sync.queue import MetadataSyncQueue
from kite_sync.sync.service import EntryLocks, SyncService, validate_download_url

__all__ = [
    "EntryLocks",
    "MetadataSyncQueue",
    "NetworkCostOracle",
    "SyncService",
    "validate_download_url",
]
