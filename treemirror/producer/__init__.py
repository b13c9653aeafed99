"""Producer side: snapshot collection, change detection and dispatch."""

from .collector import (
    DictObjectGraph,
    FileObjectGraph,
    NodeIdentity,
    ObjectGraph,
    SnapshotCollector,
)
from .detector import ChangeDetector, content_hash
from .dispatcher import BatchDispatcher, DispatchResult, split_batches, split_delta
from .sync_loop import CycleResult, SyncLoop

__all__ = [
    "BatchDispatcher",
    "ChangeDetector",
    "CycleResult",
    "DictObjectGraph",
    "DispatchResult",
    "FileObjectGraph",
    "NodeIdentity",
    "ObjectGraph",
    "SnapshotCollector",
    "SyncLoop",
    "content_hash",
    "split_batches",
    "split_delta",
]
