"""Consumer side: ingestion, liveness and tree reconciliation."""

from .liveness import LivenessMonitor
from .queue import IngestionQueue
from .reconciler import SearchResult, TreeNode, TreeReconciler, natural_key
from .router import Ack, MessageRouter
from .store import IngestionStore

__all__ = [
    "Ack",
    "IngestionQueue",
    "IngestionStore",
    "LivenessMonitor",
    "MessageRouter",
    "SearchResult",
    "TreeNode",
    "TreeReconciler",
    "natural_key",
]
