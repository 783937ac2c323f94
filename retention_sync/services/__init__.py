# retention_sync/services/__init__.py
"""
Sync services.
"""

from retention_sync.services.credential_cache import CredentialCache
from retention_sync.services.hierarchy_resolver import HierarchyResolver, ResolveResult
from retention_sync.services.progress_tracker import ProgressTracker
from retention_sync.services.retention_pusher import RetentionPusher
from retention_sync.services.sync_engine import SyncConfig, SyncEngine, SyncRunResult
from retention_sync.services.sync_metrics import SyncMetrics

__all__ = [
    "CredentialCache",
    "HierarchyResolver",
    "ProgressTracker",
    "ResolveResult",
    "RetentionPusher",
    "SyncConfig",
    "SyncEngine",
    "SyncMetrics",
    "SyncRunResult",
]
