from retention_sync.services.stores.base import BaseStore, Violation, classify_integrity_error
from retention_sync.services.stores.data_extension_store import DataExtensionStore
from retention_sync.services.stores.folder_store import FolderStore
from retention_sync.services.stores.sync_job_store import SyncJobStore

__all__ = [
    "BaseStore",
    "DataExtensionStore",
    "FolderStore",
    "SyncJobStore",
    "Violation",
    "classify_integrity_error",
]
