"""
Run-wide success/failure counters.

Updated concurrently by every worker of a sync run; all reads and writes go
through a single lock so totals are always consistent with the parts.
"""

import threading
from dataclasses import dataclass, field


@dataclass
class SyncMetrics:
    """
    Counters for one sync run.

    Usage:
        metrics = SyncMetrics()
        metrics.add_folder_success()
        metrics.add_data_extensions(succeeded=10, failed=2)
        metrics.snapshot()
    """

    folders_succeeded: int = 0
    folders_failed: int = 0
    subfolders_succeeded: int = 0
    subfolders_failed: int = 0
    data_extensions_succeeded: int = 0
    data_extensions_failed: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    def add_folder_success(self, count: int = 1) -> None:
        with self._lock:
            self.folders_succeeded += count

    def add_folder_failure(self, count: int = 1) -> None:
        with self._lock:
            self.folders_failed += count

    def add_subfolder_success(self, count: int = 1) -> None:
        with self._lock:
            self.subfolders_succeeded += count

    def add_subfolder_failure(self, count: int = 1) -> None:
        with self._lock:
            self.subfolders_failed += count

    def add_data_extension_success(self, count: int = 1) -> None:
        with self._lock:
            self.data_extensions_succeeded += count

    def add_data_extension_failure(self, count: int = 1) -> None:
        with self._lock:
            self.data_extensions_failed += count

    def add_data_extensions(self, succeeded: int, failed: int) -> None:
        """Record a whole batch of leaf outcomes at once."""
        with self._lock:
            self.data_extensions_succeeded += succeeded
            self.data_extensions_failed += failed

    @property
    def total_succeeded(self) -> int:
        with self._lock:
            return self.folders_succeeded + self.subfolders_succeeded + self.data_extensions_succeeded

    @property
    def total_failed(self) -> int:
        with self._lock:
            return self.folders_failed + self.subfolders_failed + self.data_extensions_failed

    def snapshot(self) -> dict:
        """Consistent copy of every counter plus the totals."""
        with self._lock:
            counters = {
                "folders_succeeded": self.folders_succeeded,
                "folders_failed": self.folders_failed,
                "subfolders_succeeded": self.subfolders_succeeded,
                "subfolders_failed": self.subfolders_failed,
                "data_extensions_succeeded": self.data_extensions_succeeded,
                "data_extensions_failed": self.data_extensions_failed,
            }
        counters["total_succeeded"] = (
            counters["folders_succeeded"] + counters["subfolders_succeeded"] + counters["data_extensions_succeeded"]
        )
        counters["total_failed"] = (
            counters["folders_failed"] + counters["subfolders_failed"] + counters["data_extensions_failed"]
        )
        return counters
