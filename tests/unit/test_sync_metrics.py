"""
Unit tests for SyncMetrics.
"""

import threading

from retention_sync.services.sync_metrics import SyncMetrics


class TestSyncMetrics:
    """Tests for SyncMetrics class."""

    def test_starts_at_zero(self):
        metrics = SyncMetrics()
        assert metrics.total_succeeded == 0
        assert metrics.total_failed == 0

    def test_totals_sum_all_categories(self):
        metrics = SyncMetrics()
        metrics.add_folder_success()
        metrics.add_folder_failure()
        metrics.add_subfolder_success(3)
        metrics.add_subfolder_failure()
        metrics.add_data_extension_success()
        metrics.add_data_extension_failure(2)
        metrics.add_data_extensions(succeeded=5, failed=1)

        assert metrics.total_succeeded == 1 + 3 + 6
        assert metrics.total_failed == 1 + 1 + 3

    def test_snapshot_is_consistent(self):
        metrics = SyncMetrics()
        metrics.add_folder_success()
        metrics.add_data_extensions(succeeded=2, failed=1)

        snapshot = metrics.snapshot()

        assert snapshot == {
            "folders_succeeded": 1,
            "folders_failed": 0,
            "subfolders_succeeded": 0,
            "subfolders_failed": 0,
            "data_extensions_succeeded": 2,
            "data_extensions_failed": 1,
            "total_succeeded": 3,
            "total_failed": 1,
        }

    def test_concurrent_updates_are_not_lost(self):
        """Every increment from every thread is counted."""
        metrics = SyncMetrics()

        def worker():
            for _ in range(1000):
                metrics.add_data_extension_success()
                metrics.add_subfolder_failure()

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert metrics.data_extensions_succeeded == 8000
        assert metrics.subfolders_failed == 8000
        assert metrics.total_succeeded + metrics.total_failed == 16000
