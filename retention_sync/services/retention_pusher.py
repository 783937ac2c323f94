"""
Pushes a retention configuration to one data extension and tracks the outcome.

The remote call decides success or failure; tracking writes before and after
it are best effort and logged when they fail.
"""

import logging

from retention_sync.services.marketing_cloud.client import MarketingCloudClient
from retention_sync.services.marketing_cloud.types import RetentionConfig
from retention_sync.services.stores.data_extension_store import DataExtensionStore

logger = logging.getLogger(__name__)


class RetentionPusher:
    def __init__(self, client: MarketingCloudClient, store: DataExtensionStore):
        self.client = client
        self.store = store

    def push(self, data_extension_id: str, config: RetentionConfig) -> None:
        """
        Mark pending, call the remote update, then mark succeeded or failed.

        Raises:
            APIError: the remote update failed (after tracking the failure)
        """
        self._track(self.store.mark_update_pending, data_extension_id, config)

        try:
            self.client.update_data_retention(data_extension_id, config)
        except Exception as e:
            self._track(self.store.mark_update_failed, data_extension_id, config, str(e))
            logger.warning(
                f"Retention update failed for data extension {data_extension_id}: {e}",
                extra={"event": "retention_push_failed", "data_extension_id": data_extension_id},
            )
            raise

        self._track(self.store.mark_update_succeeded, data_extension_id, config)
        logger.debug(
            f"Retention updated for data extension {data_extension_id}",
            extra={"event": "retention_push_succeeded", "data_extension_id": data_extension_id},
        )

    def _track(self, mark, data_extension_id: str, *args) -> None:
        try:
            mark(data_extension_id, *args)
        except Exception as e:
            logger.warning(
                f"Failed to record retention update state for {data_extension_id}: {e}",
                extra={"event": "retention_tracking_failed", "data_extension_id": data_extension_id},
            )
