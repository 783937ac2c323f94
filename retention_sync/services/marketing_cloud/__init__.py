from retention_sync.services.marketing_cloud.client import MarketingCloudClient
from retention_sync.services.marketing_cloud.transport import HttpTransport
from retention_sync.services.marketing_cloud.types import (
    AuthResponse,
    DataExtension,
    Folder,
    RetentionConfig,
)

__all__ = [
    "MarketingCloudClient",
    "HttpTransport",
    "AuthResponse",
    "DataExtension",
    "Folder",
    "RetentionConfig",
]
