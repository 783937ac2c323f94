# retention_sync/services/marketing_cloud/client.py
"""
Marketing Cloud REST client.

Every call takes its bearer token from the CredentialCache it owns; the
transport handles retries and error classification.

Endpoints:
- POST {auth}/v2/token
- GET  /legacy/v1/beta/folder                     (root folder set)
- GET  /legacy/v1/beta/folder/{id}/children       (direct children)
- GET  /data/v1/customobjects/category/{id}       (data extensions, paged)
- PATCH /data/v1/customobjects/{id}               (retention properties)
"""

import logging
import time

from pydantic import ValidationError

from retention_sync.config import Settings
from retention_sync.services.credential_cache import CredentialCache
from retention_sync.services.errors import AuthenticationError, PermanentAPIError
from retention_sync.services.marketing_cloud.transport import HttpTransport
from retention_sync.services.marketing_cloud.types import (
    AuthRequest,
    AuthResponse,
    DataExtension,
    DataExtensionsResponse,
    Folder,
    FoldersResponse,
    RetentionConfig,
)

logger = logging.getLogger(__name__)

DEFAULT_FOLDER_TYPES = ["synchronizeddataextension", "dataextension", "shared_data", "recyclebin"]
CHILDREN_PAGE_SIZE = 1000
DEFAULT_DE_PAGE_SIZE = 96


class MarketingCloudClient:
    """
    Client for the folder and custom object endpoints.

    Usage:
        client = MarketingCloudClient.from_settings(get_settings())
        for folder in client.list_root_folders():
            ...
    """

    def __init__(
        self,
        auth_base_uri: str,
        rest_base_uri: str,
        client_id: str,
        client_secret: str,
        scope: str,
        account_id: str | None = None,
        folder_types: list[str] | None = None,
        transport: HttpTransport | None = None,
        credentials: CredentialCache | None = None,
    ):
        self.auth_base_uri = auth_base_uri.rstrip("/")
        self.rest_base_uri = rest_base_uri.rstrip("/")
        self._auth_request = AuthRequest(
            client_id=client_id,
            client_secret=client_secret,
            scope=scope,
            account_id=account_id or None,
        )
        self.folder_types = folder_types or list(DEFAULT_FOLDER_TYPES)
        self.transport = transport or HttpTransport()
        self.credentials = credentials or CredentialCache(self.authenticate)

    @classmethod
    def from_settings(cls, settings: Settings) -> "MarketingCloudClient":
        transport = HttpTransport(
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            max_attempts=settings.HTTP_MAX_ATTEMPTS,
            max_elapsed=settings.HTTP_MAX_ELAPSED_SECONDS,
        )
        client = cls(
            auth_base_uri=settings.MCE_AUTH_BASE_URI,
            rest_base_uri=settings.MCE_REST_BASE_URI,
            client_id=settings.MCE_CLIENT_ID,
            client_secret=settings.MCE_CLIENT_SECRET,
            scope=settings.MCE_SCOPE,
            account_id=settings.MCE_ACCOUNT_ID,
            folder_types=settings.folder_types,
            transport=transport,
        )
        client.credentials = CredentialCache(
            client.authenticate,
            default_ttl=settings.TOKEN_DEFAULT_TTL_SECONDS,
            refresh_margin=settings.TOKEN_REFRESH_MARGIN_SECONDS,
        )
        return client

    def close(self) -> None:
        self.transport.close()

    # -------------------------------------------------------------------------
    # Auth
    # -------------------------------------------------------------------------

    def authenticate(self) -> AuthResponse:
        """Request a fresh token. Rejections raise AuthenticationError."""
        url = f"{self.auth_base_uri}/v2/token"
        try:
            data = self.transport.request_json(
                "POST",
                url,
                json=self._auth_request.model_dump(exclude_none=True),
            )
        except AuthenticationError:
            raise
        except PermanentAPIError as e:
            raise AuthenticationError(
                f"Authentication failed: {e}",
                status_code=e.status_code,
                response_body=e.response_body,
            ) from e

        try:
            return AuthResponse.model_validate(data or {})
        except ValidationError as e:
            raise AuthenticationError(f"Authentication response missing fields: {e}") from e

    def _auth_headers(self) -> dict:
        return {"Authorization": f"Bearer {self.credentials.acquire()}"}

    def _authorized(self, send, method: str, url: str, **kwargs):
        """
        Send with the cached bearer token.

        A 401 means the token was revoked before its expiry: drop it,
        authenticate again and resend once.
        """
        headers = self._auth_headers()
        try:
            return send(method, url, headers=headers, **kwargs)
        except PermanentAPIError as e:
            if e.status_code != 401:
                raise
            logger.warning(
                f"{method} {url} rejected the cached token, re-authenticating",
                extra={"event": "token_rejected"},
            )
            self.credentials.invalidate()
            return send(method, url, headers=self._auth_headers(), **kwargs)

    # -------------------------------------------------------------------------
    # Folders
    # -------------------------------------------------------------------------

    def list_root_folders(self) -> list[Folder]:
        """Fetch the root folder set for the configured content types."""
        allowed = ", ".join(f"'{t}'" for t in self.folder_types)
        data = self._authorized(
            self.transport.request_json,
            "GET",
            f"{self.rest_base_uri}/legacy/v1/beta/folder",
            params={
                "$where": f"allowedtypes in ({allowed})",
                "Localization": "true",
                "_": str(int(time.time())),
            },
        )
        folders = self._parse(FoldersResponse, data).entry
        logger.info(
            f"Fetched {len(folders)} folders",
            extra={"event": "folders_fetched", "items_total": len(folders)},
        )
        return folders

    def list_subfolders(self, folder_id: str) -> list[Folder]:
        """Fetch the direct children of a folder."""
        data = self._authorized(
            self.transport.request_json,
            "GET",
            f"{self.rest_base_uri}/legacy/v1/beta/folder/{folder_id}/children",
            params={"Localization": "true", "$top": str(CHILDREN_PAGE_SIZE), "$skip": "0"},
        )
        folders = self._parse(FoldersResponse, data).entry
        logger.debug(
            f"Fetched {len(folders)} subfolders of {folder_id}",
            extra={"event": "subfolders_fetched", "folder_id": folder_id, "items_total": len(folders)},
        )
        return folders

    # -------------------------------------------------------------------------
    # Data extensions
    # -------------------------------------------------------------------------

    def list_data_extensions(
        self,
        folder_id: str,
        page: int = 1,
        page_size: int = DEFAULT_DE_PAGE_SIZE,
    ) -> list[DataExtension]:
        """Fetch one page (1-based) of data extensions in a folder, newest first."""
        data = self._authorized(
            self.transport.request_json,
            "GET",
            f"{self.rest_base_uri}/data/v1/customobjects/category/{folder_id}",
            params={
                "retrievalType": "1",
                "$page": str(page),
                "$pagesize": str(page_size),
                "$orderBy": "modifiedDate DESC",
            },
        )
        items = self._parse(DataExtensionsResponse, data).items
        logger.debug(
            f"Fetched {len(items)} data extensions from folder {folder_id} page {page}",
            extra={"event": "data_extensions_fetched", "folder_id": folder_id, "page": page},
        )
        return items

    def update_data_retention(self, data_extension_id: str, config: RetentionConfig) -> None:
        """Replace the retention properties of one data extension."""
        response = self._authorized(
            self.transport.request,
            "PATCH",
            f"{self.rest_base_uri}/data/v1/customobjects/{data_extension_id}",
            json=config.to_wire(),
        )
        if response.status_code not in (200, 204):
            raise PermanentAPIError(
                f"update data retention failed with status {response.status_code}",
                status_code=response.status_code,
                response_body=response.text,
            )
        logger.debug(
            f"Updated retention for data extension {data_extension_id}",
            extra={"event": "retention_updated", "data_extension_id": data_extension_id},
        )

    @staticmethod
    def _parse(model, data):
        try:
            return model.model_validate(data or {})
        except ValidationError as e:
            raise PermanentAPIError(f"Unexpected {model.__name__} payload: {e}") from e


def iter_data_extension_pages(client, folder_id: str, page_size: int = DEFAULT_DE_PAGE_SIZE):
    """
    Yield each non-empty page of data extensions in a folder.

    Stops after the first short or empty page. Fetch errors propagate; the
    pages already yielded stay with the caller.
    """
    page = 1
    while True:
        batch = client.list_data_extensions(folder_id, page=page, page_size=page_size)
        if batch:
            yield batch
        if len(batch) < page_size:
            return
        page += 1
