"""
Folder persistence.

Upserts insert new rows and update existing ones in place. A unique violation
(another worker inserted the same folder first) is retried once as an update.
A foreign key violation means the parent row is not committed yet and is
raised as ParentMissingError so the hierarchy resolver can retry later.
"""

import logging

from retention_sync.models import Folder as FolderRow
from retention_sync.services.marketing_cloud.types import Folder, is_root_parent
from retention_sync.services.stores.base import BaseStore

logger = logging.getLogger(__name__)


def folder_row_values(folder: Folder) -> dict:
    """Column values for a wire folder; the root sentinel becomes NULL."""
    return {
        "type": folder.type,
        "last_updated": folder.last_updated,
        "created_by": folder.created_by,
        "parent_id": None if is_root_parent(folder.parent_id) else folder.parent_id,
        "name": folder.name,
        "description": folder.description or None,
        "icon_type": folder.icon_type or None,
    }


class FolderStore(BaseStore):
    """Stores Folder rows, one session per call."""

    def upsert(self, folder: Folder) -> None:
        """
        Insert or update one folder.

        Raises:
            ParentMissingError: parent row does not exist yet
            PersistenceError: any other database failure
        """
        self.write(lambda db: self._apply(db, folder), entity_id=folder.id)

    def upsert_batch(self, folders: list[Folder]) -> None:
        """Upsert several folders in one transaction (parents must come first)."""
        if not folders:
            return

        def apply_all(db):
            for folder in folders:
                self._apply(db, folder)

        self.write(apply_all)

    def get(self, folder_id: str) -> FolderRow | None:
        with self.session() as db:
            return db.query(FolderRow).filter(FolderRow.id == folder_id).first()

    def list_children(self, parent_id: str) -> list[FolderRow]:
        with self.session() as db:
            return db.query(FolderRow).filter(FolderRow.parent_id == parent_id).order_by(FolderRow.name).all()

    def count(self) -> int:
        with self.session() as db:
            return db.query(FolderRow).count()

    def _apply(self, db, folder: Folder) -> None:
        values = folder_row_values(folder)
        existing = db.get(FolderRow, folder.id)
        if existing is None:
            db.add(FolderRow(id=folder.id, **values))
            logger.debug(f"Creating folder {folder.id}", extra={"folder_id": folder.id})
            return

        for column, value in values.items():
            setattr(existing, column, value)
        logger.debug(f"Updating existing folder {folder.id}", extra={"folder_id": folder.id})
