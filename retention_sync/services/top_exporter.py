"""
Export the largest data extensions of an account to JSON.

Phases:
1. Collect every folder id: the root set, then breadth-first through
   children until no new ids appear (a failed child listing is skipped)
2. Page every data extension of every folder, leaving out recycle-bin items
3. Sort by row count, largest first, and keep the top N
4. Write the selection as indented JSON in the API's camelCase shape
"""

import json
import logging
from collections import deque
from pathlib import Path

from retention_sync.services.marketing_cloud.client import DEFAULT_DE_PAGE_SIZE, iter_data_extension_pages
from retention_sync.services.marketing_cloud.types import DataExtension

logger = logging.getLogger(__name__)

DEFAULT_TOP_COUNT = 20
EXPORT_DIR = Path("exports")


def default_export_path(account_id: str | None = None) -> Path:
    return EXPORT_DIR / f"{account_id or 'export'}.json"


def collect_folder_ids(client) -> list[str]:
    """Every folder id reachable from the root set, in discovery order."""
    seen: dict[str, None] = {}
    queue: deque[str] = deque()
    for folder in client.list_root_folders():
        if folder.id not in seen:
            seen[folder.id] = None
            queue.append(folder.id)

    while queue:
        folder_id = queue.popleft()
        try:
            children = client.list_subfolders(folder_id)
        except Exception as e:
            logger.warning(
                f"Failed to fetch subfolders of {folder_id}: {e}",
                extra={"event": "subfolders_fetch_failed", "folder_id": folder_id},
            )
            continue
        for child in children:
            if child.id not in seen:
                seen[child.id] = None
                queue.append(child.id)

    return list(seen)


def collect_data_extensions(
    client,
    folder_ids: list[str],
    page_size: int = DEFAULT_DE_PAGE_SIZE,
) -> list[DataExtension]:
    """All data extensions outside the recycle bin. Fetch errors propagate."""
    items: list[DataExtension] = []
    for folder_id in folder_ids:
        for batch in iter_data_extension_pages(client, folder_id, page_size):
            items.extend(de for de in batch if not de.in_recycle_bin)
    return items


def top_by_row_count(items: list[DataExtension], limit: int = DEFAULT_TOP_COUNT) -> list[DataExtension]:
    return sorted(items, key=lambda de: de.row_count, reverse=True)[:limit]


def export_top_data_extensions(
    client,
    output_path: Path,
    limit: int = DEFAULT_TOP_COUNT,
    page_size: int = DEFAULT_DE_PAGE_SIZE,
) -> list[DataExtension]:
    """
    Run all phases and write the file.

    Returns:
        The exported data extensions, largest first
    """
    folder_ids = collect_folder_ids(client)
    logger.info(
        f"Collected {len(folder_ids)} folders",
        extra={"event": "export_folders_collected", "items_total": len(folder_ids)},
    )

    items = collect_data_extensions(client, folder_ids, page_size)
    logger.info(
        f"Collected {len(items)} data extensions",
        extra={"event": "export_data_extensions_collected", "items_total": len(items)},
    )

    top = top_by_row_count(items, limit)

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    payload = [de.model_dump(mode="json", by_alias=True) for de in top]
    output_path.write_text(json.dumps(payload, indent=2))

    logger.info(
        f"Exported {len(top)} data extensions to {output_path}",
        extra={"event": "export_written", "items_total": len(top)},
    )
    return top
