"""
Parent-before-child persistence for a batch of folders.

The remote fetch returns folders in no particular order, and a child cannot
be written before its parent row exists. The resolver orders the batch
topologically over in-batch parent edges and then runs up to `max_passes`
passes:

- A node is attempted once its parent is the root sentinel, outside the
  batch (top-level folders from the previous stage, or rows from a prior
  run), or already saved in this call.
- ParentMissingError (the parent row is not actually there) defers the node
  to the next pass.
- Any other persistence error drops the node without retry; its in-batch
  descendants are dropped with it.
- Nodes sitting on a parent cycle are dropped before the first pass.

The resolver never raises. Whatever could not be saved is logged and
returned in ResolveResult.dropped so the caller can count it as a failure.
"""

import logging
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from retention_sync.services.errors import ParentMissingError
from retention_sync.services.marketing_cloud.types import Folder, is_root_parent

logger = logging.getLogger(__name__)

DEFAULT_MAX_PASSES = 5


@dataclass
class ResolveResult:
    saved: list[str] = field(default_factory=list)
    dropped: dict[str, str] = field(default_factory=dict)
    passes: int = 0

    @property
    def complete(self) -> bool:
        return not self.dropped


def topological_order(nodes: dict[str, Folder]) -> tuple[list[str], set[str]]:
    """
    Order node ids so every in-batch parent precedes its children.

    Returns:
        (ordered ids, ids on or behind a cycle)
    """
    children: dict[str, list[str]] = {node_id: [] for node_id in nodes}
    indegree: dict[str, int] = {node_id: 0 for node_id in nodes}
    for node_id, node in nodes.items():
        parent_id = node.parent_id
        if not is_root_parent(parent_id) and parent_id in nodes and parent_id != node_id:
            children[parent_id].append(node_id)
            indegree[node_id] += 1
        elif parent_id == node_id:
            indegree[node_id] += 1

    queue = deque(node_id for node_id in nodes if indegree[node_id] == 0)
    ordered: list[str] = []
    while queue:
        node_id = queue.popleft()
        ordered.append(node_id)
        for child_id in children[node_id]:
            indegree[child_id] -= 1
            if indegree[child_id] == 0:
                queue.append(child_id)

    cyclic = set(nodes) - set(ordered)
    return ordered, cyclic


class HierarchyResolver:
    """
    Usage:
        resolver = HierarchyResolver(folder_store.upsert)
        result = resolver.resolve(children, known_nodes)
    """

    def __init__(self, persist: Callable[[Folder], None], max_passes: int = DEFAULT_MAX_PASSES):
        self.persist = persist
        self.max_passes = max_passes

    def resolve(self, children: Iterable[Folder], known_nodes: dict[str, Folder] | None = None) -> ResolveResult:
        """
        Persist `children` parent-first.

        Args:
            children: Folders to persist, any order (duplicates collapse, last wins)
            known_nodes: Every folder fetched this run; parents found here but
                not in `children` were persisted by the top-level stage

        Returns:
            ResolveResult with saved ids (in save order), dropped id -> reason,
            and the number of passes run
        """
        known_nodes = known_nodes or {}
        batch: dict[str, Folder] = {}
        for node in children:
            batch[node.id] = node

        result = ResolveResult()
        if not batch:
            return result

        ordered, cyclic = topological_order(batch)
        for node_id in cyclic:
            result.dropped[node_id] = "parent cycle"
        if cyclic:
            logger.warning(
                f"Dropping {len(cyclic)} folders on a parent cycle",
                extra={"event": "resolver_cycle", "unsaved_ids": sorted(cyclic)},
            )

        saved: set[str] = set()
        pending = ordered
        for pass_number in range(1, self.max_passes + 1):
            result.passes = pass_number
            deferred: list[str] = []

            for node_id in pending:
                node = batch[node_id]
                parent_id = node.parent_id
                in_batch_parent = not is_root_parent(parent_id) and parent_id in batch

                if in_batch_parent and parent_id in result.dropped:
                    result.dropped[node_id] = f"parent {parent_id} was not saved"
                    continue
                if in_batch_parent and parent_id not in saved:
                    deferred.append(node_id)
                    continue

                try:
                    self.persist(node)
                except ParentMissingError as e:
                    logger.debug(
                        f"Parent of folder {node_id} not committed yet, deferring: {e}",
                        extra={"event": "resolver_defer", "folder_id": node_id, "parent_id": parent_id},
                    )
                    deferred.append(node_id)
                    continue
                except Exception as e:
                    logger.error(
                        f"Failed to persist folder {node_id}: {e}",
                        extra={"event": "resolver_drop", "folder_id": node_id, "parent_id": parent_id},
                    )
                    result.dropped[node_id] = str(e)
                    continue

                saved.add(node_id)
                result.saved.append(node_id)

            logger.debug(
                f"Resolver pass {pass_number}: {len(saved)} saved, {len(deferred)} deferred",
                extra={"event": "resolver_pass", "pass_number": pass_number, "items_total": len(batch)},
            )

            pending = deferred
            if not pending:
                break

        for node_id in pending:
            parent_id = batch[node_id].parent_id
            where = "fetched this run" if parent_id in known_nodes else "not fetched this run"
            result.dropped[node_id] = f"parent {parent_id} ({where}) not committed after {result.passes} passes"

        if result.dropped:
            logger.warning(
                f"{len(result.dropped)} folders could not be saved after {result.passes} passes",
                extra={
                    "event": "resolver_incomplete",
                    "pass_number": result.passes,
                    "unsaved_ids": sorted(result.dropped),
                },
            )
        else:
            logger.info(
                f"Resolved {len(result.saved)} folders in {result.passes} passes",
                extra={"event": "resolver_complete", "pass_number": result.passes, "items_succeeded": len(result.saved)},
            )
        return result
