import io
import logging
from collections import defaultdict
from contextlib import contextmanager
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple

from database import NodeBackend
from errors import NodeStoreError, NotFound
from models import ROOT_ID, Node, new_node_id, now_millis, root_node

logger = logging.getLogger(__name__)


class Blob(NamedTuple):
    name: str
    type: str
    size: int
    content: bytes


class StoreUsage(NamedTuple):
    used_bytes: int
    node_count: int


class UploadResult(NamedTuple):
    created: List[Node]
    failed: List[Tuple[str, NodeStoreError]]


def sort_key(node: Node):
    return (not node.is_folder, node.name.casefold())


class HierarchicalStore:
    """Folder/file tree layered over the flat node table.

    The tree only exists through parent_id lookups; nothing here caches it.
    """

    def __init__(self, backend: NodeBackend):
        self.backend = backend

    def create_file(self, parent_id: str, name: str, type: Optional[str], size: int, content: bytes) -> Node:
        if not name:
            raise ValueError("File name is required")

        node = Node(
            id=new_node_id(),
            parent_id=parent_id,
            name=name,
            is_folder=False,
            size=size,
            type=type,
            created_at=now_millis(),
            content=content,
        )
        self.backend.put(node)
        logger.info("Stored file %s (%s, %d bytes) in %s", node.id, name, size, parent_id)
        return node

    def create_folder(self, parent_id: str, name: str) -> Node:
        name = (name or "").strip()
        if not name:
            raise ValueError("Folder name is required")

        node = Node(
            id=new_node_id(),
            parent_id=parent_id,
            name=name,
            is_folder=True,
            size=0,
            type=None,
            created_at=now_millis(),
            content=None,
        )
        self.backend.put(node)
        logger.info("Created folder %s (%s) in %s", node.id, name, parent_id)
        return node

    def get_node(self, node_id: str) -> Node:
        if node_id == ROOT_ID:
            return root_node()
        node = self.backend.get(node_id)
        if node is None:
            raise NotFound(node_id)
        return node

    def list_children(self, parent_id: str) -> List[Node]:
        # sorted() is stable, so equal keys keep backend order.
        return sorted(self.backend.list_children(parent_id), key=sort_key)

    def search(self, parent_id: str, query: Optional[str]) -> List[Node]:
        items = self.list_children(parent_id)
        if not query:
            return items
        needle = query.casefold()
        return [item for item in items if needle in item.name.casefold()]

    def delete_subtree(self, node_id: str) -> int:
        """Delete a node and, for folders, everything below it.

        Missing ids are a silent no-op. Descendants are removed before their
        folder, one backend call at a time, so an interruption leaves at worst
        a partially emptied subtree whose root still exists.

        Returns the number of nodes removed.
        """
        if node_id == ROOT_ID:
            raise ValueError("The root folder cannot be deleted")

        removed = 0
        # (id, expanded): a folder is pushed back expanded so it is only
        # deleted once all entries pushed above it are gone.
        stack = [(node_id, False)]
        while stack:
            current_id, expanded = stack.pop()
            if not expanded:
                node = self.backend.get(current_id)
                if node is None:
                    continue
                if node.is_folder:
                    stack.append((current_id, True))
                    stack.extend((child.id, False) for child in self.backend.list_children(current_id))
                    continue
            if self.backend.delete_one(current_id):
                removed += 1

        logger.info("Deleted subtree %s (%d nodes)", node_id, removed)
        return removed

    def aggregate_usage(self) -> StoreUsage:
        nodes = self.backend.list_all()
        used = sum(node.size or 0 for node in nodes if not node.is_folder)
        return StoreUsage(used_bytes=used, node_count=len(nodes))

    def descendant_count(self, folder_id: str) -> int:
        count = 0
        pending = [folder_id]
        while pending:
            children = self.backend.list_children(pending.pop())
            count += len(children)
            pending.extend(child.id for child in children if child.is_folder)
        return count

    def descendant_counts(self) -> Dict[str, int]:
        """Descendant count of every folder reachable from the root, from one scan."""
        children = defaultdict(list)
        for node in self.backend.list_all():
            children[node.parent_id].append(node)

        counts = {}
        stack = [(ROOT_ID, False)]
        while stack:
            folder_id, expanded = stack.pop()
            if expanded:
                counts[folder_id] = sum(1 + counts.get(child.id, 0) for child in children[folder_id])
                continue
            stack.append((folder_id, True))
            stack.extend((child.id, False) for child in children[folder_id] if child.is_folder)
        return counts

    def path_to(self, folder_id: str) -> List[Node]:
        """Ancestor chain from the root down to ``folder_id``, both included."""
        node = self.get_node(folder_id)
        path = [node]
        seen = {node.id}
        while node.id != ROOT_ID and node.parent_id != ROOT_ID and node.parent_id not in seen:
            parent = self.backend.get(node.parent_id)
            if parent is None:
                logger.warning("Folder %s has a missing parent %s", node.id, node.parent_id)
                break
            path.append(parent)
            seen.add(parent.id)
            node = parent
        if path[-1].id != ROOT_ID:
            path.append(root_node())
        return list(reversed(path))

    def upload(self, parent_id: str, blobs: Iterable[Blob], all_or_nothing: bool = False) -> UploadResult:
        """Store one file per blob.

        By default a failing blob is recorded and the batch goes on; files
        written before it stay committed. With all_or_nothing the files this
        batch already wrote are deleted again and the error is re-raised.
        """
        created = []
        failed = []
        for blob in blobs:
            try:
                created.append(self.create_file(parent_id, blob.name, blob.type, blob.size, blob.content))
            except NodeStoreError as exc:
                if all_or_nothing:
                    logger.warning("Upload of %s failed, rolling back %d files", blob.name, len(created))
                    for node in created:
                        self.backend.delete_one(node.id)
                    raise
                logger.warning("Upload of %s failed: %s", blob.name, exc)
                failed.append((blob.name, exc))
        return UploadResult(created=created, failed=failed)

    @contextmanager
    def open_content(self, node_id: str):
        node = self.get_node(node_id)
        if node.is_folder:
            raise ValueError(f"{node.name!r} is a folder")

        stream = io.BytesIO(self.backend.read_content(node_id))
        try:
            yield stream
        finally:
            stream.close()
