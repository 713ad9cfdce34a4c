class NodeStoreError(Exception):
    """Base class for failures raised by the node store."""


class NotFound(NodeStoreError):
    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node not found: {node_id}")


class DuplicateKey(NodeStoreError):
    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node id already exists: {node_id}")


class StorageFull(NodeStoreError):
    """Raised when the database medium rejects a write (quota or disk exhausted)."""


class BackendUnavailable(NodeStoreError):
    """Raised when the database cannot be opened or is used before open()."""
