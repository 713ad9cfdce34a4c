import time
import uuid

from sqlalchemy import BigInteger, Boolean, Column, LargeBinary, String
from sqlalchemy.orm import declarative_base, deferred

Base = declarative_base()

ROOT_ID = "root"
ROOT_NAME = "My Drive"


def new_node_id() -> str:
    return str(uuid.uuid4())


def now_millis() -> int:
    return int(time.time() * 1000)


class Node(Base):
    __tablename__ = "nodes"

    id = Column(String(36), primary_key=True, default=new_node_id)
    parent_id = Column(String(36), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    is_folder = Column(Boolean, nullable=False, default=False)
    size = Column(BigInteger, nullable=False, default=0)
    type = Column(String(255), nullable=True)
    created_at = Column(BigInteger, nullable=False, default=now_millis)

    # Listings never need the payload.
    content = deferred(Column(LargeBinary, nullable=True))

    def __repr__(self):
        kind = "folder" if self.is_folder else "file"
        return f"<Node {kind} {self.id} {self.name!r} parent={self.parent_id}>"


def root_node() -> Node:
    """Transient folder standing in for the never-persisted root."""
    return Node(id=ROOT_ID, parent_id=ROOT_ID, name=ROOT_NAME, is_folder=True, size=0, created_at=0)
