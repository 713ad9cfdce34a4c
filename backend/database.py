import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional

from sqlalchemy import create_engine, delete, select
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from errors import BackendUnavailable, DuplicateKey, NotFound, StorageFull
from models import Base, Node

DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{Path(__file__).parent / 'drive.db'}")

logger = logging.getLogger(__name__)


def _is_storage_full(exc: OperationalError) -> bool:
    orig = exc.orig
    if getattr(orig, "sqlite_errorname", None) == "SQLITE_FULL":
        return True
    return "database or disk is full" in str(orig).lower()


class NodeBackend:
    """Flat node table keyed by id with a secondary index on parent_id.

    The handle is owned by whoever constructs it: call open() before use and
    close() when done (or use it as a context manager). Every operation runs
    in its own short transaction.
    """

    def __init__(self, url: str = DATABASE_URL):
        self.url = url
        self.engine = None
        self._session_factory = None

    def open(self) -> "NodeBackend":
        if self.engine is not None:
            return self

        try:
            engine = create_engine(
                self.url,
                connect_args={"check_same_thread": False} if self.url.startswith("sqlite") else {},
            )
            # create_all skips existing tables and indexes, data is left alone.
            Base.metadata.create_all(bind=engine)
        except SQLAlchemyError as exc:
            logger.exception("Failed to open node database %s", self.url)
            raise BackendUnavailable(f"Cannot open node database: {self.url}") from exc

        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        logger.info("Opened node database %s", self.url)
        return self

    def close(self):
        if self.engine is None:
            return
        self.engine.dispose()
        self.engine = None
        self._session_factory = None
        logger.info("Closed node database %s", self.url)

    @property
    def is_open(self) -> bool:
        return self.engine is not None

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @contextmanager
    def session(self):
        if self._session_factory is None:
            raise BackendUnavailable("Node database is not open")

        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def put(self, node: Node) -> Node:
        try:
            with self.session() as session:
                session.add(node)
                session.flush()
        except IntegrityError as exc:
            # Only an existing row with this id is a key collision; NOT NULL and
            # other constraint failures propagate unchanged.
            if self.get(node.id) is not None:
                raise DuplicateKey(node.id) from exc
            raise
        except OperationalError as exc:
            if _is_storage_full(exc):
                logger.warning("Write rejected, node database is full (node %s, %s bytes)", node.id, node.size)
                raise StorageFull(f"Storage is full, could not write {node.name!r}") from exc
            raise
        return node

    def get(self, node_id: str) -> Optional[Node]:
        with self.session() as session:
            return session.get(Node, node_id)

    def list_children(self, parent_id: str) -> List[Node]:
        with self.session() as session:
            return list(session.scalars(select(Node).where(Node.parent_id == parent_id)))

    def list_all(self) -> List[Node]:
        with self.session() as session:
            return list(session.scalars(select(Node)))

    def delete_one(self, node_id: str) -> bool:
        with self.session() as session:
            result = session.execute(delete(Node).where(Node.id == node_id))
            return result.rowcount > 0

    def read_content(self, node_id: str) -> bytes:
        with self.session() as session:
            row = session.execute(select(Node.content).where(Node.id == node_id)).first()
        if row is None:
            raise NotFound(node_id)
        return row.content or b""
