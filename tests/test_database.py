import sqlite3

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from database import NodeBackend
from errors import BackendUnavailable, DuplicateKey, NotFound, StorageFull
from models import ROOT_ID, Node


def make_node(node_id, parent_id=ROOT_ID, name="file.txt", is_folder=False, size=0, content=None):
    return Node(
        id=node_id,
        parent_id=parent_id,
        name=name,
        is_folder=is_folder,
        size=size,
        type=None if is_folder else "text/plain",
        created_at=1,
        content=content,
    )


def test_put_and_get(backend):
    backend.put(make_node("a", size=3, content=b"abc"))

    node = backend.get("a")

    assert node.name == "file.txt"
    assert node.parent_id == ROOT_ID
    assert node.size == 3
    assert backend.read_content("a") == b"abc"


def test_get_missing_returns_none(backend):
    assert backend.get("nope") is None


def test_put_duplicate_id_raises(backend):
    backend.put(make_node("a"))

    with pytest.raises(DuplicateKey) as exc_info:
        backend.put(make_node("a", name="other.txt"))

    assert exc_info.value.node_id == "a"
    assert backend.get("a").name == "file.txt"


def test_put_translates_full_database(backend, monkeypatch):
    def full(self, *args, **kwargs):
        raise OperationalError("INSERT INTO nodes", {}, sqlite3.OperationalError("database or disk is full"))

    monkeypatch.setattr(Session, "flush", full)

    with pytest.raises(StorageFull):
        backend.put(make_node("a", size=10, content=b"0123456789"))


def test_put_propagates_other_operational_errors(backend, monkeypatch):
    def locked(self, *args, **kwargs):
        raise OperationalError("INSERT INTO nodes", {}, sqlite3.OperationalError("database is locked"))

    monkeypatch.setattr(Session, "flush", locked)

    with pytest.raises(OperationalError):
        backend.put(make_node("a"))


def test_list_children_uses_parent_index(backend):
    backend.put(make_node("folder", name="docs", is_folder=True))
    backend.put(make_node("a", parent_id="folder"))
    backend.put(make_node("b", parent_id="folder"))
    backend.put(make_node("c"))

    children = backend.list_children("folder")

    assert {child.id for child in children} == {"a", "b"}
    assert backend.list_children("a") == []


def test_delete_one_missing_is_noop(backend):
    backend.put(make_node("a"))

    assert backend.delete_one("missing") is False
    assert backend.delete_one("a") is True
    assert backend.delete_one("a") is False
    assert backend.get("a") is None


def test_list_all(backend):
    backend.put(make_node("a"))
    backend.put(make_node("b", is_folder=True))

    assert {node.id for node in backend.list_all()} == {"a", "b"}


def test_read_content_missing_raises(backend):
    with pytest.raises(NotFound):
        backend.read_content("missing")


def test_reopen_keeps_existing_data(db_url):
    with NodeBackend(db_url) as first:
        first.put(make_node("a"))

    with NodeBackend(db_url) as second:
        assert second.get("a") is not None


def test_two_backends_see_each_others_writes(backend, db_url):
    with NodeBackend(db_url) as other:
        other.put(make_node("a"))
        assert backend.get("a") is not None

        backend.delete_one("a")
        assert other.get("a") is None


def test_open_failure_raises_backend_unavailable(tmp_path):
    backend = NodeBackend(f"sqlite:///{tmp_path / 'missing' / 'drive.db'}")

    with pytest.raises(BackendUnavailable):
        backend.open()

    assert not backend.is_open


def test_operations_before_open_raise():
    backend = NodeBackend("sqlite://")

    with pytest.raises(BackendUnavailable):
        backend.get("a")


def test_put_not_null_violation_is_not_a_duplicate(backend):
    with pytest.raises(IntegrityError):
        backend.put(make_node("a", name=None))

    assert backend.get("a") is None
