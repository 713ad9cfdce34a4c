import pytest

from app import create_app
from database import NodeBackend
from store import HierarchicalStore


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'drive.db'}"


@pytest.fixture
def backend(db_url):
    """An opened backend on a throwaway SQLite file, closed after the test."""
    with NodeBackend(db_url) as opened:
        yield opened


@pytest.fixture
def store(backend):
    return HierarchicalStore(backend)


@pytest.fixture
def app(backend):
    app = create_app(backend=backend, quota_source=lambda: {"quota_bytes": 1000})
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()
