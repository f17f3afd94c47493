"""
conftest.py - pytest fixtures for pocketlite tests.
"""

import asyncio
import os
import tempfile

import pytest
from fastapi.testclient import TestClient

from pocketlite.catalog import SchemaCatalog
from pocketlite.config import ServerConfig
from pocketlite.db.migrations import install_sample_data
from pocketlite.db.storage import SQLiteStorage
from pocketlite.expand import ExpandResolver
from pocketlite.relations import RelationLookup
from pocketlite.server import create_app


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test databases."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def storage(temp_dir):
    """Storage over an empty database."""
    storage = SQLiteStorage(os.path.join(temp_dir, "test.db"))
    yield storage
    storage.close()


@pytest.fixture
def sample_storage(storage):
    """Storage with the demo users/categories/posts/comments collections."""
    asyncio.run(install_sample_data(storage))
    return storage


@pytest.fixture
def catalog(sample_storage):
    catalog = SchemaCatalog(sample_storage)
    asyncio.run(catalog.initialize())
    return catalog


@pytest.fixture
def resolver(sample_storage, catalog):
    return ExpandResolver(sample_storage, RelationLookup.for_catalog(catalog))


@pytest.fixture
def app_config(temp_dir):
    db_path = os.path.join(temp_dir, "app.db")
    seed = SQLiteStorage(db_path)
    asyncio.run(install_sample_data(seed))
    seed.close()
    return ServerConfig(db_path=db_path, upload_dir=os.path.join(temp_dir, "uploads"))


@pytest.fixture
def client(app_config):
    """TestClient running the full application lifespan."""
    with TestClient(create_app(app_config)) as client:
        yield client
