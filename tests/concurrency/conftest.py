"""
Concurrency fixtures: a file-backed SQLite store instead of the shared
in-memory one, so every thread gets its own connection.
"""

import pytest

from inventory_kernel.db.engine import create_store_engine, create_tables


@pytest.fixture
def engine(tmp_path):
    store = create_store_engine(f"sqlite:///{tmp_path / 'store.db'}")
    create_tables(store)
    yield store
    store.dispose()
