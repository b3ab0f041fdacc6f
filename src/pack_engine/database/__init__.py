"""Database layer: SQLite storage and bundle repository adapters."""

from .connection import get_connection, init_db
from .repository import (
    BundleRepository,
    InMemoryBundleRepository,
    RepositoryError,
    SQLiteBundleRepository,
    load_bundles,
)

__all__ = [
    "get_connection",
    "init_db",
    "BundleRepository",
    "InMemoryBundleRepository",
    "RepositoryError",
    "SQLiteBundleRepository",
    "load_bundles",
]
