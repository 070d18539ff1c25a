# Grid stores
from mathgrid.db.store import GridStore, InMemoryGridStore
from mathgrid.db.sql_store import SqlGridStore

__all__ = ["GridStore", "InMemoryGridStore", "SqlGridStore"]
