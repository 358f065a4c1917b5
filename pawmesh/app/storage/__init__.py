"""
storage — Entity store backends.

    base.py    — `BroadcastStore` contract
    memory.py  — in-process store (development, tests)
    sql.py     — SQLAlchemy async store (PostgreSQL in production)
    tables.py  — ORM tables for the SQL store

`build_store(settings)` picks the backend from STORE_BACKEND.
"""

from __future__ import annotations

from typing import Any

from pawmesh.app.storage.base import BroadcastStore


def build_store(settings: Any) -> BroadcastStore:
    """Instantiate the configured store backend."""
    if settings.STORE_BACKEND == "sql":
        from pawmesh.app.core.database import get_session_factory
        from pawmesh.app.storage.sql import SqlStore

        return SqlStore(get_session_factory())

    from pawmesh.app.storage.memory import InMemoryStore

    return InMemoryStore()
