"""
Downzer Database Layer

MongoDB connection and the task repository.
"""

from pymongo.database import Database

from .connection import MongoDB
from .repository import TaskRepository, ACTIVE_STATES


def init_store(db: Database = None, url: str = None, db_name: str = "downzer") -> TaskRepository:
    """
    Initialize the task store.

    Uses the given database handle, or connects to url.
    """
    if db is None:
        db = MongoDB.connect(url or "mongodb://localhost:27017", db_name)
    return TaskRepository(db)


__all__ = [
    "MongoDB",
    "TaskRepository",
    "ACTIVE_STATES",
    "init_store",
]
