"""
MongoDB Connection Manager

Single connection pool shared by the daemon and the CLI.
"""

from typing import Optional
from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import ConnectionFailure, ServerSelectionTimeoutError
from loguru import logger


class MongoDB:
    """
    MongoDB connection manager.

    Singleton pattern to manage a single connection pool across the application.
    """

    _instance: Optional["MongoDB"] = None
    _client: Optional[MongoClient] = None
    _db: Optional[Database] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @classmethod
    def connect(cls, url: str = "mongodb://localhost:27017", db_name: str = "downzer") -> Database:
        """
        Connect to MongoDB and return database instance.

        Raises:
            ConnectionFailure: If the server cannot be reached
        """
        if cls._client is not None and cls._db is not None:
            return cls._db

        try:
            logger.debug(f"[Store] Connecting to MongoDB: {url}")
            cls._client = MongoClient(
                url,
                serverSelectionTimeoutMS=3000,
                connectTimeoutMS=3000,
                maxPoolSize=10,
            )

            cls._client.admin.command("ping")
            cls._db = cls._client[db_name]

            logger.debug(f"[Store] Connected to MongoDB database: {db_name}")
            return cls._db

        except (ConnectionFailure, ServerSelectionTimeoutError) as e:
            logger.error(f"[Store] Failed to connect to MongoDB: {e}")
            cls._client = None
            raise

    @classmethod
    def close(cls):
        """Close MongoDB connection"""
        if cls._client is not None:
            cls._client.close()
            cls._client = None
            cls._db = None
            logger.debug("[Store] MongoDB connection closed")
