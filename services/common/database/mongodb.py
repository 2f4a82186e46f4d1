"""MongoDB record store."""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """A record store operation failed."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(StoreError):
    """No row matched the requested filters."""


@dataclass(frozen=True)
class TableSpec:
    """Primary key and column defaults the store applies on insert."""
    primary_key: str
    defaults: Dict[str, Any] = field(default_factory=dict)
    unique: tuple = ()


TABLES: Dict[str, TableSpec] = {
    "devices": TableSpec("device_id", {"status": "pending"}, unique=("unique_code",)),
    "content": TableSpec("content_id"),
    "playlists": TableSpec("playlist_id"),
    # users.id is the directory identity id, never generated here
    "users": TableSpec("id"),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _table(name: str) -> TableSpec:
    try:
        return TABLES[name]
    except KeyError:
        raise StoreError(f"Unknown table: {name}")


def prepare_row(table: str, values: Dict[str, Any]) -> Dict[str, Any]:
    """
    Apply store-level defaults to a row about to be inserted.

    Args:
        table: Table name
        values: Column values supplied by the caller

    Returns:
        dict: Row with primary key, defaults and created_at filled in
    """
    spec = _table(table)
    row = dict(spec.defaults)
    row.update({k: v for k, v in values.items() if v is not None})
    if not row.get(spec.primary_key):
        row[spec.primary_key] = str(uuid.uuid4())
    row.setdefault("created_at", _utcnow())
    return row


class MongoRecordStore:
    """Generic insert/select/update over the CMS collections."""

    def __init__(
        self,
        mongo_uri: str,
        database_name: str,
        client: Optional[AsyncIOMotorClient] = None,
    ):
        self.mongo_uri = mongo_uri
        self.database_name = database_name
        self._client = client
        self._database: Optional[AsyncIOMotorDatabase] = None

    async def connect(self) -> None:
        """Connect to MongoDB and make sure the unique indexes exist."""
        logger.info(f"Connecting to MongoDB at {self.mongo_uri}")
        if self._client is None:
            self._client = AsyncIOMotorClient(self.mongo_uri)
        self._database = self._client[self.database_name]

        # Test connection
        await self._client.admin.command('ping')

        for name, spec in TABLES.items():
            collection = self._database[name]
            await collection.create_index([(spec.primary_key, ASCENDING)], unique=True)
            for column in spec.unique:
                await collection.create_index([(column, ASCENDING)], unique=True)

        logger.info(f"Successfully connected to MongoDB database: {self.database_name}")

    async def close(self) -> None:
        """Close MongoDB connection."""
        if self._client:
            logger.info("Closing MongoDB connection")
            self._client.close()
            self._client = None
            self._database = None

    @property
    def database(self) -> AsyncIOMotorDatabase:
        if self._database is None:
            raise RuntimeError("Database is not connected. Call connect() first.")
        return self._database

    async def ping(self) -> None:
        await self.database.command('ping')

    async def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert one row.

        Returns:
            dict: The stored row

        Raises:
            StoreError: On duplicate keys or driver failures
        """
        row = prepare_row(table, values)
        try:
            # insert_one mutates its argument with _id
            await self.database[table].insert_one(dict(row))
        except DuplicateKeyError as e:
            logger.warning(f"Duplicate key inserting into {table}: {e}")
            raise StoreError(f"duplicate key value violates unique constraint on {table}")
        except PyMongoError as e:
            logger.error(f"Insert into {table} failed: {e}")
            raise StoreError(str(e))
        return row

    async def select(self, table: str, **filters: Any) -> List[Dict[str, Any]]:
        """Return every row of ``table`` whose columns equal ``filters``."""
        _table(table)
        try:
            cursor = self.database[table].find(filters, {"_id": False})
            return await cursor.to_list(length=None)
        except PyMongoError as e:
            logger.error(f"Select from {table} failed: {e}")
            raise StoreError(str(e))

    async def select_one(self, table: str, **filters: Any) -> Dict[str, Any]:
        """
        Return the single row matching ``filters``.

        Raises:
            NotFoundError: If nothing matches
        """
        _table(table)
        try:
            row = await self.database[table].find_one(filters, {"_id": False})
        except PyMongoError as e:
            logger.error(f"Select from {table} failed: {e}")
            raise StoreError(str(e))
        if row is None:
            raise NotFoundError(f"No rows found in {table}")
        return row

    async def update(self, table: str, values: Dict[str, Any], **filters: Any) -> List[Dict[str, Any]]:
        """
        Set ``values`` on every row matching ``filters``.

        Returns:
            list: The updated rows, empty if nothing matched
        """
        spec = _table(table)
        collection = self.database[table]
        try:
            keys = await collection.distinct(spec.primary_key, filters)
            if not keys:
                return []
            selector = {spec.primary_key: {"$in": keys}}
            await collection.update_many(selector, {"$set": values})
            cursor = collection.find(selector, {"_id": False})
            return await cursor.to_list(length=None)
        except PyMongoError as e:
            logger.error(f"Update of {table} failed: {e}")
            raise StoreError(str(e))
