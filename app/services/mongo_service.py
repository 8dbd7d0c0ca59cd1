import asyncio
from typing import Callable, Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, IndexModel
from pymongo.errors import OperationFailure, PyMongoError

from app.utils.errors import DatabaseConnectionError
from app.utils.logger import get_logger

logger = get_logger("mongo")


class MongoConnectionManager:
    """
    Lazily opens and health-checks a single pooled MongoDB client.

    Every `get_database()` call pings the cached client; a failed ping drops it
    and a fresh client is opened. Pings run concurrently; only opening a client
    takes the lock, so concurrent callers share one connection attempt.
    """

    def __init__(self, uri: str, database: str = "nutribot_db", collection: str = "conversations",
                 max_pool_size: int = 10, min_pool_size: int = 1,
                 connect_timeout_ms: int = 10000, server_selection_timeout_ms: int = 10000,
                 max_idle_time_ms: int = 30000,
                 client_factory: Callable[..., AsyncIOMotorClient] = AsyncIOMotorClient):
        self.uri = uri
        self.database_name = database
        self.collection_name = collection
        self.client_options = {
            "maxPoolSize": max_pool_size,
            "minPoolSize": min_pool_size,
            "connectTimeoutMS": connect_timeout_ms,
            "serverSelectionTimeoutMS": server_selection_timeout_ms,
            "maxIdleTimeMS": max_idle_time_ms,
            "retryWrites": True,
            "retryReads": True,
            "tz_aware": True,
        }
        self._client_factory = client_factory
        self._client: Optional[AsyncIOMotorClient] = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, uri: str, cfg: dict) -> "MongoConnectionManager":
        return cls(
            uri,
            database=cfg.get("database", "nutribot_db"),
            collection=cfg.get("collection", "conversations"),
            max_pool_size=int(cfg.get("max_pool_size", 10)),
            min_pool_size=int(cfg.get("min_pool_size", 1)),
            connect_timeout_ms=int(cfg.get("connect_timeout_ms", 10000)),
            server_selection_timeout_ms=int(cfg.get("server_selection_timeout_ms", 10000)),
            max_idle_time_ms=int(cfg.get("max_idle_time_ms", 30000)),
        )

    @property
    def connected(self) -> bool:
        return self._client is not None

    async def get_database(self) -> AsyncIOMotorDatabase:
        client = self._client
        if client is not None:
            try:
                await client.admin.command("ping")
                return client[self.database_name]
            except PyMongoError as e:
                logger.warning(f"⚠️ MongoDB ping failed, reconnecting: {e}")

        async with self._lock:
            # Another caller may have reconnected while we waited.
            if self._client is not None and self._client is not client:
                return self._client[self.database_name]
            if self._client is not None:
                self._discard()
            return await self._connect()

    async def get_collection(self):
        db = await self.get_database()
        return db[self.collection_name]

    async def _connect(self) -> AsyncIOMotorDatabase:
        logger.info(f"🔌 Connecting to MongoDB database '{self.database_name}'")
        client = None
        try:
            client = self._client_factory(self.uri, **self.client_options)
            await client.admin.command("ping")
        except PyMongoError as e:
            if client is not None:
                client.close()
            logger.error(f"❌ MongoDB connection failed: {e}")
            raise DatabaseConnectionError(detail=str(e)) from e

        self._client = client
        db = client[self.database_name]
        await self._ensure_indexes(db)
        logger.info(f"✅ Connected to MongoDB: {self.database_name}")
        return db

    async def _ensure_indexes(self, db: AsyncIOMotorDatabase) -> None:
        indexes = [
            IndexModel([("sessionId", ASCENDING)], unique=True),
            IndexModel([("updatedAt", DESCENDING)]),
        ]
        try:
            await db[self.collection_name].create_indexes(indexes)
        except OperationFailure as e:
            logger.warning(f"⚠️ Index creation warning: {e}")

    def invalidate(self) -> None:
        """Forget the cached client after a transport error; the next call reconnects."""
        if self._client is not None:
            logger.warning("⚠️ Discarding MongoDB client after transport error")
            self._discard()

    def _discard(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            try:
                client.close()
            except Exception as e:
                logger.debug(f"Error closing discarded MongoDB client: {e}")

    async def ping(self) -> bool:
        try:
            await self.get_database()
            return True
        except DatabaseConnectionError:
            return False

    async def close(self) -> None:
        async with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None
                logger.info("👋 Disconnected from MongoDB")
