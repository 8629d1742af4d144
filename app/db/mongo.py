"""
app/db/mongo.py

Purpose: MongoDB connection setup

- Initializes Motor client with connection pooling
- Collections: users, cash_requests, messages (chat threads)
- Health checks and retry logic
- Proper connection lifecycle management
"""

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase, AsyncIOMotorCollection
from pymongo.errors import ConnectionFailure, ServerSelectionTimeoutError
from typing import Optional
import asyncio
from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

# Collection names
USERS_COLLECTION = "users"
CASH_REQUESTS_COLLECTION = "cash_requests"
THREADS_COLLECTION = "messages"

# Global MongoDB client
_client: Optional[AsyncIOMotorClient] = None
_database: Optional[AsyncIOMotorDatabase] = None


async def connect_to_mongo():
    """
    Establishes connection to MongoDB with retry logic.
    Called during application startup.
    """
    global _client, _database

    if _client is not None:
        logger.warning("MongoDB client already initialized")
        return

    max_retries = 3
    retry_delay = 2

    for attempt in range(1, max_retries + 1):
        try:
            logger.info(
                f"Attempting to connect to MongoDB (attempt {attempt}/{max_retries})"
            )

            _client = AsyncIOMotorClient(
                settings.MONGODB_URL,
                maxPoolSize=50,
                minPoolSize=5,
                serverSelectionTimeoutMS=5000,
                connectTimeoutMS=10000,
                retryWrites=True,
                retryReads=True,
            )

            _database = _client[settings.MONGODB_DB_NAME]

            # Verify connection
            await _client.admin.command("ping")

            logger.info(
                f"✅ Successfully connected to MongoDB: {settings.MONGODB_DB_NAME}"
            )
            return

        except (ConnectionFailure, ServerSelectionTimeoutError) as e:
            logger.error(
                f"Failed to connect to MongoDB (attempt {attempt}/{max_retries}): {e}"
            )
            _client = None
            _database = None

            if attempt < max_retries:
                logger.info(f"Retrying in {retry_delay} seconds...")
                await asyncio.sleep(retry_delay)
                retry_delay *= 2  # Exponential backoff
            else:
                logger.critical("Failed to connect to MongoDB after all retries")
                raise ConnectionError("Could not establish MongoDB connection") from e


async def close_mongo_connection():
    """
    Closes the MongoDB connection.
    Called during application shutdown.
    """
    global _client, _database

    if _client:
        logger.info("Closing MongoDB connection")
        _client.close()
        _client = None
        _database = None
        logger.info("MongoDB connection closed")


def use_database(database: Optional[AsyncIOMotorDatabase]):
    """
    Binds an already-constructed database handle (test harnesses, scripts).
    Passing None unbinds it.
    """
    global _database
    _database = database


async def check_database_health() -> bool:
    """
    Checks if the database connection is healthy.

    Returns:
        True if connection is healthy, False otherwise
    """
    try:
        if _client is None:
            logger.error("MongoDB client not initialized")
            return False

        await _client.admin.command("ping")
        return True

    except Exception as e:
        logger.error(f"Database health check failed: {str(e)}")
        return False


def _collection(name: str) -> AsyncIOMotorCollection:
    if _database is None:
        raise RuntimeError(
            "Database not initialized. Call connect_to_mongo() during startup."
        )
    return _database[name]


def get_users_collection() -> AsyncIOMotorCollection:
    """
    Returns the users collection.

    Fields touched by the realtime core:
    - _id: ObjectId
    - name: str
    - phone: str (unique)
    - isOnline: bool (advisory, last written presence)
    - lastSeen: datetime
    - connections: list[ObjectId] (matched peers)
    """
    return _collection(USERS_COLLECTION)


def get_cash_requests_collection() -> AsyncIOMotorCollection:
    """
    Returns the cash_requests collection.

    Fields:
    - _id: ObjectId
    - requester: ObjectId
    - amount: float (> 0)
    - reason: str
    - status: pending | connected | fulfilled | cancelled
    - connectedTo: ObjectId | None
    - deleted: bool (soft delete)
    - createdAt: datetime
    """
    return _collection(CASH_REQUESTS_COLLECTION)


def get_threads_collection() -> AsyncIOMotorCollection:
    """
    Returns the chat thread collection (one document per user pair).

    Fields:
    - participants: [str, str] sorted ascending
    - pairKey: str (unique, canonical pair joined with ':')
    - messages: list[{_id, senderId, message, timestamp, status}]
    - lastUpdated: datetime
    - createdAt: datetime
    """
    return _collection(THREADS_COLLECTION)
