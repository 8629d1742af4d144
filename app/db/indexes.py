"""
app/db/indexes.py

Purpose: Database index management

- Unique pair key on chat threads (one thread per user pair)
- Unique phone on users
- Listing indexes on cash requests
"""

from pymongo import ASCENDING, DESCENDING

from app.db.mongo import (
    get_users_collection,
    get_cash_requests_collection,
    get_threads_collection
)
from app.core.logging import get_logger

logger = get_logger(__name__)


async def create_indexes():
    """
    Creates all necessary database indexes.
    This function is idempotent - safe to run multiple times.
    """
    try:
        users = get_users_collection()
        requests = get_cash_requests_collection()
        threads = get_threads_collection()

        logger.info("Creating database indexes...")

        # ==============================================
        # USERS COLLECTION INDEXES
        # ==============================================

        await users.create_index("phone", unique=True, name="phone_unique")
        logger.debug("Created unique index on users.phone")

        await users.create_index("isOnline", name="is_online_idx")
        logger.debug("Created index on users.isOnline")

        # ==============================================
        # CASH REQUESTS COLLECTION INDEXES
        # ==============================================

        # Default listing: non-deleted, newest first
        await requests.create_index(
            [("deleted", ASCENDING), ("createdAt", DESCENDING)],
            name="listing_idx"
        )
        logger.debug("Created compound index on cash_requests.deleted + createdAt")

        await requests.create_index("requester", name="requester_idx")
        logger.debug("Created index on cash_requests.requester")

        await requests.create_index("status", name="request_status_idx")
        logger.debug("Created index on cash_requests.status")

        # ==============================================
        # THREADS COLLECTION INDEXES
        # ==============================================

        # Guards against two threads for the same pair under concurrent first messages
        await threads.create_index("pairKey", unique=True, name="pair_key_unique")
        logger.debug("Created unique index on messages.pairKey")

        await threads.create_index("participants", name="participants_idx")
        logger.debug("Created multikey index on messages.participants")

        await threads.create_index([("lastUpdated", DESCENDING)], name="last_updated_idx")
        logger.debug("Created index on messages.lastUpdated")

        logger.info("✅ All database indexes created successfully")

        user_indexes = await users.index_information()
        request_indexes = await requests.index_information()
        thread_indexes = await threads.index_information()

        logger.info(
            f"Index summary: Users={len(user_indexes)}, "
            f"CashRequests={len(request_indexes)}, "
            f"Threads={len(thread_indexes)}"
        )

    except Exception as e:
        logger.error(f"Failed to create indexes: {str(e)}", exc_info=True)
        raise


async def drop_all_indexes():
    """
    Drops all custom indexes (keeps _id index).
    Use with caution! Only for maintenance/migration.
    """
    try:
        logger.warning("Dropping all database indexes...")

        await get_users_collection().drop_indexes()
        await get_cash_requests_collection().drop_indexes()
        await get_threads_collection().drop_indexes()

        logger.info("✅ All indexes dropped successfully")

    except Exception as e:
        logger.error(f"Failed to drop indexes: {str(e)}", exc_info=True)
        raise


if __name__ == "__main__":
    """
    Run this script directly to create indexes manually.
    """
    import asyncio
    from app.db.mongo import connect_to_mongo, close_mongo_connection

    async def main():
        await connect_to_mongo()
        await create_indexes()
        await close_mongo_connection()

    asyncio.run(main())
