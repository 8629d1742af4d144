"""
Database initialization script

Creates indexes and, optionally, demo users with a pending cash request:
    python scripts/init_db.py
    python scripts/init_db.py --seed
    python scripts/init_db.py --rebuild-indexes
"""

import argparse
import asyncio
import sys
from pathlib import Path
from dotenv import load_dotenv

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Load environment variables before settings are read
load_dotenv()

from app.core.logging import setup_logging, get_logger
from app.db.mongo import (
    connect_to_mongo,
    close_mongo_connection,
    get_users_collection,
    get_cash_requests_collection,
    get_threads_collection,
)
from app.db.indexes import create_indexes, drop_all_indexes
from app.models.cash_request import build_cash_request
from utils.time_utils import utcnow

setup_logging()
logger = get_logger("scripts.init_db")


DEMO_USERS = [
    {"name": "priya", "phone": "+919193345922"},
    {"name": "arjun", "phone": "+919193345923"},
]


async def seed_demo_data():
    """Upserts the demo users and gives the first one a pending request."""
    users = get_users_collection()
    requests = get_cash_requests_collection()

    ids = []
    for demo in DEMO_USERS:
        user = await users.find_one_and_update(
            {"phone": demo["phone"]},
            {
                "$set": {"name": demo["name"]},
                "$setOnInsert": {
                    "phone": demo["phone"],
                    "isOnline": False,
                    "lastSeen": utcnow(),
                    "connections": [],
                    "createdAt": utcnow(),
                },
            },
            upsert=True,
            return_document=True
        )
        ids.append(user["_id"])
        logger.info(f"  ✅ Demo user {demo['name']}: {user['_id']}")

    existing = await requests.find_one({"requester": ids[0], "status": "pending", "deleted": False})
    if existing:
        logger.info(f"  ℹ️  Pending demo request already exists: {existing['_id']}")
    else:
        result = await requests.insert_one(build_cash_request(ids[0], 200, "Need change for the canteen"))
        logger.info(f"  ✅ Pending demo request created: {result.inserted_id}")


async def main(seed: bool, rebuild_indexes: bool = False):
    """Main initialization"""
    logger.info("=" * 60)
    logger.info("  CashMate Database Setup")
    logger.info("=" * 60)

    await connect_to_mongo()

    try:
        if rebuild_indexes:
            await drop_all_indexes()

        await create_indexes()

        if seed:
            logger.info("🌱 Seeding demo data...")
            await seed_demo_data()

        stats = {
            "users": await get_users_collection().count_documents({}),
            "cash_requests": await get_cash_requests_collection().count_documents({}),
            "threads": await get_threads_collection().count_documents({}),
        }

        logger.info("📊 Current documents:")
        for name, count in stats.items():
            logger.info(f"  {name}: {count}")

        logger.info("✅ Database initialization complete!")

    finally:
        await close_mongo_connection()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create CashMate indexes")
    parser.add_argument("--seed", action="store_true", help="Insert demo users and a pending request")
    parser.add_argument("--rebuild-indexes", action="store_true", help="Drop custom indexes before recreating them")
    args = parser.parse_args()

    asyncio.run(main(args.seed, args.rebuild_indexes))
