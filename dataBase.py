import logging
import os

import motor.motor_asyncio
from dotenv import load_dotenv
from pymongo import ASCENDING, DESCENDING

# Load environment variables from .env
load_dotenv()

logger = logging.getLogger(__name__)

MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "bookswap")

client = motor.motor_asyncio.AsyncIOMotorClient(MONGO_URL)
db = client[MONGO_DB_NAME]

# created_at can tie within a millisecond; _id keeps insertion order
NEWEST_FIRST = [("created_at", DESCENDING), ("_id", DESCENDING)]


def get_db():
    """FastAPI dependency returning the active database handle."""
    return db


async def init_indexes(database) -> None:
    """Create the indexes the API relies on. Safe to run on every startup."""
    await database.users.create_index([("email", ASCENDING)], unique=True)
    await database.books.create_index([("status", ASCENDING), ("created_at", DESCENDING)])
    await database.books.create_index([("owner", ASCENDING)])
    # One request per (book, requester) pair, whatever its status
    await database.requests.create_index(
        [("book", ASCENDING), ("requester", ASCENDING)], unique=True
    )
    await database.requests.create_index([("requester", ASCENDING)])
    logger.info("Database indexes ensured")
