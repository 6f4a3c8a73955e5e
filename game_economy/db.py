# game_economy/db.py
import functools
import logging

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import ConnectionFailure

from game_economy.errors import PersistenceUnavailable
from game_economy.settings import settings

logger = logging.getLogger(__name__)

mongo_client: AsyncIOMotorClient | None = None

async def connect_to_mongo():
    """
    Create and return a DB handle (not just the client).
    """
    global mongo_client
    mongo_client = AsyncIOMotorClient(
        settings.mongodb_uri,
        serverSelectionTimeoutMS=settings.mongodb_timeout_ms,
    )
    return mongo_client[settings.mongodb_db]

async def close_mongo_connection():
    global mongo_client
    if mongo_client:
        mongo_client.close()
        mongo_client = None


def persistence_guard(fn):
    """
    Translate driver connectivity failures into PersistenceUnavailable.
    No retry here: retry policy belongs to the caller.
    """
    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        try:
            return await fn(*args, **kwargs)
        except ConnectionFailure as e:
            logger.error("Mongo unreachable in %s: %r", fn.__name__, e)
            raise PersistenceUnavailable(
                "The database connection is not available. Please try again later."
            ) from e
    return wrapper
