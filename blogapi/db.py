from typing import Optional

from loguru import logger
from pymongo import ASCENDING, AsyncMongoClient
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import ServerSelectionTimeoutError

from .settings import get_settings

_client: Optional[AsyncMongoClient] = None
_db: Optional[AsyncDatabase] = None

USERS = "users"


def get_client() -> AsyncMongoClient:
    global _client
    if _client is None:
        settings = get_settings()
        _client = AsyncMongoClient(
            settings.mongodb_uri,
            serverSelectionTimeoutMS=3000,
            appname=settings.app_name,
        )
    return _client


def get_db() -> AsyncDatabase:
    global _db
    if _db is None:
        _db = get_client()[get_settings().mongodb_db_name]
    return _db


async def ping() -> bool:
    try:
        await get_db().command("ping")
        return True
    except ServerSelectionTimeoutError:
        logger.error("MongoDB ping timed out")
        return False


async def ensure_indexes(db: AsyncDatabase) -> None:
    users = db[USERS]
    await users.create_index(
        [("email_norm", ASCENDING)],
        unique=True,
        name="uniq_email_norm",
        partialFilterExpression={"email_norm": {"$type": "string"}},
    )
    await users.create_index(
        [("verification_token", ASCENDING)], name="verification_token", sparse=True
    )
    await users.create_index(
        [("forget_password_token", ASCENDING)], name="forget_password_token", sparse=True
    )


async def close_client() -> None:
    global _client, _db
    if _client is not None:
        await _client.close()
    _client = None
    _db = None
