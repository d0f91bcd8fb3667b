# devbox/db/__init__.py
"""
Database module.

MongoDB holds the authoritative project files. The service keeps running
without it; file-store operations then raise StoreUnavailable.
"""
from typing import Optional

from devbox.core.config import settings
from devbox.core.logging import log

# Motor client instance
_client = None
_db = None
_connection_error: Optional[str] = None


async def connect_db():
    """Connect to MongoDB and initialise Beanie, recording the error on failure."""
    global _client, _db, _connection_error
    try:
        from motor.motor_asyncio import AsyncIOMotorClient
        from beanie import init_beanie
        from devbox.models import ProjectFile

        _client = AsyncIOMotorClient(settings.database.mongodb_url, serverSelectionTimeoutMS=5000)
        _db = _client[settings.database.database_name]

        # Fails fast if MongoDB is not running
        await _client.admin.command("ping")
        log("STORE", "Connected to MongoDB")

        await init_beanie(database=_db, document_models=[ProjectFile])
        log("STORE", "Beanie ODM initialized")
        _connection_error = None
    except Exception as e:
        error_msg = str(e)
        log("STORE", f"MongoDB not available: {error_msg}")
        log("STORE", "Continuing without database; file sync will be unavailable")
        _client = None
        _db = None
        _connection_error = error_msg


async def disconnect_db():
    global _client, _db
    if _client:
        _client.close()
        log("STORE", "Disconnected from MongoDB")
    _client = None
    _db = None


def is_connected() -> bool:
    return _db is not None


def get_connection_error() -> Optional[str]:
    return _connection_error
