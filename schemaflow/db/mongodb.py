from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from schemaflow.config import settings

client: AsyncIOMotorClient | None = None
db: AsyncIOMotorDatabase | None = None


async def init_mongodb() -> AsyncIOMotorDatabase:
    global client, db
    client = AsyncIOMotorClient(settings.mongodb_uri)
    db = client[settings.mongodb_db]
    return db


async def close_mongodb() -> None:
    global client, db
    if client:
        client.close()
    client = None
    db = None


def get_mongodb() -> AsyncIOMotorDatabase:
    if db is None:
        raise RuntimeError("MongoDB is not initialized; call init_mongodb() first")
    return db
