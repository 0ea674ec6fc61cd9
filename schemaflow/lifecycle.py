import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from schemaflow.config import settings
from schemaflow.db.database import Database, get_database, reset_database
from schemaflow.db.mongodb import close_mongodb, init_mongodb
from schemaflow.db.postgres import close_postgres, init_postgres
from schemaflow.repositories import record_repo, schema_repo, version_repo

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )


async def ensure_tables(db: Database) -> None:
    await schema_repo.ensure_table(db)
    await version_repo.ensure_table(db)
    await record_repo.ensure_table(db)


async def startup() -> Database:
    configure_logging()
    await init_postgres()
    await init_mongodb()
    db = get_database()
    await ensure_tables(db)
    logger.info("Database connections established")
    return db


async def shutdown() -> None:
    reset_database()
    await close_postgres()
    await close_mongodb()
    logger.info("Database connections closed")


@asynccontextmanager
async def lifespan() -> AsyncIterator[Database]:
    """Open pools and stores for the duration of the block; usable as an app lifespan hook."""
    db = await startup()
    try:
        yield db
    finally:
        await shutdown()
