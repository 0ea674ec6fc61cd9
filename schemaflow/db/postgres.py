import logging

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from schemaflow.config import settings
from schemaflow.db.pool import ConnectionFactory, ConnectionPool, PoolKind

logger = logging.getLogger(__name__)

engines: dict[PoolKind, AsyncEngine] = {}
pool: ConnectionPool | None = None


def _connector(engine: AsyncEngine) -> ConnectionFactory:
    async def connect() -> AsyncConnection:
        conn = engine.connect()
        await conn.start()
        return conn

    return connect


def _engine(dsn: str) -> AsyncEngine:
    # ConnectionPool is the only pool: each connect() opens a fresh DBAPI connection
    return create_async_engine(dsn, echo=settings.sql_echo, poolclass=NullPool)


def create_engines() -> dict[PoolKind, AsyncEngine]:
    primary = _engine(settings.postgres_dsn)
    if settings.replica_dsn == settings.postgres_dsn:
        logger.warning("No replica_database_url configured; replica pool uses the primary database")
        replica = primary
    else:
        replica = _engine(settings.replica_dsn)
    return {PoolKind.PRIMARY: primary, PoolKind.REPLICA: replica}


async def init_postgres() -> ConnectionPool:
    global pool
    if pool is not None:
        return pool
    engines.update(create_engines())
    new_pool = ConnectionPool(
        {kind: _connector(engine) for kind, engine in engines.items()},
        min_size=settings.pool_min_size,
        max_size=settings.pool_max_size,
        max_age_seconds=settings.pool_max_connection_age_seconds,
    )
    await new_pool.start()
    pool = new_pool
    return pool


async def close_postgres() -> None:
    global pool
    if pool is not None:
        await pool.close_all()
        pool = None
    for engine in {id(e): e for e in engines.values()}.values():
        await engine.dispose()
    engines.clear()


def get_pool() -> ConnectionPool:
    if pool is None:
        raise RuntimeError("Connection pool is not initialized; call init_postgres() first")
    return pool
