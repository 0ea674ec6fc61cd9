import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from schemaflow.config import settings
from schemaflow.db.pool import ConnectionPool, PoolKind
from schemaflow.db.postgres import get_pool
from schemaflow.db.router import Operation, QueryRouter, RoutableModel, RoutedQuery
from schemaflow.errors import PersistenceError

logger = logging.getLogger(__name__)


def _with_comment(sql: str, comment: str | None) -> str:
    if not comment:
        return sql
    return f"/* {comment.replace('*/', '')} */ {sql}"


def _runner(conn: Any, statement: Any):
    async def run(params):
        return await conn.execute(statement, params)

    return run


class Database:
    """Parameterized query execution over the routed connection pools.

    Every call borrows one connection, runs inside its own transaction and
    releases the connection before returning, except on handles yielded by
    ``transaction()``. Store failures surface as ``PersistenceError``.
    """

    def __init__(self, pool: ConnectionPool, router: QueryRouter, connection: Any = None):
        self.pool = pool
        self.router = router
        self._connection = connection  # set on handles yielded by transaction()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["Database"]:
        """Run several calls atomically on one primary connection.

        The yielded handle sends every statement through that connection,
        bypassing replica routing so reads see the block's own writes. The
        block commits on normal exit and rolls back if it raises. Nested calls
        join the outer transaction.
        """
        if self._connection is not None:
            yield self
            return
        try:
            async with self.pool.connection(PoolKind.PRIMARY) as conn:
                async with conn.begin():
                    yield Database(self.pool, self.router, connection=conn)
        except (SQLAlchemyError, OSError) as e:
            logger.error("Transaction on primary pool failed: %s", e)
            raise PersistenceError(str(e).splitlines()[0] if str(e) else type(e).__name__) from e

    async def find_many(
        self,
        model: RoutableModel | str,
        sql: str,
        params: Mapping[str, Any] | None = None,
        *,
        take: int | None = None,
        where: Any = None,
        include: bool = False,
    ) -> list[dict[str, Any]]:
        args: dict[str, Any] = {"where": where if where is not None else dict(params or {})}
        if take is not None:
            args["take"] = take
        if include:
            args["include"] = True
        routed = self.router.route(Operation.FIND_MANY, model, args)
        return await self._fetch(routed, sql, dict(params or {}))

    async def find_one(
        self,
        model: RoutableModel | str,
        sql: str,
        params: Mapping[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        rows = await self.find_many(model, sql, params, take=1)
        return rows[0] if rows else None

    async def create_many(
        self,
        model: RoutableModel | str,
        sql: str,
        rows: list[dict[str, Any]],
    ) -> int:
        if not rows:
            return 0
        routed = self.router.route(Operation.CREATE_MANY, model, {"data": rows})
        async with self._transaction(routed.target, _with_comment(sql, routed.comment)) as run:
            await run(rows)
        return len(rows)

    async def execute(self, sql: str, params: Mapping[str, Any] | None = None) -> int:
        """Run a single write or DDL statement on the primary; returns the affected row count."""
        async with self._transaction(PoolKind.PRIMARY, sql) as run:
            result = await run(dict(params or {}))
            return result.rowcount

    async def table_exists(self, table_name: str) -> bool:
        row = await self.find_one(
            RoutableModel.PROJECT_SCHEMA_META,
            "SELECT EXISTS (SELECT 1 FROM information_schema.tables WHERE table_name = :table_name) AS found",
            {"table_name": table_name},
        )
        return bool(row and row["found"])

    async def column_exists(self, table_name: str, column_name: str) -> bool:
        row = await self.find_one(
            RoutableModel.PROJECT_SCHEMA_META,
            "SELECT EXISTS (SELECT 1 FROM information_schema.columns "
            "WHERE table_name = :table_name AND column_name = :column_name) AS found",
            {"table_name": table_name, "column_name": column_name},
        )
        return bool(row and row["found"])

    async def _fetch(self, routed: RoutedQuery, sql: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        async with self._transaction(routed.target, _with_comment(sql, routed.comment)) as run:
            result = await run(params)
            return [dict(row) for row in result.mappings().all()]

    @asynccontextmanager
    async def _transaction(self, kind: PoolKind, sql: str) -> AsyncIterator[Any]:
        statement = text(sql)
        try:
            if self._connection is not None:
                yield _runner(self._connection, statement)
            else:
                async with self.pool.connection(kind) as conn:
                    async with conn.begin():
                        yield _runner(conn, statement)
        except (SQLAlchemyError, OSError) as e:
            logger.error("Query on %s pool failed: %s", kind.value, e)
            raise PersistenceError(str(e).splitlines()[0] if str(e) else type(e).__name__, detail=sql) from e


database: Database | None = None


def get_database() -> Database:
    """Process-wide Database bound to the pool created by ``init_postgres()``."""
    global database
    if database is None:
        database = Database(get_pool(), QueryRouter(annotate=not settings.is_production))
    return database


def reset_database() -> None:
    global database
    database = None
