import pytest
from sqlalchemy.exc import OperationalError

from schemaflow.db.database import Database
from schemaflow.db.pool import ConnectionPool, PoolKind
from schemaflow.db.router import QueryRouter, RoutableModel
from schemaflow.errors import PersistenceError


@pytest.fixture
def pool(backend):
    return ConnectionPool(backend.factories(), min_size=0, max_size=10)


@pytest.fixture
def database(pool):
    return Database(pool, QueryRouter())


@pytest.mark.asyncio
async def test_find_many_plain_read_uses_primary(database, backend):
    """A small read is run on the primary without a routing comment."""
    backend.rows = [{"id": "schema_1", "name": "Customers"}]

    rows = await database.find_many(RoutableModel.GLOBAL_SCHEMA, "SELECT id, name FROM global_schemas", {})

    assert rows == [{"id": "schema_1", "name": "Customers"}]
    kind, sql, params = backend.executed[0]
    assert kind is PoolKind.PRIMARY
    assert sql == "SELECT id, name FROM global_schemas"
    assert params == {}


@pytest.mark.asyncio
async def test_find_many_large_take_uses_replica_with_comment(database, backend):
    """Reads over 1000 rows go to the replica with a routing comment."""
    await database.find_many(
        RoutableModel.NORMALIZED_RECORD, "SELECT * FROM normalized_records LIMIT :limit", {"limit": 5000}, take=5000,
    )

    kind, sql, params = backend.executed[0]
    assert kind is PoolKind.REPLICA
    assert sql.startswith("/* Using replica for NormalizedRecord.findMany */ SELECT")
    assert params == {"limit": 5000}


@pytest.mark.asyncio
async def test_production_router_omits_comment(pool, backend):
    """Production routing adds no SQL comment."""
    database = Database(pool, QueryRouter(annotate=False))

    await database.find_many(RoutableModel.IMPORT_JOB, "SELECT 1", {})

    kind, sql, _ = backend.executed[0]
    assert kind is PoolKind.REPLICA
    assert sql == "SELECT 1"


@pytest.mark.asyncio
async def test_find_one(database, backend):
    """find_one returns the first row or None."""
    backend.rows = [{"id": "a"}, {"id": "b"}]
    assert await database.find_one(RoutableModel.GLOBAL_SCHEMA, "SELECT id FROM t", {}) == {"id": "a"}

    backend.rows = []
    assert await database.find_one(RoutableModel.GLOBAL_SCHEMA, "SELECT id FROM t", {}) is None


@pytest.mark.asyncio
async def test_create_many_routes_bulk_to_replica(database, backend):
    """Bulk inserts over 100 rows go to the replica."""
    rows = [{"id": str(i)} for i in range(150)]

    inserted = await database.create_many(RoutableModel.NORMALIZED_RECORD, "INSERT INTO t (id) VALUES (:id)", rows)

    assert inserted == 150
    kind, sql, params = backend.executed[0]
    assert kind is PoolKind.REPLICA
    assert "Using replica for NormalizedRecord.createMany" in sql
    assert params == rows


@pytest.mark.asyncio
async def test_create_many_small_batch_uses_primary(database, backend):
    """Small inserts stay on the primary."""
    await database.create_many(RoutableModel.NORMALIZED_RECORD, "INSERT INTO t (id) VALUES (:id)", [{"id": "1"}])
    assert backend.executed[0][0] is PoolKind.PRIMARY


@pytest.mark.asyncio
async def test_create_many_empty_is_noop(database, backend):
    """Nothing is executed for an empty payload."""
    assert await database.create_many(RoutableModel.NORMALIZED_RECORD, "INSERT", []) == 0
    assert backend.executed == []


@pytest.mark.asyncio
async def test_execute_returns_rowcount_and_commits(database, backend):
    """execute() commits and returns the affected row count."""
    backend.rowcount = 3

    affected = await database.execute("UPDATE t SET a = :a", {"a": 1})

    assert affected == 3
    assert backend.executed[0][0] is PoolKind.PRIMARY
    assert backend.connections[0].commits == 1


@pytest.mark.asyncio
async def test_table_exists_reads_schema_meta_from_replica(database, backend):
    """Schema metadata lookups always read from the replica."""
    backend.rows = [{"found": True}]

    assert await database.table_exists("normalized_records") is True
    assert backend.executed[0][0] is PoolKind.REPLICA
    assert backend.executed[0][2] == {"table_name": "normalized_records"}


@pytest.mark.asyncio
async def test_column_exists_false(database, backend):
    """A missing column is reported as False."""
    backend.rows = [{"found": False}]
    assert await database.column_exists("schema_versions", "change_log") is False


@pytest.mark.asyncio
async def test_store_error_becomes_persistence_error(database, backend, pool):
    """Driver errors surface as PersistenceError; the transaction rolls back and the connection is returned."""
    backend.error = OperationalError("UPDATE t", {}, Exception("server closed the connection"))

    with pytest.raises(PersistenceError) as exc_info:
        await database.execute("UPDATE t SET a = 1")

    assert "server closed the connection" in exc_info.value.message
    assert exc_info.value.detail == "UPDATE t SET a = 1"
    assert backend.connections[0].rollbacks == 1
    assert pool.size(PoolKind.PRIMARY) == 1


@pytest.mark.asyncio
async def test_transaction_shares_one_primary_connection(database, backend, pool):
    """Every call inside transaction() runs on the same primary connection and commits once."""
    backend.rows = [{"id": "a"}]

    async with database.transaction() as tx:
        await tx.find_many(RoutableModel.IMPORT_JOB, "SELECT id FROM import_jobs", {})
        await tx.execute("UPDATE global_schemas SET version = 2 WHERE id = :id", {"id": "a"})
        async with tx.transaction() as nested:
            await nested.execute("INSERT INTO schema_versions (id) VALUES (:id)", {"id": "v"})

    assert [kind for kind, _, _ in backend.executed] == [PoolKind.PRIMARY] * 3
    assert len(backend.connections) == 1
    assert backend.connections[0].commits == 1
    assert pool.size(PoolKind.PRIMARY) == 1


@pytest.mark.asyncio
async def test_transaction_rolls_back_when_block_raises(database, backend, pool):
    """An error inside the block rolls back every statement and returns the connection."""
    with pytest.raises(PersistenceError):
        async with database.transaction() as tx:
            await tx.execute("INSERT INTO schema_versions (id) VALUES (:id)", {"id": "v"})
            raise PersistenceError("Schema schema_1 was modified concurrently")

    conn = backend.connections[0]
    assert conn.commits == 0
    assert conn.rollbacks == 1
    assert pool.size(PoolKind.PRIMARY) == 1


@pytest.mark.asyncio
async def test_transaction_statement_error_becomes_persistence_error(database, backend):
    """A driver error inside the block surfaces as PersistenceError and rolls back."""
    backend.error = OperationalError("INSERT", {}, Exception("unique violation"))

    with pytest.raises(PersistenceError) as exc_info:
        async with database.transaction() as tx:
            await tx.execute("INSERT INTO schema_versions (id) VALUES (:id)", {"id": "v"})

    assert "unique violation" in exc_info.value.message
    assert backend.connections[0].rollbacks == 1
