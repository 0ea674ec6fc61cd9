import pytest

from schemaflow.errors import AppError, ConcurrentModificationError, PersistenceError, best_effort


async def _ok():
    return "stored"


async def _fail():
    raise ConnectionError("audit store unreachable")


@pytest.mark.asyncio
async def test_best_effort_success():
    """A successful side effect is reported as ok."""
    result = await best_effort("audit event", _ok())
    assert result.ok
    assert result.error is None
    assert result.operation == "audit event"


@pytest.mark.asyncio
async def test_best_effort_records_failure():
    """Failures are captured in the result instead of propagating."""
    result = await best_effort("audit event", _fail(), schema_id="schema_1")
    assert not result.ok
    assert result.error == "audit store unreachable"


def test_concurrent_modification_is_persistence_error():
    """Lost races are a kind of PersistenceError."""
    error = ConcurrentModificationError("schema_1", 4)
    assert isinstance(error, PersistenceError)
    assert isinstance(error, AppError)
    assert error.detail == "expected version 4"
    assert "schema_1" in str(error)
