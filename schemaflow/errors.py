import logging
from typing import Any, Awaitable

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class AppError(Exception):
    def __init__(self, message: str, detail: str | None = None):
        self.message = message
        self.detail = detail
        super().__init__(self.message)


class NotFoundError(AppError):
    def __init__(self, message: str = "Resource not found", detail: str | None = None):
        super().__init__(message=message, detail=detail)


class ValidationError(AppError):
    def __init__(self, message: str = "Validation error", detail: str | None = None):
        super().__init__(message=message, detail=detail)


class PersistenceError(AppError):
    def __init__(self, message: str = "Persistence error", detail: str | None = None):
        super().__init__(message=message, detail=detail)


class ConcurrentModificationError(PersistenceError):
    def __init__(self, schema_id: str, expected_version: int):
        self.schema_id = schema_id
        self.expected_version = expected_version
        super().__init__(
            message=f"Schema {schema_id} was modified concurrently",
            detail=f"expected version {expected_version}",
        )


class SideEffectResult(BaseModel):
    """Outcome of a non-critical write whose failure must not fail the caller."""
    operation: str
    ok: bool
    error: str | None = None


async def best_effort(operation: str, awaitable: Awaitable[Any], **context: Any) -> SideEffectResult:
    """Await a secondary write, logging and recording any failure instead of raising."""
    try:
        await awaitable
    except Exception as e:
        logger.warning("Non-critical %s failed: %s (context: %s)", operation, e, context)
        return SideEffectResult(operation=operation, ok=False, error=str(e))
    return SideEffectResult(operation=operation, ok=True)
