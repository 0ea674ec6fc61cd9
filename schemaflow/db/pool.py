"""Bounded pools of primary and replica connections.

The pool is a cache, not a concurrency limit: when a pool is empty a fresh
connection is allocated, and ``max_size`` only bounds how many idle
connections are kept around after release.
"""

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable

logger = logging.getLogger(__name__)


class PoolKind(str, Enum):
    PRIMARY = "primary"
    REPLICA = "replica"


ConnectionFactory = Callable[[], Awaitable[Any]]


@dataclass(eq=False)
class PooledConnection:
    kind: PoolKind
    connection: Any
    created_at: float = field(default_factory=time.monotonic)

    def age(self, now: float) -> float:
        return now - self.created_at


class ConnectionPool:
    """Primary and replica connection pools with age-based eviction.

    One instance is created per process by ``db.postgres.init_postgres()``;
    tests build isolated instances with fake factories. Connections must
    expose an awaitable ``close()``.
    """

    def __init__(
        self,
        factories: dict[PoolKind, ConnectionFactory],
        *,
        min_size: int = 2,
        max_size: int = 10,
        max_age_seconds: float = 30 * 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        if min_size < 0 or max_size < 1 or min_size > max_size:
            raise ValueError(f"Invalid pool bounds: min_size={min_size}, max_size={max_size}")
        missing = set(PoolKind) - set(factories)
        if missing:
            raise ValueError(f"Missing connection factories for: {sorted(k.value for k in missing)}")

        self.min_size = min_size
        self.max_size = max_size
        self.max_age_seconds = max_age_seconds
        self._factories = factories
        self._clock = clock
        self._idle: dict[PoolKind, list[PooledConnection]] = {kind: [] for kind in PoolKind}
        self.allocated = 0
        self.disconnected = 0

    async def start(self) -> None:
        """Pre-warm both pools up to ``min_size``."""
        for kind in PoolKind:
            while len(self._idle[kind]) < self.min_size:
                self._idle[kind].append(await self._allocate(kind))
        logger.info("Initialized connection pools with %d connections each", self.min_size)

    def size(self, kind: PoolKind) -> int:
        return len(self._idle[kind])

    async def borrow(self, kind: PoolKind) -> PooledConnection:
        idle = self._idle[kind]
        if not idle:
            return await self._allocate(kind)

        pooled = idle.pop()
        if pooled.age(self._clock()) > self.max_age_seconds:
            logger.info("Evicting %s connection older than %ss", kind.value, self.max_age_seconds)
            await self._disconnect(pooled)
            return await self._allocate(kind)
        return pooled

    async def release(self, kind: PoolKind, pooled: PooledConnection) -> None:
        if len(self._idle[kind]) < self.max_size:
            self._idle[kind].append(pooled)
        else:
            await self._disconnect(pooled)

    @asynccontextmanager
    async def connection(self, kind: PoolKind) -> AsyncIterator[Any]:
        """Borrow a connection for the duration of the block, releasing it on every exit path."""
        pooled = await self.borrow(kind)
        try:
            yield pooled.connection
        finally:
            await self.release(kind, pooled)

    async def close_all(self) -> None:
        for kind in PoolKind:
            idle, self._idle[kind] = self._idle[kind], []
            for pooled in idle:
                await self._disconnect(pooled)
        logger.info("Closed all pooled database connections")

    async def _allocate(self, kind: PoolKind) -> PooledConnection:
        connection = await self._factories[kind]()
        self.allocated += 1
        return PooledConnection(kind=kind, connection=connection, created_at=self._clock())

    async def _disconnect(self, pooled: PooledConnection) -> None:
        try:
            await pooled.connection.close()
        except Exception as e:
            logger.warning("Error disconnecting %s connection: %s", pooled.kind.value, e)
        else:
            self.disconnected += 1
