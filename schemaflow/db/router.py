import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from schemaflow.db.pool import PoolKind

logger = logging.getLogger(__name__)

LARGE_READ_TAKE = 1000
BULK_WRITE_ROWS = 100
REPLICA_MARKER = "USE_REPLICA"


class Operation(str, Enum):
    FIND_MANY = "findMany"
    CREATE_MANY = "createMany"


class RoutableModel(str, Enum):
    IMPORT_JOB = "ImportJob"
    PROJECT_SCHEMA_META = "ProjectSchemaMeta"
    GLOBAL_SCHEMA = "GlobalSchema"
    SCHEMA_VERSION = "SchemaVersion"
    NORMALIZED_RECORD = "NormalizedRecord"
    COLUMN_MAPPING = "ColumnMapping"


# Models whose every operation goes to the replica pool.
ALWAYS_REPLICA: frozenset[RoutableModel] = frozenset({
    RoutableModel.IMPORT_JOB,
    RoutableModel.PROJECT_SCHEMA_META,
})


@dataclass
class RoutedQuery:
    target: PoolKind
    args: dict[str, Any] = field(default_factory=dict)
    reason: str = "default"

    @property
    def comment(self) -> str | None:
        return self.args.get("comment")


def _parse_enum(enum_cls, value):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return None


def _mentions_marker(where: Any) -> bool:
    if where is None:
        return False
    try:
        return REPLICA_MARKER in json.dumps(where)
    except (TypeError, ValueError):
        return False


class QueryRouter:
    """Chooses the pool an operation borrows from. Never raises."""

    def __init__(
        self,
        *,
        annotate: bool = True,
        always_replica: frozenset[RoutableModel] = ALWAYS_REPLICA,
    ):
        self.annotate = annotate
        self.always_replica = always_replica

    def route(
        self,
        operation: Operation | str,
        model: RoutableModel | str | None,
        args: Mapping[str, Any] | None = None,
    ) -> RoutedQuery:
        args = dict(args or {})
        op = _parse_enum(Operation, operation)
        entity = _parse_enum(RoutableModel, model)
        model_name = entity.value if entity else (str(model) if model else None)

        if entity in self.always_replica:
            reason = f"{model_name} is always routed to the replica"
        elif op is Operation.FIND_MANY:
            reason = self._find_many_reason(args)
        elif op is Operation.CREATE_MANY:
            reason = self._create_many_reason(args)
        else:
            reason = None

        if reason is None:
            return RoutedQuery(target=PoolKind.PRIMARY, args=args)

        logger.debug("Routing %s.%s to read replica: %s", model_name, getattr(op, "value", operation), reason)
        return RoutedQuery(
            target=PoolKind.REPLICA,
            args=self._annotate(args, op.value if op else str(operation), model_name),
            reason=reason,
        )

    @staticmethod
    def _find_many_reason(args: dict[str, Any]) -> str | None:
        take = args.get("take")
        if isinstance(take, int) and take > LARGE_READ_TAKE:
            return f"take={take} exceeds {LARGE_READ_TAKE}"
        if _mentions_marker(args.get("where")):
            return f"filter carries {REPLICA_MARKER}"
        if args.get("include") or args.get("select"):
            return "relational include/projection"
        return None

    @staticmethod
    def _create_many_reason(args: dict[str, Any]) -> str | None:
        data = args.get("data")
        if isinstance(data, list) and len(data) > BULK_WRITE_ROWS:
            return f"bulk insert of {len(data)} rows"
        return None

    def _annotate(self, args: dict[str, Any], operation: str, model_name: str | None) -> dict[str, Any]:
        if not self.annotate:
            return args
        target = f"{model_name}.{operation}" if model_name else operation
        return {**args, "comment": f"Using replica for {target}"}
