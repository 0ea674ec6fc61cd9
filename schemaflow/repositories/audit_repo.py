from schemaflow.db.mongodb import get_mongodb
from schemaflow.models.audit import SchemaEvent

COLLECTION = "schema_events"


async def record_event(event: SchemaEvent) -> None:
    db = get_mongodb()
    await db[COLLECTION].insert_one(event.model_dump(mode="json"))


async def list_events(schema_id: str, limit: int = 100) -> list[dict]:
    db = get_mongodb()
    cursor = db[COLLECTION].find({"schema_id": schema_id}, {"_id": 0}).sort("created_at", -1)
    return await cursor.to_list(length=limit)


async def delete_events(schema_id: str) -> int:
    db = get_mongodb()
    result = await db[COLLECTION].delete_many({"schema_id": schema_id})
    return result.deleted_count
