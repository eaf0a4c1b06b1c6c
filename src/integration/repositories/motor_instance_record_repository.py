"""
MongoDB repository for Instance Records using a Motor collection.

Records are plain documents keyed by ``deploymentId``; the secondary indexes of the
lookup table map to MongoDB indexes on ``userId`` and ``status``.
"""

import logging
from typing import TYPE_CHECKING, Any

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection
from pymongo import DESCENDING, ReturnDocument

from domain.entities.instance_record import InstanceRecord
from domain.repositories.instance_record_repository import (
    STATUS_INDEX,
    USER_ID_INDEX,
    InstanceRecordRepository,
)

if TYPE_CHECKING:
    from neuroglia.hosting.web import WebApplicationBuilder

log = logging.getLogger(__name__)

INDEX_FIELDS = {
    USER_ID_INDEX: "userId",
    STATUS_INDEX: "status",
}


class MotorInstanceRecordRepository(InstanceRecordRepository):
    """Motor-based async MongoDB repository for Instance Records."""

    collection: AsyncIOMotorCollection

    def __init__(self, collection: AsyncIOMotorCollection):
        self.collection = collection
        self._indexes_ready = False

    @staticmethod
    def _to_record(document: dict[str, Any] | None) -> InstanceRecord | None:
        if document is None:
            return None
        document.pop("_id", None)
        return InstanceRecord.from_document(document)

    async def ensure_indexes_async(self) -> None:
        if self._indexes_ready:
            return
        await self.collection.create_index("deploymentId", unique=True)
        for field_name in INDEX_FIELDS.values():
            await self.collection.create_index([(field_name, 1), ("createdAt", DESCENDING)])
        self._indexes_ready = True

    async def get_async(self, deployment_id: str) -> InstanceRecord | None:
        return self._to_record(await self.collection.find_one({"deploymentId": deployment_id}))

    async def put_async(self, record: InstanceRecord) -> InstanceRecord:
        await self.ensure_indexes_async()
        await self.collection.replace_one({"deploymentId": record.deployment_id}, record.to_document(), upsert=True)
        return record

    async def update_async(self, deployment_id: str, **changes: Any) -> InstanceRecord | None:
        document = await self.collection.find_one_and_update(
            {"deploymentId": deployment_id},
            {"$set": InstanceRecord.changes_to_document(**changes)},
            return_document=ReturnDocument.AFTER,
        )
        if document is None:
            log.warning(f"Instance record {deployment_id} not found for update")
        return self._to_record(document)

    async def delete_async(self, deployment_id: str) -> bool:
        result = await self.collection.delete_one({"deploymentId": deployment_id})
        return result.deleted_count > 0

    async def query_by_index_async(self, index_name: str, value: str) -> list[InstanceRecord]:
        field_name = INDEX_FIELDS.get(index_name)
        if field_name is None:
            raise ValueError(f"Unknown index: {index_name}")
        cursor = self.collection.find({field_name: value}).sort("createdAt", DESCENDING)
        records = []
        async for document in cursor:
            records.append(self._to_record(document))
        return records

    async def get_latest_by_user_id_async(self, user_id: str) -> InstanceRecord | None:
        records = await self.query_by_index_async(USER_ID_INDEX, user_id)
        return records[0] if records else None

    @staticmethod
    def configure(builder: "WebApplicationBuilder") -> "MotorInstanceRecordRepository":
        from application.settings import app_settings

        client = AsyncIOMotorClient(app_settings.connection_strings["mongo"])
        collection = client[app_settings.database_name][app_settings.instance_records_collection]
        repository = MotorInstanceRecordRepository(collection)
        builder.services.add_singleton(InstanceRecordRepository, singleton=repository)
        log.info(f"🗄️ Instance records stored in {app_settings.database_name}.{app_settings.instance_records_collection}")
        return repository
