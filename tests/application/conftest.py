"""Shared fixtures for application-layer tests."""

from typing import Any

import pytest

from domain.entities.instance_record import InstanceRecord
from domain.repositories.instance_record_repository import (
    STATUS_INDEX,
    USER_ID_INDEX,
    InstanceRecordRepository,
)


class InMemoryInstanceRecordRepository(InstanceRecordRepository):
    """Dictionary-backed record store for tests that follow a record across several steps."""

    def __init__(self):
        self.records: dict[str, InstanceRecord] = {}

    async def get_async(self, deployment_id: str) -> InstanceRecord | None:
        return self.records.get(deployment_id)

    async def put_async(self, record: InstanceRecord) -> InstanceRecord:
        self.records[record.deployment_id] = record
        return record

    async def update_async(self, deployment_id: str, **changes: Any) -> InstanceRecord | None:
        record = self.records.get(deployment_id)
        if record is None:
            return None
        for name, value in changes.items():
            setattr(record, name, value)
        return record

    async def delete_async(self, deployment_id: str) -> bool:
        return self.records.pop(deployment_id, None) is not None

    async def query_by_index_async(self, index_name: str, value: str) -> list[InstanceRecord]:
        attribute = {USER_ID_INDEX: "user_id", STATUS_INDEX: "status"}[index_name]
        matches = [r for r in self.records.values() if getattr(r, attribute) == value]
        return sorted(matches, key=lambda r: r.created_at, reverse=True)

    async def get_latest_by_user_id_async(self, user_id: str) -> InstanceRecord | None:
        records = await self.query_by_index_async(USER_ID_INDEX, user_id)
        return records[0] if records else None


@pytest.fixture
def record_store():
    return InMemoryInstanceRecordRepository()
