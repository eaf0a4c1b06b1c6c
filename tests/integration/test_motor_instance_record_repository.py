"""Tests for the Motor-backed instance record repository."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from domain.entities.instance_record import InstanceRecord
from domain.enums import DeploymentStatus
from domain.repositories import STATUS_INDEX, USER_ID_INDEX
from integration.repositories.motor_instance_record_repository import MotorInstanceRecordRepository


@pytest.fixture
def collection():
    collection = MagicMock()
    collection.create_index = AsyncMock()
    collection.find_one = AsyncMock()
    collection.replace_one = AsyncMock()
    collection.find_one_and_update = AsyncMock()
    collection.delete_one = AsyncMock()
    return collection


@pytest.fixture
def repository(collection):
    return MotorInstanceRecordRepository(collection)


def cursor_of(*documents: dict) -> MagicMock:
    cursor = MagicMock()
    cursor.__aiter__.return_value = list(documents)
    return cursor


@pytest.mark.asyncio
class TestMotorInstanceRecordRepository:
    async def test_put_stores_camel_case_document(self, repository, collection):
        """Test records are upserted by deployment id in their stored shape."""
        record = InstanceRecord(user_id="alice", instance_type="t3.micro")

        await repository.put_async(record)

        filter_, document = collection.replace_one.call_args.args
        assert filter_ == {"deploymentId": record.deployment_id}
        assert document["userId"] == "alice"
        assert document["status"] == "pending"
        assert document["instanceType"] == "t3.micro"
        assert "executionArn" not in document
        assert collection.replace_one.call_args.kwargs["upsert"] is True

    async def test_indexes_are_created_once(self, repository, collection):
        await repository.put_async(InstanceRecord(user_id="alice"))
        await repository.put_async(InstanceRecord(user_id="bob"))

        assert collection.create_index.await_count == 3

    async def test_get_strips_mongo_id(self, repository, collection):
        collection.find_one.return_value = {"_id": "x", "deploymentId": "d-1", "userId": "alice", "status": "running"}

        record = await repository.get_async("d-1")

        assert record.deployment_id == "d-1"
        assert record.status == DeploymentStatus.RUNNING

    async def test_update_sets_changed_fields(self, repository, collection):
        collection.find_one_and_update.return_value = {"deploymentId": "d-1", "userId": "alice", "status": "failed"}

        record = await repository.update_async("d-1", status=DeploymentStatus.FAILED, error="Boom")

        update = collection.find_one_and_update.call_args.args[1]["$set"]
        assert update["status"] == "failed"
        assert update["error"] == "Boom"
        assert "updatedAt" in update
        assert record.status == DeploymentStatus.FAILED

    async def test_query_by_user_index_sorts_newest_first(self, repository, collection):
        collection.find.return_value.sort.return_value = cursor_of(
            {"deploymentId": "d-2", "userId": "alice", "status": "running"},
            {"deploymentId": "d-1", "userId": "alice", "status": "terminated"},
        )

        records = await repository.query_by_index_async(USER_ID_INDEX, "alice")

        collection.find.assert_called_once_with({"userId": "alice"})
        assert [r.deployment_id for r in records] == ["d-2", "d-1"]

    async def test_query_by_status_index(self, repository, collection):
        collection.find.return_value.sort.return_value = cursor_of()

        assert await repository.query_by_index_async(STATUS_INDEX, "running") == []
        collection.find.assert_called_once_with({"status": "running"})

    async def test_unknown_index_raises(self, repository):
        with pytest.raises(ValueError):
            await repository.query_by_index_async("NoSuchIndex", "alice")

    async def test_latest_by_user_is_none_without_records(self, repository, collection):
        collection.find.return_value.sort.return_value = cursor_of()

        assert await repository.get_latest_by_user_id_async("alice") is None
