"""Abstract repository for Instance Records."""

from abc import ABC, abstractmethod
from typing import Any

from domain.entities.instance_record import InstanceRecord

USER_ID_INDEX = "UserIdIndex"
STATUS_INDEX = "StatusIndex"


class InstanceRecordRepository(ABC):
    """Key/value store of Instance Records with secondary indexes on user id and status.

    Updates are last-writer-wins; there is no optimistic concurrency on records.
    """

    @abstractmethod
    async def get_async(self, deployment_id: str) -> InstanceRecord | None:
        """Retrieve a record by primary key."""
        pass

    @abstractmethod
    async def put_async(self, record: InstanceRecord) -> InstanceRecord:
        """Insert or replace a record."""
        pass

    @abstractmethod
    async def update_async(self, deployment_id: str, **changes: Any) -> InstanceRecord | None:
        """Apply field changes to a record and return the updated record (None if missing)."""
        pass

    @abstractmethod
    async def delete_async(self, deployment_id: str) -> bool:
        """Delete a record. Returns False when nothing was deleted."""
        pass

    @abstractmethod
    async def query_by_index_async(self, index_name: str, value: str) -> list[InstanceRecord]:
        """Query records by secondary index (UserIdIndex, StatusIndex), newest first."""
        pass

    @abstractmethod
    async def get_latest_by_user_id_async(self, user_id: str) -> InstanceRecord | None:
        """Retrieve the most recent record of a user."""
        pass
