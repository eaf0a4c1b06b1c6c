"""Get Streaming Link query with handler."""

import logging
from dataclasses import dataclass
from typing import Any

from neuroglia.core import OperationResult
from neuroglia.mediation import Query, QueryHandler

from domain.entities.instance_record import InstanceRecord
from domain.enums import DeploymentStatus
from domain.repositories.instance_record_repository import InstanceRecordRepository

log = logging.getLogger(__name__)


@dataclass
class GetStreamingLinkQuery(Query[OperationResult[dict[str, Any]]]):
    """Query to retrieve the streaming URL of the user's running deployment."""

    user_id: str | None = None


class GetStreamingLinkQueryHandler(QueryHandler[GetStreamingLinkQuery, OperationResult[dict[str, Any]]]):
    def __init__(self, instance_record_repository: InstanceRecordRepository):
        super().__init__()
        self.instance_record_repository = instance_record_repository

    async def handle_async(self, request: GetStreamingLinkQuery) -> OperationResult[dict[str, Any]]:
        if not request.user_id:
            return self.bad_request("userId query parameter is required")
        try:
            record = await self.instance_record_repository.get_latest_by_user_id_async(request.user_id)
            if record is None or record.status != DeploymentStatus.RUNNING or not record.dcv_url:
                return self.not_found(InstanceRecord, request.user_id, "userId")

            return self.ok({"userId": record.user_id, "instanceId": record.instance_id, "dcvUrl": record.dcv_url})

        except Exception as e:
            log.error(f"Error retrieving streaming link of {request.user_id}: {e}", exc_info=True)
            return self.internal_server_error(str(e))
