"""Terminate Instance command with handler."""

import datetime
import logging
from dataclasses import dataclass

from neuroglia.core import OperationResult
from neuroglia.mediation import Command, CommandHandler
from neuroglia.observability.tracing import add_span_attributes

from application.settings import Settings
from application.workflows.messages import TerminateInstanceInput
from application.workflows.registry import WorkflowRegistry
from domain.entities.instance_record import InstanceRecord
from domain.enums import DeploymentStatus
from domain.repositories.instance_record_repository import USER_ID_INDEX, InstanceRecordRepository
from integration.exceptions import IntegrationException
from integration.services.workflow_engine import WorkflowEngine

log = logging.getLogger(__name__)


@dataclass
class TerminateInstanceCommand(Command[OperationResult[dict]]):
    """Command to tear down the user's running streaming host."""

    user_id: str


class TerminateInstanceCommandHandler(CommandHandler[TerminateInstanceCommand, OperationResult[dict]]):
    def __init__(
        self,
        instance_record_repository: InstanceRecordRepository,
        workflow_engine: WorkflowEngine,
        workflow_registry: WorkflowRegistry,
        settings: Settings,
    ):
        self.instance_record_repository = instance_record_repository
        self.workflow_engine = workflow_engine
        self.workflow_registry = workflow_registry
        self.settings = settings

    async def handle_async(self, request: TerminateInstanceCommand) -> OperationResult[dict]:
        command = request
        if not command.user_id or not command.user_id.strip():
            return self.bad_request("userId is required")

        add_span_attributes({"deployment.user_id": command.user_id})
        record: InstanceRecord | None = None
        try:
            records = await self.instance_record_repository.query_by_index_async(USER_ID_INDEX, command.user_id)
            record = next((r for r in records if r.status == DeploymentStatus.RUNNING and r.instance_id), None)
            if record is None:
                return self.not_found(InstanceRecord, command.user_id, "userId")

            # Set before starting: the workflow writes the final status and may finish first
            await self.instance_record_repository.update_async(
                record.deployment_id, status=DeploymentStatus.TERMINATING
            )

            definition = self.workflow_registry.get(self.settings.terminate_workflow_name)
            timestamp_ms = int(datetime.datetime.now(datetime.timezone.utc).timestamp() * 1000)
            await self.workflow_engine.start_execution(
                definition.arn,
                TerminateInstanceInput(user_id=command.user_id, deployment_id=record.deployment_id).to_payload(),
                name=f"{command.user_id}-terminate-{timestamp_ms}",
            )

            log.info(f"Termination of {record.instance_id} requested for user {command.user_id}")
            return self.accepted(
                {
                    "status": "success",
                    "message": "Termination workflow started successfully",
                    "instanceId": record.instance_id,
                }
            )

        except IntegrationException as e:
            log.error(f"Failed to start termination for {command.user_id}: {e}")
            await self._restore_running(record)
            return self.internal_server_error(str(e))

        except Exception as e:
            log.exception(f"Unexpected error starting termination for {command.user_id}")
            await self._restore_running(record)
            return self.internal_server_error(f"Unexpected error: {str(e)}")

    async def _restore_running(self, record: InstanceRecord | None) -> None:
        if record is None:
            return
        try:
            await self.instance_record_repository.update_async(record.deployment_id, status=DeploymentStatus.RUNNING)
        except Exception:
            log.exception(f"Could not restore deployment {record.deployment_id} to running")
