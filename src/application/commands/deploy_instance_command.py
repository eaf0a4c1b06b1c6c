"""Deploy Instance command with handler."""

import datetime
import logging
from dataclasses import dataclass

from neuroglia.core import OperationResult
from neuroglia.mediation import Command, CommandHandler
from neuroglia.observability.tracing import add_span_attributes
from opentelemetry import trace

from application.settings import Settings
from application.workflows.messages import DeployInstanceInput
from application.workflows.registry import WorkflowRegistry
from domain.entities.instance_record import InstanceRecord
from domain.enums import DeploymentStatus
from domain.repositories.instance_record_repository import USER_ID_INDEX, InstanceRecordRepository
from integration.exceptions import IntegrationException
from integration.services.workflow_engine import WorkflowEngine

log = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass
class DeployInstanceCommand(Command[OperationResult[dict]]):
    """Command to start the deploy workflow for a user.

    This command:
    1. Rejects the request when the user already has an active deployment
    2. Stores a pending Instance Record and moves it to deploying
    3. Starts the deploy workflow and keeps its execution handle on the record

    A workflow that cannot be started leaves the record failed, so the user may retry.
    """

    user_id: str
    instance_type: str | None = None
    ami_id: str | None = None


class DeployInstanceCommandHandler(CommandHandler[DeployInstanceCommand, OperationResult[dict]]):
    """Handle deployment requests."""

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

    async def handle_async(self, request: DeployInstanceCommand) -> OperationResult[dict]:
        command = request
        if not command.user_id or not command.user_id.strip():
            return self.bad_request("userId is required")

        add_span_attributes({"deployment.user_id": command.user_id})
        instance_type = command.instance_type or self.settings.ec2_deploy_instance_type.value
        record: InstanceRecord | None = None

        try:
            with tracer.start_as_current_span("check_active_deployment"):
                records = await self.instance_record_repository.query_by_index_async(USER_ID_INDEX, command.user_id)
                active = next((r for r in records if r.is_active), None)
                if active is not None:
                    return self.bad_request(
                        f"User {command.user_id} already has an active deployment ({active.status.value})"
                    )

            record = InstanceRecord(
                user_id=command.user_id,
                instance_type=instance_type,
                ami_id=command.ami_id,
            )
            await self.instance_record_repository.put_async(record)
            add_span_attributes({"deployment.id": record.deployment_id})

            # The workflow owns the status once started; it may finish before start_execution returns
            await self.instance_record_repository.update_async(record.deployment_id, status=DeploymentStatus.DEPLOYING)

            with tracer.start_as_current_span("start_deploy_workflow"):
                definition = self.workflow_registry.get(self.settings.deploy_workflow_name)
                workflow_input = DeployInstanceInput(
                    deployment_id=record.deployment_id,
                    user_id=command.user_id,
                    instance_type=instance_type,
                    ami_id=command.ami_id,
                )
                timestamp_ms = int(datetime.datetime.now(datetime.timezone.utc).timestamp() * 1000)
                execution_arn = await self.workflow_engine.start_execution(
                    definition.arn,
                    workflow_input.to_payload(),
                    name=f"{command.user_id}-{timestamp_ms}",
                )

            await self.instance_record_repository.update_async(record.deployment_id, execution_arn=execution_arn)

            log.info(f"Deployment {record.deployment_id} started for user {command.user_id}")
            return self.accepted(
                {
                    "status": "success",
                    "message": "Deployment workflow started successfully",
                    "deploymentId": record.deployment_id,
                    "userId": command.user_id,
                }
            )

        except IntegrationException as e:
            log.error(f"Failed to start deployment for {command.user_id}: {e}")
            await self._mark_failed(record, type(e).__name__)
            return self.internal_server_error(str(e))

        except Exception as e:
            log.exception(f"Unexpected error starting deployment for {command.user_id}")
            await self._mark_failed(record, type(e).__name__)
            return self.internal_server_error(f"Unexpected error: {str(e)}")

    async def _mark_failed(self, record: InstanceRecord | None, error: str) -> None:
        if record is None:
            return
        try:
            await self.instance_record_repository.update_async(
                record.deployment_id, status=DeploymentStatus.FAILED, error=error
            )
        except Exception:
            log.exception(f"Could not mark deployment {record.deployment_id} failed")
