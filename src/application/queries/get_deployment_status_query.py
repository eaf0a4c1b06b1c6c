"""Get Deployment Status query with handler."""

import logging
from dataclasses import dataclass, field
from typing import Any

from neuroglia.core import OperationResult
from neuroglia.mediation import Query, QueryHandler
from neuroglia.observability.tracing import add_span_attributes

from domain.entities.instance_record import InstanceRecord
from domain.enums import DeploymentStatus
from domain.repositories.instance_record_repository import InstanceRecordRepository
from integration.enums import WorkflowExecutionStatus
from integration.exceptions import WorkflowExecutionNotFoundException
from integration.services.workflow_engine import WorkflowEngine

log = logging.getLogger(__name__)


@dataclass
class DeploymentStatusReport:
    """HTTP status code and body of a deployment status report.

    A workflow that failed still yields a 200 report: the report itself succeeded.
    """

    status_code: int
    body: dict[str, Any] = field(default_factory=dict)


@dataclass
class GetDeploymentStatusQuery(Query[OperationResult[DeploymentStatusReport]]):
    """Query to map the user's latest workflow execution to a client-visible status."""

    user_id: str | None = None


class GetDeploymentStatusQueryHandler(
    QueryHandler[GetDeploymentStatusQuery, OperationResult[DeploymentStatusReport]]
):
    def __init__(self, instance_record_repository: InstanceRecordRepository, workflow_engine: WorkflowEngine):
        super().__init__()
        self.instance_record_repository = instance_record_repository
        self.workflow_engine = workflow_engine

    async def handle_async(self, request: GetDeploymentStatusQuery) -> OperationResult[DeploymentStatusReport]:
        if not request.user_id:
            return self.ok(
                DeploymentStatusReport(400, {"status": "FAILED", "message": "userId query parameter is required"})
            )

        add_span_attributes({"deployment.user_id": request.user_id})
        execution_arn = None
        try:
            record = await self.instance_record_repository.get_latest_by_user_id_async(request.user_id)
            if record is None:
                return self.ok(
                    DeploymentStatusReport(
                        404,
                        {"status": "NOT_FOUND", "message": f"No running instance found for userId: {request.user_id}"},
                    )
                )

            execution_arn = record.execution_arn
            if not execution_arn:
                return self.ok(
                    DeploymentStatusReport(
                        404,
                        {"status": "NOT_FOUND", "message": f"No active deployment found for userId: {request.user_id}"},
                    )
                )

            try:
                execution = await self.workflow_engine.describe_execution(execution_arn)
            except WorkflowExecutionNotFoundException:
                # Execution no longer retained; the record keeps the last known outcome
                log.debug(f"Execution of {request.user_id} is gone, reporting from the record")
                return self.ok(DeploymentStatusReport(200, self._report_from_record(record)))
            output = execution.output or {}

            if execution.status == WorkflowExecutionStatus.RUNNING.value:
                body = {"status": "RUNNING", "deploymentStatus": "deploying", "message": "Deployment in progress..."}
            elif execution.status == WorkflowExecutionStatus.SUCCEEDED.value:
                body = {
                    "status": "SUCCEEDED",
                    "deploymentStatus": "running",
                    "instanceId": output.get("instanceId") or record.instance_id,
                    "dcvUrl": output.get("dcvUrl") or record.dcv_url,
                    "message": "Instance is ready for streaming",
                }
            elif execution.status in WorkflowExecutionStatus.failure_statuses():
                body = {
                    "status": "FAILED",
                    "error": output.get("error") or execution.error or "DeploymentFailed",
                    "message": output.get("message") or execution.cause or "Deployment failed",
                }
            else:
                body = {"status": "UNKNOWN", "message": f"Unknown execution status: {execution.status}"}

            log.debug(f"Deployment status of {request.user_id}: {body['status']}")
            return self.ok(DeploymentStatusReport(200, body))

        except Exception as e:
            log.error(f"Error retrieving deployment status of {request.user_id}: {e}", exc_info=True)
            message = str(e)
            if execution_arn:
                message = message.replace(execution_arn, "<execution>")
            return self.ok(
                DeploymentStatusReport(500, {"status": "FAILED", "error": type(e).__name__, "message": message})
            )

    @staticmethod
    def _report_from_record(record: InstanceRecord) -> dict[str, Any]:
        if record.status in (DeploymentStatus.PENDING, DeploymentStatus.DEPLOYING):
            return {"status": "RUNNING", "deploymentStatus": "deploying", "message": "Deployment in progress..."}
        if record.status == DeploymentStatus.FAILED:
            return {"status": "FAILED", "error": record.error or "DeploymentFailed", "message": "Deployment failed"}
        return {
            "status": "SUCCEEDED",
            "deploymentStatus": "running",
            "instanceId": record.instance_id,
            "dcvUrl": record.dcv_url,
            "message": "Instance is ready for streaming",
        }
