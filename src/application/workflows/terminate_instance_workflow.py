"""Terminate workflow: tears a user's streaming host down and keeps the data volume."""

import asyncio
import logging
from typing import Any

from neuroglia.observability.tracing import add_span_attributes
from opentelemetry import trace

from application.workflows.messages import TerminateInstanceInput, TerminateInstanceOutput, parse_message
from domain.entities.instance_record import InstanceRecord
from domain.enums import DeploymentStatus
from domain.repositories.instance_record_repository import USER_ID_INDEX, InstanceRecordRepository
from integration.exceptions import EC2InstanceNotFoundException
from integration.services.aws_ec2_api_client import AwsEc2Client
from integration.services.polling import Deadline

log = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class TerminateInstanceWorkflow:
    def __init__(self, instance_record_repository: InstanceRecordRepository, ec2_client: AwsEc2Client):
        self.instance_record_repository = instance_record_repository
        self.ec2_client = ec2_client

    async def _find_record(self, request: TerminateInstanceInput) -> InstanceRecord | None:
        if request.deployment_id:
            return await self.instance_record_repository.get_async(request.deployment_id)
        records = await self.instance_record_repository.query_by_index_async(USER_ID_INDEX, request.user_id)
        return next((r for r in records if r.instance_id and r.status != DeploymentStatus.TERMINATED), None)

    async def _restore_running(self, record: InstanceRecord, error: str) -> None:
        # Back to running so terminate can be requested again
        await self.instance_record_repository.update_async(
            record.deployment_id, status=DeploymentStatus.RUNNING, error=error
        )

    async def run(self, payload: dict[str, Any], deadline: Deadline | None = None) -> dict[str, Any]:
        request = parse_message(TerminateInstanceInput, payload)
        add_span_attributes({"deployment.user_id": request.user_id})

        with tracer.start_as_current_span("terminate.check_running_streams"):
            record = await self._find_record(request)
        if record is None or not record.instance_id:
            return TerminateInstanceOutput(
                success=False,
                user_id=request.user_id,
                deployment_id=request.deployment_id,
                error="DeploymentNotFoundException",
                message=f"No running instance found for userId: {request.user_id}",
            ).to_payload()

        try:
            with tracer.start_as_current_span("terminate.terminate_instance"):
                try:
                    await self.ec2_client.terminate_instance(record.instance_id)
                    await self.ec2_client.wait_for_instance_terminated(record.instance_id, deadline=deadline)
                except EC2InstanceNotFoundException:
                    log.info(f"Instance {record.instance_id} already gone")

            with tracer.start_as_current_span("terminate.update_record"):
                await self.instance_record_repository.update_async(
                    record.deployment_id,
                    status=DeploymentStatus.TERMINATED,
                    state="terminated",
                    public_ip=None,
                    dcv_url=None,
                    error=None,
                )
        except asyncio.CancelledError:
            log.warning(f"Termination of {record.instance_id} cancelled")
            await self._restore_running(record, "TerminationAborted")
            raise
        except Exception as e:
            log.error(f"Termination of {record.instance_id} failed: {type(e).__name__}: {e}")
            await self._restore_running(record, type(e).__name__)
            return TerminateInstanceOutput(
                success=False,
                user_id=request.user_id,
                deployment_id=record.deployment_id,
                instance_id=record.instance_id,
                error=type(e).__name__,
                message=str(e),
            ).to_payload()

        log.info(f"Instance {record.instance_id} of user {request.user_id} terminated")
        return TerminateInstanceOutput(
            success=True,
            user_id=request.user_id,
            deployment_id=record.deployment_id,
            instance_id=record.instance_id,
            message="Instance terminated",
        ).to_payload()
