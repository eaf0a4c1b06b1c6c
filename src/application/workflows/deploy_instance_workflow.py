"""Deploy workflow: stands up a streaming host for one user.

Stages, each traced and retried on transient provider failures:
a. refuse when the user already has a running deployment
b. resolve the cached machine image
c. obtain the instance profile
d. create the instance and wait for it to run
e. attach the user's data volume (reused when one is available)
f. establish the DCV session
g. on a cache miss, capture an image and publish it to the cache
h. persist the running deployment

When a stage fails, the undo actions of completed stages run in reverse order and
the record is marked failed. The failure is reported in the output, not raised.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

from neuroglia.observability.tracing import add_span_attributes
from opentelemetry import trace

from application.decorators.retry import retry_on_transient_failure
from application.services.dcv_session_orchestrator import DcvSessionOrchestrator
from application.workflows.compensation import CompensationStack
from application.workflows.messages import (
    DeployInstanceInput,
    DeployInstanceOutput,
    InstanceProvisioned,
    SessionEstablished,
    VolumeAttached,
    parse_message,
)
from application.workflows.registry import RetryPolicy
from domain.enums import DeploymentStatus
from domain.repositories.instance_record_repository import USER_ID_INDEX, InstanceRecordRepository
from integration.exceptions import (
    ActiveDeploymentExistsException,
    EC2InstanceNotFoundException,
    SSMParameterAlreadyExistsException,
)
from integration.models import EbsVolumeAttachment, EbsVolumeConfig, Ec2InstanceConfig
from integration.services.aws_ebs_api_client import AwsEbsClient
from integration.services.aws_ec2_api_client import AwsEc2Client
from integration.services.aws_iam_api_client import AwsIamClient
from integration.services.aws_ssm_parameter_store import AwsSsmParameterStore
from integration.services.polling import Deadline

log = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

T = TypeVar("T")


@dataclass
class DeployWorkflowOptions:
    ami_cache_parameter_name: str = "ami_id"
    security_group_ids: list[str] = field(default_factory=list)
    subnet_id: str | None = None
    key_name: str | None = None
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)


class DeployInstanceWorkflow:
    def __init__(
        self,
        instance_record_repository: InstanceRecordRepository,
        ec2_client: AwsEc2Client,
        ebs_client: AwsEbsClient,
        iam_client: AwsIamClient,
        parameter_store: AwsSsmParameterStore,
        session_orchestrator: DcvSessionOrchestrator,
        options: DeployWorkflowOptions,
    ):
        self.instance_record_repository = instance_record_repository
        self.ec2_client = ec2_client
        self.ebs_client = ebs_client
        self.iam_client = iam_client
        self.parameter_store = parameter_store
        self.session_orchestrator = session_orchestrator
        self.options = options

    async def _stage(self, name: str, action: Callable[[], Awaitable[T]]) -> T:
        policy = self.options.retry_policy
        retrying = retry_on_transient_failure(
            max_attempts=policy.max_attempts,
            initial_delay=policy.interval_seconds,
            backoff_factor=policy.backoff_rate,
        )(action)
        with tracer.start_as_current_span(f"deploy.{name}"):
            log.info(f"Deploy stage '{name}' started")
            result = await retrying()
            log.info(f"Deploy stage '{name}' completed")
            return result

    async def run(self, payload: dict[str, Any], deadline: Deadline | None = None) -> dict[str, Any]:
        request = parse_message(DeployInstanceInput, payload)
        add_span_attributes({"deployment.id": request.deployment_id, "deployment.user_id": request.user_id})

        compensations = CompensationStack()
        try:
            output = await self._deploy(request, compensations, deadline)
            return output.to_payload()
        except asyncio.CancelledError:
            log.warning(f"Deployment {request.deployment_id} cancelled, releasing resources")
            await self._fail(request, compensations, "DeploymentAborted", "Deployment was cancelled")
            raise
        except Exception as e:
            log.error(f"Deployment {request.deployment_id} failed: {type(e).__name__}: {e}")
            output = await self._fail(request, compensations, type(e).__name__, str(e))
            return output.to_payload()

    async def _deploy(
        self, request: DeployInstanceInput, compensations: CompensationStack, deadline: Deadline | None
    ) -> DeployInstanceOutput:
        await self._stage("check_active_session", lambda: self.check_active_session(request))

        cached_ami_id = await self._stage(
            "resolve_cached_image", lambda: self.parameter_store.get(self.options.ami_cache_parameter_name)
        )

        profile_arn = await self._stage("obtain_instance_profile", lambda: self.iam_client.get_profile())

        provisioned = await self._stage(
            "provision_instance",
            lambda: self.provision_instance(request, cached_ami_id, profile_arn, compensations, deadline),
        )

        volume = await self._stage("attach_volume", lambda: self.attach_volume(provisioned, compensations, deadline))

        session = await self._stage("establish_session", lambda: self.establish_session(provisioned, deadline))

        # An empty cache is seeded from this host, whichever image it was launched from
        if not provisioned.image_cached:
            await self._stage("publish_image", lambda: self.publish_image(provisioned))

        await self._stage("persist_record", lambda: self.persist(provisioned, volume, session))

        return DeployInstanceOutput(
            success=True,
            deployment_id=request.deployment_id,
            instance_id=provisioned.instance_id,
            volume_id=volume.volume_id,
            dcv_url=session.dcv_url,
            ami_id=provisioned.ami_id,
            message="Instance is ready for streaming",
        )

    async def check_active_session(self, request: DeployInstanceInput) -> None:
        records = await self.instance_record_repository.query_by_index_async(USER_ID_INDEX, request.user_id)
        for record in records:
            if record.deployment_id != request.deployment_id and record.status == DeploymentStatus.RUNNING:
                raise ActiveDeploymentExistsException(
                    f"User {request.user_id} already has a running instance ({record.instance_id})"
                )

    async def provision_instance(
        self,
        request: DeployInstanceInput,
        cached_ami_id: str,
        profile_arn: str,
        compensations: CompensationStack,
        deadline: Deadline | None,
    ) -> InstanceProvisioned:
        ami_id = request.ami_id or cached_ami_id or None
        config = Ec2InstanceConfig(
            user_id=request.user_id,
            instance_type=request.instance_type,
            ami_id=ami_id,
            key_name=self.options.key_name,
            security_group_ids=self.options.security_group_ids,
            subnet_id=self.options.subnet_id,
            iam_instance_profile=profile_arn,
            dcv_preinstalled=bool(cached_ami_id) and ami_id == cached_ami_id,
            tags={"deploymentId": request.deployment_id},
        )
        created = await self.ec2_client.create_instance(config)
        compensations.push(
            f"terminate instance {created.instance_id}",
            lambda: self._terminate(created.instance_id),
        )
        await self.instance_record_repository.update_async(
            request.deployment_id,
            instance_id=created.instance_id,
            instance_arn=created.instance_arn,
            state=created.state,
        )

        instance = await self.ec2_client.wait_for_instance_running(created.instance_id, deadline=deadline)
        return InstanceProvisioned(
            deployment_id=request.deployment_id,
            user_id=request.user_id,
            instance_id=instance.instance_id,
            instance_arn=instance.instance_arn,
            state=instance.state,
            instance_type=instance.instance_type,
            ami_id=instance.ami_id,
            availability_zone=instance.availability_zone,
            public_ip=instance.public_ip,
            private_ip=instance.private_ip,
            image_cached=bool(cached_ami_id),
        )

    async def attach_volume(
        self, provisioned: InstanceProvisioned, compensations: CompensationStack, deadline: Deadline | None
    ) -> VolumeAttached:
        config = EbsVolumeConfig(
            user_id=provisioned.user_id,
            availability_zone=provisioned.availability_zone or "",
            tags={"deploymentId": provisioned.deployment_id},
        )
        attachment = await self.ebs_client.attach_or_reuse_volume(config, provisioned.instance_id, deadline=deadline)
        compensations.push(
            f"release volume {attachment.volume_id}",
            lambda: self.ebs_client.release_volume(attachment, provisioned.instance_id),
        )
        return VolumeAttached(
            deployment_id=provisioned.deployment_id,
            volume_id=attachment.volume_id,
            status=attachment.status,
            created=attachment.created,
        )

    async def establish_session(self, provisioned: InstanceProvisioned, deadline: Deadline | None) -> SessionEstablished:
        dcv_url = await self.session_orchestrator.get_dcv_session(
            provisioned.instance_id, provisioned.user_id, deadline=deadline
        )
        return SessionEstablished(
            deployment_id=provisioned.deployment_id, instance_id=provisioned.instance_id, dcv_url=dcv_url
        )

    async def publish_image(self, provisioned: InstanceProvisioned) -> str:
        """Captures the freshly configured host and offers it as the cached image.

        The cache write is conditional: when a concurrent first deployment already
        published an image, that one is kept and ours is left untagged as cached.
        """
        ami_id = await self.ec2_client.snapshot_ami_image(provisioned.instance_id, provisioned.user_id)
        try:
            await self.parameter_store.put(self.options.ami_cache_parameter_name, ami_id, overwrite=False)
        except SSMParameterAlreadyExistsException:
            log.info(f"Image cache already populated by a concurrent deployment; keeping it, {ami_id} not published")
        return ami_id

    async def persist(
        self, provisioned: InstanceProvisioned, volume: VolumeAttached, session: SessionEstablished
    ) -> None:
        await self.instance_record_repository.update_async(
            provisioned.deployment_id,
            status=DeploymentStatus.RUNNING,
            instance_id=provisioned.instance_id,
            instance_arn=provisioned.instance_arn,
            public_ip=provisioned.public_ip,
            private_ip=provisioned.private_ip,
            state=provisioned.state,
            instance_type=provisioned.instance_type,
            ami_id=provisioned.ami_id,
            availability_zone=provisioned.availability_zone,
            volume_id=volume.volume_id,
            dcv_url=session.dcv_url,
            error=None,
        )

    async def _terminate(self, instance_id: str) -> None:
        try:
            await self.ec2_client.terminate_instance(instance_id)
        except EC2InstanceNotFoundException:
            log.info(f"Instance {instance_id} already gone")

    async def _fail(
        self, request: DeployInstanceInput, compensations: CompensationStack, error: str, message: str
    ) -> DeployInstanceOutput:
        failed = await compensations.unwind()
        if failed:
            message = f"{message} (cleanup incomplete: {', '.join(failed)})"
        await self.instance_record_repository.update_async(
            request.deployment_id, status=DeploymentStatus.FAILED, error=error
        )
        return DeployInstanceOutput(
            success=False,
            deployment_id=request.deployment_id,
            error=error,
            message=message,
        )
