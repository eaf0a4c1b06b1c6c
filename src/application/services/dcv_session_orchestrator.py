"""Remote-display session orchestration for streaming hosts.

Per request the orchestrator:
1. reads the ``dcvConfigured`` tag of the instance (missing counts as false)
2. installs the DCV server through the command channel when needed, then tags the instance
3. creates the deterministic session of the user
4. resolves the streaming URL from the instance's public IP
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from neuroglia.observability.tracing import add_span_attributes
from opentelemetry import trace

from domain.value_object.streaming_session import StreamingSession
from integration.exceptions import (
    MissingPublicIpException,
    SSMDocumentNotFoundException,
    ValidationException,
)
from integration.services.aws_ec2_api_client import DCV_CONFIGURED_TAG, AwsEc2Client
from integration.services.aws_ssm_api_client import AwsSsmClient
from integration.services.polling import Deadline

if TYPE_CHECKING:
    from neuroglia.hosting.web import WebApplicationBuilder

log = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass
class DcvSessionOptions:
    install_document_name: str = "Lunaris-Install-DCV-Document"
    session_document_name: str = "Lunaris-Run-DCV-Session-Document"
    install_timeout_seconds: int = 1800
    session_timeout_seconds: int = 300
    agent_online_timeout_seconds: int = 600
    port: int = 8443
    session_owner: str = "Administrator"
    dcv_msi_url: str | None = None


class DcvSessionOrchestrator:
    """Stands up a DCV session on a running instance and returns its streaming URL."""

    def __init__(self, ec2_client: AwsEc2Client, ssm_client: AwsSsmClient, options: DcvSessionOptions):
        self.ec2_client = ec2_client
        self.ssm_client = ssm_client
        self.options = options

    async def get_dcv_session(self, instance_id: str, user_id: str, deadline: Deadline | None = None) -> str:
        """Returns the streaming URL of the user's session on ``instance_id``.

        Safe to call repeatedly: a configured instance skips the install and the
        session name is deterministic, so a repeat call recreates the same session.

        Raises:
            ValidationException: If user id is empty.
            SSMCommandFailedException: If install or session creation fails.
            SSMCommandTimeoutException: If either command outlives its timeout.
            MissingPublicIpException: If the instance has no public IP.
        """
        try:
            session = StreamingSession(user_id=user_id, owner=self.options.session_owner)
        except ValueError as e:
            raise ValidationException(str(e))

        add_span_attributes({"dcv.instance_id": instance_id, "dcv.user_id": user_id})

        with tracer.start_as_current_span("check_dcv_configured") as span:
            instance = await self.ec2_client.get_instance(instance_id)
            configured = instance.tags.get(DCV_CONFIGURED_TAG) == "true"
            span.set_attribute("dcv.configured", configured)

        await self.ssm_client.wait_for_agent_online(
            instance_id, timeout_seconds=self.options.agent_online_timeout_seconds, deadline=deadline
        )

        if configured:
            log.info(f"DCV already configured on {instance_id}, skipping install")
        else:
            await self.install_dcv(instance_id, deadline)

        await self.create_session(instance_id, session, deadline)
        return await self.resolve_streaming_url(instance_id, session)

    async def install_dcv(self, instance_id: str, deadline: Deadline | None = None) -> None:
        with tracer.start_as_current_span("install_dcv"):
            parameters = {"DcvMsiUrl": [self.options.dcv_msi_url]} if self.options.dcv_msi_url else {}
            log.info(f"Installing DCV on {instance_id}")
            command_id = await self._send(
                instance_id,
                self.options.install_document_name,
                parameters,
                self.options.install_timeout_seconds,
            )
            await self.ssm_client.wait_for_command(
                command_id, instance_id, timeout_seconds=self.options.install_timeout_seconds, deadline=deadline
            )
            await self.ec2_client.modify_instance_tag(instance_id, DCV_CONFIGURED_TAG, "true")
            log.info(f"DCV installed on {instance_id}")

    async def create_session(
        self, instance_id: str, session: StreamingSession, deadline: Deadline | None = None
    ) -> None:
        with tracer.start_as_current_span("create_dcv_session"):
            command_id = await self._send(
                instance_id,
                self.options.session_document_name,
                {"SessionName": [session.name], "SessionOwner": [session.owner]},
                self.options.session_timeout_seconds,
            )
            await self.ssm_client.wait_for_command(
                command_id, instance_id, timeout_seconds=self.options.session_timeout_seconds, deadline=deadline
            )
            log.info(f"DCV session {session.name} created on {instance_id}")

    async def resolve_streaming_url(self, instance_id: str, session: StreamingSession) -> str:
        instance = await self.ec2_client.get_instance(instance_id)
        if not instance.public_ip:
            raise MissingPublicIpException(f"Instance {instance_id} has no public IP address")
        return session.streaming_url(instance.public_ip, self.options.port)

    async def _send(
        self, instance_id: str, document_name: str, parameters: dict[str, list[str]], timeout_seconds: int
    ) -> str:
        try:
            return await self.ssm_client.send_command(instance_id, document_name, parameters, timeout_seconds)
        except SSMDocumentNotFoundException:
            log.info(f"SSM document {document_name} missing, creating it")
            await self.ssm_client.create_document(document_name)
            return await self.ssm_client.send_command(instance_id, document_name, parameters, timeout_seconds)

    @staticmethod
    def configure(
        builder: "WebApplicationBuilder", ec2_client: AwsEc2Client, ssm_client: AwsSsmClient
    ) -> "DcvSessionOrchestrator":
        from application.settings import app_settings

        options = DcvSessionOptions(
            install_document_name=app_settings.ssm_install_document_name,
            session_document_name=app_settings.ssm_session_document_name,
            install_timeout_seconds=app_settings.ssm_install_timeout_seconds,
            session_timeout_seconds=app_settings.ssm_session_timeout_seconds,
            agent_online_timeout_seconds=app_settings.ssm_agent_online_timeout_seconds,
            port=app_settings.dcv_port,
            session_owner=app_settings.dcv_session_owner,
            dcv_msi_url=app_settings.dcv_msi_url,
        )
        orchestrator = DcvSessionOrchestrator(ec2_client, ssm_client, options)
        builder.services.add_singleton(DcvSessionOrchestrator, singleton=orchestrator)
        log.info("✅ DcvSessionOrchestrator configured as singleton")
        return orchestrator
