import logging
from pathlib import Path
from typing import TYPE_CHECKING

from botocore.exceptions import ClientError  # type: ignore

from integration.enums import SsmCommandStatus
from integration.exceptions import (
    IntegrationException,
    SSMAgentNotOnlineException,
    SSMCommandFailedException,
    SSMCommandTimeoutException,
    SSMDocumentNotFoundException,
)
from integration.services.aws_session import AwsSessionFactory
from integration.services.polling import Deadline, PollResult, wait_until

if TYPE_CHECKING:
    from neuroglia.hosting.web import WebApplicationBuilder

log = logging.getLogger(__name__)

DOCUMENTS_DIR = Path(__file__).parent / "documents"


class AwsSsmClient:
    """Command-execution channel backed by AWS Systems Manager Run Command.

    ``send_command`` does not create missing documents on its own: callers catch
    SSMDocumentNotFoundException, call ``create_document`` and send again.
    """

    sessions: AwsSessionFactory

    def __init__(
        self,
        sessions: AwsSessionFactory,
        document_files: dict[str, str] | None = None,
        document_tags: dict[str, str] | None = None,
        poll_interval_seconds: float = 10.0,
    ):
        self.sessions = sessions
        self.document_files = document_files or {}
        self.document_tags = document_tags or {"Application": "Lunaris", "ManagedBy": "Lunaris"}
        self.poll_interval_seconds = poll_interval_seconds

    def _parse_aws_error(self, error: ClientError, operation: str) -> Exception:
        error_code = error.response.get("Error", {}).get("Code", "")
        error_message = error.response.get("Error", {}).get("Message", str(error))
        if error_code in ("InvalidDocument", "InvalidDocumentVersion"):
            return SSMDocumentNotFoundException(f"{operation} - Document not found: {error_message}")
        return IntegrationException(f"{operation} - AWS error [{error_code}]: {error_message}")

    async def send_command(
        self,
        instance_id: str,
        document_name: str,
        parameters: dict[str, list[str]] | None = None,
        timeout_seconds: int = 300,
        comment: str | None = None,
    ) -> str:
        """Sends a named document to one instance.

        Returns:
            The command id to poll.

        Raises:
            SSMDocumentNotFoundException: If the document does not exist yet.
        """
        try:
            # https://boto3.amazonaws.com/v1/documentation/api/latest/reference/services/ssm/client/send_command.html
            response = await self.sessions.call(
                "ssm",
                "send_command",
                InstanceIds=[instance_id],
                DocumentName=document_name,
                Parameters=parameters or {},
                TimeoutSeconds=timeout_seconds,
                Comment=comment or f"{document_name} on {instance_id}",
            )
        except ClientError as e:
            log.warning(f"Sending {document_name} to {instance_id} failed: {e}")
            raise self._parse_aws_error(e, f"Send {document_name}")

        command_id = response.get("Command", {}).get("CommandId")
        if not command_id:
            raise IntegrationException(f"Send {document_name} - no command id returned")
        log.info(f"Sent {document_name} to {instance_id}: command_id={command_id}")
        return command_id

    async def get_command_status(self, command_id: str, instance_id: str) -> str:
        """Reads the invocation status of a command on one instance.

        A freshly sent command may not have an invocation yet; that is reported as Pending.
        Statuses outside the known set are returned unchanged.
        """
        try:
            # https://boto3.amazonaws.com/v1/documentation/api/latest/reference/services/ssm/client/get_command_invocation.html
            response = await self.sessions.call(
                "ssm", "get_command_invocation", CommandId=command_id, InstanceId=instance_id
            )
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "InvocationDoesNotExist":
                return SsmCommandStatus.PENDING.value
            raise self._parse_aws_error(e, f"Get status of command {command_id}")
        return response.get("Status", "Unknown")

    async def wait_for_command(
        self,
        command_id: str,
        instance_id: str,
        timeout_seconds: float = 1800,
        poll_interval_seconds: float | None = None,
        deadline: Deadline | None = None,
    ) -> None:
        """Polls a command until it succeeds.

        Raises:
            SSMCommandFailedException: On Failed, Cancelled or TimedOut.
            SSMCommandTimeoutException: If still running when the timeout or deadline passes.
        """

        async def poll() -> PollResult[str]:
            status = await self.get_command_status(command_id, instance_id)
            log.debug(f"Command {command_id} on {instance_id}: {status}")
            if status in SsmCommandStatus.failure_statuses():
                raise SSMCommandFailedException(status, f"Command {command_id} on {instance_id} ended with {status}")
            return PollResult(status == SsmCommandStatus.SUCCESS.value, status)

        await wait_until(
            poll,
            interval_seconds=poll_interval_seconds or self.poll_interval_seconds,
            timeout_seconds=timeout_seconds,
            description=f"command {command_id} on {instance_id}",
            deadline=deadline,
            timeout_error=SSMCommandTimeoutException,
        )
        log.info(f"Command {command_id} on {instance_id} succeeded")

    async def create_document(self, document_name: str) -> None:
        """Publishes a bundled command document; an existing document is left as is."""
        file_name = self.document_files.get(document_name)
        if not file_name:
            raise SSMDocumentNotFoundException(f"No bundled definition for document {document_name}")
        content = (DOCUMENTS_DIR / file_name).read_text(encoding="utf-8")

        try:
            # https://boto3.amazonaws.com/v1/documentation/api/latest/reference/services/ssm/client/create_document.html
            await self.sessions.call(
                "ssm",
                "create_document",
                Content=content,
                Name=document_name,
                DocumentType="Command",
                DocumentFormat="YAML",
                Tags=[{"Key": k, "Value": v} for k, v in self.document_tags.items()],
            )
            log.info(f"Created SSM document {document_name}")
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "DocumentAlreadyExists":
                log.info(f"SSM document {document_name} already exists")
                return
            raise self._parse_aws_error(e, f"Create document {document_name}")

    async def wait_for_agent_online(
        self, instance_id: str, timeout_seconds: float = 600, deadline: Deadline | None = None
    ) -> None:
        """Waits until the instance's agent registers with Systems Manager."""

        async def poll() -> PollResult[str]:
            try:
                response = await self.sessions.call(
                    "ssm", "describe_instance_information", Filters=[{"Key": "InstanceIds", "Values": [instance_id]}]
                )
            except ClientError as e:
                raise self._parse_aws_error(e, f"Describe agent of {instance_id}")
            infos = response.get("InstanceInformationList") or []
            ping_status = infos[0].get("PingStatus", "Unknown") if infos else "NotRegistered"
            return PollResult(ping_status == "Online", ping_status)

        await wait_until(
            poll,
            interval_seconds=self.poll_interval_seconds,
            timeout_seconds=timeout_seconds,
            description=f"SSM agent on {instance_id}",
            deadline=deadline,
            timeout_error=SSMAgentNotOnlineException,
        )

    @staticmethod
    def configure(builder: "WebApplicationBuilder") -> "AwsSsmClient":
        from application.settings import app_settings

        log.info("📡 Configuring AWS SSM Client...")
        client = AwsSsmClient(
            sessions=AwsSessionFactory.from_settings(app_settings),
            document_files={
                app_settings.ssm_install_document_name: "install_dcv.yml",
                app_settings.ssm_session_document_name: "run_dcv_session.yml",
            },
            poll_interval_seconds=app_settings.ssm_poll_interval_seconds,
        )
        builder.services.add_singleton(AwsSsmClient, singleton=client)
        return client
