"""Tests for the Systems Manager command channel."""

from unittest.mock import MagicMock

import pytest

from integration.exceptions import (
    IntegrationException,
    SSMAgentNotOnlineException,
    SSMCommandFailedException,
    SSMCommandTimeoutException,
    SSMDocumentNotFoundException,
)
from integration.services.aws_ssm_api_client import AwsSsmClient

INSTALL_DOCUMENT = "Lunaris-Install-DCV-Document"


@pytest.fixture
def ssm_client(sessions):
    return AwsSsmClient(sessions, document_files={INSTALL_DOCUMENT: "install_dcv.yml"}, poll_interval_seconds=10.0)


@pytest.fixture
def ssm(aws_clients):
    return aws_clients.setdefault("ssm", MagicMock())


def statuses(*values: str):
    return [{"Status": value} for value in values]


@pytest.mark.asyncio
class TestSendCommand:
    async def test_returns_command_id(self, ssm_client, ssm):
        """Test a sent command returns the provider command id."""
        # Arrange
        ssm.send_command.return_value = {"Command": {"CommandId": "cmd-1"}}

        # Act
        command_id = await ssm_client.send_command("i-1", INSTALL_DOCUMENT, {"DcvMsiUrl": ["https://x"]}, 1800)

        # Assert
        assert command_id == "cmd-1"
        kwargs = ssm.send_command.call_args.kwargs
        assert kwargs["InstanceIds"] == ["i-1"]
        assert kwargs["DocumentName"] == INSTALL_DOCUMENT
        assert kwargs["Parameters"] == {"DcvMsiUrl": ["https://x"]}
        assert kwargs["TimeoutSeconds"] == 1800

    async def test_missing_document_is_reported(self, ssm_client, ssm, client_error):
        """Test an unknown document maps to SSMDocumentNotFoundException."""
        ssm.send_command.side_effect = client_error("InvalidDocument", "Document does not exist")

        with pytest.raises(SSMDocumentNotFoundException):
            await ssm_client.send_command("i-1", INSTALL_DOCUMENT)

    async def test_other_errors_are_integration_errors(self, ssm_client, ssm, client_error):
        """Test unrecognized provider errors stay generic."""
        ssm.send_command.side_effect = client_error("InternalServerError")

        with pytest.raises(IntegrationException) as exc_info:
            await ssm_client.send_command("i-1", INSTALL_DOCUMENT)

        assert not isinstance(exc_info.value, SSMDocumentNotFoundException)


@pytest.mark.asyncio
class TestWaitForCommand:
    async def test_polls_until_success(self, ssm_client, ssm, no_sleep):
        """Test Pending, InProgress, Success completes after exactly three polls."""
        # Arrange
        ssm.get_command_invocation.side_effect = statuses("Pending", "InProgress", "Success")

        # Act
        await ssm_client.wait_for_command("cmd-1", "i-1", timeout_seconds=1800)

        # Assert
        assert ssm.get_command_invocation.call_count == 3
        assert no_sleep.await_count == 2

    async def test_failed_status_raises(self, ssm_client, ssm, no_sleep):
        """Test a Failed status raises with the terminal status attached."""
        ssm.get_command_invocation.side_effect = statuses("InProgress", "Failed")

        with pytest.raises(SSMCommandFailedException) as exc_info:
            await ssm_client.wait_for_command("cmd-1", "i-1")

        assert exc_info.value.status == "Failed"

    @pytest.mark.parametrize("status", ["Cancelled", "TimedOut"])
    async def test_other_failure_statuses_raise(self, ssm_client, ssm, no_sleep, status):
        ssm.get_command_invocation.side_effect = statuses(status)

        with pytest.raises(SSMCommandFailedException):
            await ssm_client.wait_for_command("cmd-1", "i-1")

    async def test_zero_timeout_raises_timeout(self, ssm_client, ssm, no_sleep):
        """Test a command still running when time is up raises a timeout error."""
        ssm.get_command_invocation.return_value = {"Status": "InProgress"}

        with pytest.raises(SSMCommandTimeoutException) as exc_info:
            await ssm_client.wait_for_command("cmd-1", "i-1", timeout_seconds=0)

        assert isinstance(exc_info.value, TimeoutError)
        assert ssm.get_command_invocation.call_count == 1

    async def test_unknown_status_keeps_polling(self, ssm_client, ssm, no_sleep):
        """Test statuses outside the known set are treated as non-terminal."""
        ssm.get_command_invocation.side_effect = statuses("Delayed", "Success")

        await ssm_client.wait_for_command("cmd-1", "i-1")

        assert ssm.get_command_invocation.call_count == 2

    async def test_missing_invocation_counts_as_pending(self, ssm_client, ssm, no_sleep, client_error):
        """Test a not-yet-registered invocation is polled again."""
        ssm.get_command_invocation.side_effect = [client_error("InvocationDoesNotExist"), {"Status": "Success"}]

        await ssm_client.wait_for_command("cmd-1", "i-1")

        assert ssm.get_command_invocation.call_count == 2


@pytest.mark.asyncio
class TestCreateDocument:
    async def test_creates_bundled_document(self, ssm_client, ssm):
        """Test the bundled YAML definition is published as a Command document."""
        await ssm_client.create_document(INSTALL_DOCUMENT)

        kwargs = ssm.create_document.call_args.kwargs
        assert kwargs["Name"] == INSTALL_DOCUMENT
        assert kwargs["DocumentType"] == "Command"
        assert kwargs["DocumentFormat"] == "YAML"
        assert "schemaVersion" in kwargs["Content"]

    async def test_existing_document_is_accepted(self, ssm_client, ssm, client_error):
        ssm.create_document.side_effect = client_error("DocumentAlreadyExists")

        await ssm_client.create_document(INSTALL_DOCUMENT)

    async def test_unknown_document_name_raises(self, ssm_client, ssm):
        with pytest.raises(SSMDocumentNotFoundException):
            await ssm_client.create_document("Unbundled-Document")

        ssm.create_document.assert_not_called()


@pytest.mark.asyncio
class TestWaitForAgentOnline:
    async def test_waits_for_online_ping(self, ssm_client, ssm, no_sleep):
        """Test an unregistered agent is polled until it reports Online."""
        ssm.describe_instance_information.side_effect = [
            {"InstanceInformationList": []},
            {"InstanceInformationList": [{"PingStatus": "Online"}]},
        ]

        await ssm_client.wait_for_agent_online("i-1")

        assert ssm.describe_instance_information.call_count == 2

    async def test_agent_never_online_times_out(self, ssm_client, ssm, no_sleep):
        ssm.describe_instance_information.return_value = {"InstanceInformationList": []}

        with pytest.raises(SSMAgentNotOnlineException):
            await ssm_client.wait_for_agent_online("i-1", timeout_seconds=0)
