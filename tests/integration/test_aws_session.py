"""Tests for the boto3 session factory."""

import asyncio
import threading
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from integration.exceptions import IntegrationException
from integration.services.aws_session import AwsAccountCredentials, AwsSessionFactory


@pytest.fixture
def ec2(aws_clients):
    return aws_clients.setdefault("ec2", MagicMock())


@pytest.fixture
def sts(aws_clients):
    return aws_clients.setdefault("sts", MagicMock())


@pytest.mark.asyncio
class TestProviderCalls:
    async def test_call_forwards_arguments(self, sessions, ec2):
        ec2.describe_instances.return_value = {"Reservations": []}

        response = await sessions.call("ec2", "describe_instances", InstanceIds=["i-0abc"])

        assert response == {"Reservations": []}
        ec2.describe_instances.assert_called_once_with(InstanceIds=["i-0abc"])

    async def test_blocking_call_leaves_event_loop_free(self, sessions, ec2):
        """Test other coroutines keep running while a provider call blocks."""
        release = threading.Event()
        loop_thread = threading.get_ident()
        call_threads = []

        def describe_instances(**kwargs):
            call_threads.append(threading.get_ident())
            return {"released": release.wait(timeout=5)}

        ec2.describe_instances.side_effect = describe_instances

        async def unblock():
            release.set()

        response, _ = await asyncio.gather(sessions.call("ec2", "describe_instances"), unblock())

        assert response == {"released": True}
        assert call_threads and call_threads[0] != loop_thread

    async def test_client_errors_propagate(self, sessions, ec2, client_error):
        ec2.describe_instances.side_effect = client_error("InvalidInstanceID.NotFound")

        with pytest.raises(ClientError) as exc_info:
            await sessions.call("ec2", "describe_instances")

        assert exc_info.value.response["Error"]["Code"] == "InvalidInstanceID.NotFound"


@pytest.mark.asyncio
class TestResolveAccountId:
    async def test_configured_account_skips_lookup(self, sessions, sts):
        assert await sessions.resolve_account_id() == "123456789012"
        sts.get_caller_identity.assert_not_called()

    async def test_lookup_result_is_cached(self, aws_clients, sts):
        factory = AwsSessionFactory(AwsAccountCredentials(aws_region="eu-west-1"))
        sts.get_caller_identity.return_value = {"Account": "999988887777"}

        assert factory.account_id == "unknown"
        assert await factory.resolve_account_id() == "999988887777"
        assert await factory.resolve_account_id() == "999988887777"

        assert factory.account_id == "999988887777"
        sts.get_caller_identity.assert_called_once_with()

    async def test_lookup_failure_is_integration_error(self, aws_clients, sts, client_error):
        factory = AwsSessionFactory(AwsAccountCredentials())
        sts.get_caller_identity.side_effect = client_error("ExpiredToken")

        with pytest.raises(IntegrationException):
            await factory.resolve_account_id()
