"""Shared fixtures for provider client tests."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from botocore.exceptions import ClientError  # type: ignore

from integration.services.aws_session import AwsAccountCredentials, AwsSessionFactory


@pytest.fixture
def client_error():
    """Factory for botocore ClientErrors carrying a given error code."""

    def make(code: str, message: str = "error", operation: str = "Operation") -> ClientError:
        return ClientError({"Error": {"Code": code, "Message": message}}, operation)

    return make


@pytest.fixture
def aws_clients():
    """Patch boto3 sessions so every service name maps to one MagicMock client."""
    clients: dict[str, MagicMock] = {}

    def make_session(**kwargs):
        session = MagicMock()
        session.client.side_effect = lambda name: clients.setdefault(name, MagicMock(name=f"{name}-client"))
        return session

    with patch("integration.services.aws_session.boto3.Session", side_effect=make_session):
        yield clients


@pytest.fixture
def sessions(aws_clients):
    """Create a session factory bound to a test account."""
    return AwsSessionFactory(AwsAccountCredentials(aws_region="us-east-1", aws_account_id="123456789012"))


@pytest.fixture
def no_sleep():
    """Make polling and retry sleeps return immediately."""
    with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep
