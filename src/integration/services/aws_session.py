import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import boto3  # type: ignore
from botocore.exceptions import BotoCoreError, ClientError  # type: ignore

from integration.exceptions import IntegrationException

log = logging.getLogger(__name__)
logging.getLogger("botocore").setLevel(logging.INFO)
logging.getLogger("urllib3").setLevel(logging.INFO)


@dataclass
class AwsAccountCredentials:
    aws_access_key_id: str | None = None

    aws_secret_access_key: str | None = None

    aws_region: str = "us-east-1"

    aws_account_id: str | None = None

    @property
    def is_explicit(self) -> bool:
        return bool(self.aws_access_key_id and self.aws_secret_access_key)


class AwsSessionFactory:
    """Builds boto3 sessions bound to one account and region.

    When no explicit keys are configured the default credential chain (environment,
    instance role, shared config) is used. boto3 is blocking, so every provider
    operation goes through ``call``, which runs it in a worker thread and keeps the
    event loop serving requests while a workflow polls.
    """

    credentials: AwsAccountCredentials

    def __init__(self, credentials: AwsAccountCredentials):
        self.credentials = credentials

    @property
    def region(self) -> str:
        return self.credentials.aws_region

    @property
    def account_id(self) -> str:
        """The configured or resolved account id; call ``resolve_account_id`` first when unset."""
        return self.credentials.aws_account_id or "unknown"

    def client(self, service_name: str):
        kwargs = {"region_name": self.credentials.aws_region}
        if self.credentials.is_explicit:
            kwargs["aws_access_key_id"] = self.credentials.aws_access_key_id
            kwargs["aws_secret_access_key"] = self.credentials.aws_secret_access_key
        return boto3.Session(**kwargs).client(service_name)

    def _invoke(self, service_name: str, operation: str, kwargs: dict[str, Any]) -> dict[str, Any]:
        return getattr(self.client(service_name), operation)(**kwargs)

    async def call(self, service_name: str, operation: str, **kwargs: Any) -> dict[str, Any]:
        """Runs one boto3 operation off the event loop; ``ClientError`` propagates unchanged."""
        return await asyncio.to_thread(self._invoke, service_name, operation, kwargs)

    async def resolve_account_id(self) -> str:
        """Looks the account up with STS once when it was not configured.

        Raises:
            IntegrationException: If the caller identity cannot be read.
        """
        if self.credentials.aws_account_id:
            return self.credentials.aws_account_id
        try:
            # https://boto3.amazonaws.com/v1/documentation/api/latest/reference/services/sts/client/get_caller_identity.html
            response = await self.call("sts", "get_caller_identity")
        except (ClientError, BotoCoreError) as e:
            raise IntegrationException(f"Resolve AWS account id - {e}")
        self.credentials.aws_account_id = response["Account"]
        log.info(f"Resolved AWS account id {self.credentials.aws_account_id} from caller identity")
        return self.credentials.aws_account_id

    @staticmethod
    def from_settings(settings) -> "AwsSessionFactory":
        return AwsSessionFactory(
            AwsAccountCredentials(
                aws_access_key_id=settings.aws_access_key_id,
                aws_secret_access_key=settings.aws_secret_access_key,
                aws_region=settings.aws_region,
                aws_account_id=settings.aws_account_id,
            )
        )
