import logging
from typing import TYPE_CHECKING

from botocore.exceptions import ClientError  # type: ignore

from integration.exceptions import IntegrationException, SSMParameterAlreadyExistsException
from integration.services.aws_session import AwsSessionFactory

if TYPE_CHECKING:
    from neuroglia.hosting.web import WebApplicationBuilder

log = logging.getLogger(__name__)


class AwsSsmParameterStore:
    """Parameter cache holding scalar values such as the blessed machine image id."""

    sessions: AwsSessionFactory

    def __init__(self, sessions: AwsSessionFactory):
        self.sessions = sessions

    async def get(self, name: str) -> str:
        """Returns the parameter value, or an empty string when it does not exist.

        Any other provider error propagates.
        """
        try:
            response = await self.sessions.call("ssm", "get_parameter", Name=name)
        except ClientError as e:
            error = e.response.get("Error", {})
            if error.get("Code") == "ParameterNotFound":
                log.debug(f"Parameter {name} not found")
                return ""
            raise IntegrationException(
                f"Get parameter {name} - AWS error [{error.get('Code')}]: {error.get('Message', str(e))}"
            )
        return response.get("Parameter", {}).get("Value", "")

    async def put(self, name: str, value: str, overwrite: bool = False) -> int:
        """Writes a String parameter and returns its version.

        Args:
            name: parameter name
            value: parameter value
            overwrite: when False the write only succeeds if the parameter is absent

        Raises:
            SSMParameterAlreadyExistsException: If ``overwrite`` is False and the parameter exists.
        """
        try:
            response = await self.sessions.call(
                "ssm", "put_parameter", Name=name, Value=value, Type="String", Overwrite=overwrite
            )
        except ClientError as e:
            error = e.response.get("Error", {})
            if error.get("Code") == "ParameterAlreadyExists":
                raise SSMParameterAlreadyExistsException(f"Parameter {name} already exists")
            raise IntegrationException(
                f"Put parameter {name} - AWS error [{error.get('Code')}]: {error.get('Message', str(e))}"
            )
        version = response.get("Version", 0)
        log.info(f"Parameter {name} set to {value} (version {version})")
        return version

    @staticmethod
    def configure(builder: "WebApplicationBuilder") -> "AwsSsmParameterStore":
        from application.settings import app_settings

        store = AwsSsmParameterStore(AwsSessionFactory.from_settings(app_settings))
        builder.services.add_singleton(AwsSsmParameterStore, singleton=store)
        return store
