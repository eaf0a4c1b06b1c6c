import json
import logging
from typing import Any

from botocore.exceptions import ClientError  # type: ignore

from integration.exceptions import IntegrationException, WorkflowExecutionNotFoundException
from integration.models import WorkflowExecutionDto
from integration.services.aws_session import AwsSessionFactory
from integration.services.workflow_engine import WorkflowEngine

log = logging.getLogger(__name__)


class AwsStepFunctionsClient(WorkflowEngine):
    """Workflow engine backed by AWS Step Functions state machines."""

    sessions: AwsSessionFactory

    def __init__(self, sessions: AwsSessionFactory):
        self.sessions = sessions

    def _parse_aws_error(self, error: ClientError, operation: str) -> Exception:
        error_code = error.response.get("Error", {}).get("Code", "")
        error_message = error.response.get("Error", {}).get("Message", str(error))
        if error_code in ("ExecutionDoesNotExist", "InvalidArn"):
            return WorkflowExecutionNotFoundException(f"{operation} - Execution not found: {error_message}")
        return IntegrationException(f"{operation} - AWS error [{error_code}]: {error_message}")

    async def start_execution(self, workflow_arn: str, input: dict[str, Any], name: str | None = None) -> str:
        params: dict[str, Any] = {"stateMachineArn": workflow_arn, "input": json.dumps(input)}
        if name:
            params["name"] = name
        try:
            # https://boto3.amazonaws.com/v1/documentation/api/latest/reference/services/stepfunctions/client/start_execution.html
            response = await self.sessions.call("stepfunctions", "start_execution", **params)
        except ClientError as e:
            log.error(f"Error starting execution of {workflow_arn}: {e}")
            raise self._parse_aws_error(e, "Start execution")
        log.info(f"Started Step Functions execution {name or ''} of {workflow_arn}")
        return response["executionArn"]

    async def describe_execution(self, execution_arn: str) -> WorkflowExecutionDto:
        try:
            response = await self.sessions.call("stepfunctions", "describe_execution", executionArn=execution_arn)
        except ClientError as e:
            raise self._parse_aws_error(e, "Describe execution")

        output = response.get("output")
        return WorkflowExecutionDto(
            execution_arn=execution_arn,
            status=response["status"],
            output=json.loads(output) if output else None,
            error=response.get("error"),
            cause=response.get("cause"),
        )

    async def stop_execution(self, execution_arn: str, cause: str | None = None) -> None:
        try:
            await self.sessions.call(
                "stepfunctions", "stop_execution", executionArn=execution_arn, cause=cause or "Stopped by control plane"
            )
        except ClientError as e:
            raise self._parse_aws_error(e, "Stop execution")
