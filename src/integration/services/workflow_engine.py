"""Workflow Engine Service Provider Interface (SPI).

Abstraction over the engine that runs multi-stage deployment workflows.
Allows the in-process engine and AWS Step Functions to be swapped by configuration.
"""

from abc import ABC, abstractmethod
from typing import Any

from integration.models import WorkflowExecutionDto


class WorkflowEngine(ABC):
    """
    Abstract interface for workflow execution.

    Implementations:
    - LocalWorkflowEngine: asyncio tasks inside the control plane process
    - AwsStepFunctionsClient: AWS Step Functions state machines
    """

    @abstractmethod
    async def start_execution(self, workflow_arn: str, input: dict[str, Any], name: str | None = None) -> str:
        """
        Start a workflow execution.

        Args:
            workflow_arn: Identifier of the workflow definition
            input: JSON-serializable workflow input
            name: Optional unique execution name

        Returns:
            The opaque execution handle
        """
        pass

    @abstractmethod
    async def describe_execution(self, execution_arn: str) -> WorkflowExecutionDto:
        """
        Describe an execution.

        Raises:
            WorkflowExecutionNotFoundException: If the handle is unknown
        """
        pass

    @abstractmethod
    async def stop_execution(self, execution_arn: str, cause: str | None = None) -> None:
        """Abort a running execution."""
        pass
