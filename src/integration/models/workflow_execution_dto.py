from dataclasses import dataclass
from typing import Any


@dataclass
class WorkflowExecutionDto:
    execution_arn: str
    status: str
    output: dict[str, Any] | None = None
    error: str | None = None
    cause: str | None = None
