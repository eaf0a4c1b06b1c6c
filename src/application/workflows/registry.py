"""Workflow definitions and the registry that resolves them by name or ARN.

The registry is built once by the composition root and injected where needed.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Iterable

from integration.services.polling import Deadline

WorkflowRunner = Callable[[dict[str, Any], Deadline | None], Awaitable[dict[str, Any]]]


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    interval_seconds: float = 2.0
    backoff_rate: float = 2.0


@dataclass(frozen=True)
class WorkflowDefinition:
    name: str
    arn: str
    timeout_seconds: float
    retry_policy: RetryPolicy
    runner: WorkflowRunner | None = None


class WorkflowRegistry:
    def __init__(self, definitions: Iterable[WorkflowDefinition]):
        by_name = {}
        for definition in definitions:
            if definition.name in by_name:
                raise ValueError(f"Duplicate workflow definition: {definition.name}")
            by_name[definition.name] = definition
        self._by_name = MappingProxyType(by_name)
        self._by_arn = MappingProxyType({d.arn: d for d in by_name.values()})

    def __contains__(self, name_or_arn: str) -> bool:
        return name_or_arn in self._by_name or name_or_arn in self._by_arn

    def get(self, name: str) -> WorkflowDefinition:
        try:
            return self._by_name[name]
        except KeyError:
            raise KeyError(f"Unknown workflow: {name}") from None

    def resolve(self, name_or_arn: str) -> WorkflowDefinition:
        definition = self._by_name.get(name_or_arn) or self._by_arn.get(name_or_arn)
        if definition is None:
            raise KeyError(f"Unknown workflow: {name_or_arn}")
        return definition

    @staticmethod
    def local_arn(name: str) -> str:
        return f"arn:lunaris:workflow:local:{name}"
