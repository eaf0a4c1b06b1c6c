"""In-process workflow engine running registered workflows as asyncio tasks."""

import asyncio
import logging
import time
import uuid
from typing import Any

from application.workflows.registry import WorkflowDefinition, WorkflowRegistry
from integration.enums import WorkflowExecutionStatus
from integration.exceptions import OperationTimeoutException, WorkflowExecutionNotFoundException
from integration.models import WorkflowExecutionDto
from integration.services.polling import Deadline
from integration.services.workflow_engine import WorkflowEngine

log = logging.getLogger(__name__)


class LocalWorkflowEngine(WorkflowEngine):
    """Runs workflows inside the control plane process.

    Outcome mapping:
    - output with ``success`` not False -> SUCCEEDED
    - output with ``success`` False, or an escaped exception -> FAILED
    - workflow timeout exceeded -> TIMED_OUT
    - stop_execution -> ABORTED

    Executions live in memory only and are lost on restart. Finished executions stay
    describable for ``retention_seconds``, capped at ``max_retained`` with the oldest
    evicted first. Running executions are never evicted.
    """

    def __init__(self, registry: WorkflowRegistry, retention_seconds: float = 3600, max_retained: int = 1000):
        self.registry = registry
        self.retention_seconds = retention_seconds
        self.max_retained = max_retained
        self._executions: dict[str, WorkflowExecutionDto] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        # Finish times in completion order
        self._finished: dict[str, float] = {}

    def _evict_finished(self) -> None:
        cutoff = time.monotonic() - self.retention_seconds
        expired = [arn for arn, finished_at in self._finished.items() if finished_at <= cutoff]
        kept = [arn for arn in self._finished if arn not in set(expired)]
        if len(kept) > self.max_retained:
            expired += kept[: len(kept) - self.max_retained]
        for arn in expired:
            self._finished.pop(arn, None)
            self._executions.pop(arn, None)
        if expired:
            log.debug(f"Evicted {len(expired)} finished local executions")

    async def start_execution(self, workflow_arn: str, input: dict[str, Any], name: str | None = None) -> str:
        self._evict_finished()
        definition = self.registry.resolve(workflow_arn)
        if definition.runner is None:
            raise ValueError(f"Workflow {definition.name} has no local runner")

        execution_arn = f"{definition.arn}:execution:{name or uuid.uuid4()}"
        if execution_arn in self._executions:
            raise ValueError(f"Execution {execution_arn} already exists")

        self._executions[execution_arn] = WorkflowExecutionDto(
            execution_arn=execution_arn, status=WorkflowExecutionStatus.RUNNING.value
        )
        task = asyncio.create_task(self._run(execution_arn, definition, input))
        self._tasks[execution_arn] = task
        task.add_done_callback(lambda _: self._tasks.pop(execution_arn, None))
        log.info(f"Started local execution {execution_arn}")
        return execution_arn

    async def _run(self, execution_arn: str, definition: WorkflowDefinition, input: dict[str, Any]) -> None:
        execution = self._executions[execution_arn]
        deadline = Deadline.after(definition.timeout_seconds)
        try:
            output = await asyncio.wait_for(definition.runner(input, deadline), timeout=definition.timeout_seconds)
            execution.output = output
            if output.get("success") is False:
                execution.status = WorkflowExecutionStatus.FAILED.value
                execution.error = output.get("error")
                execution.cause = output.get("message")
            else:
                execution.status = WorkflowExecutionStatus.SUCCEEDED.value
        except OperationTimeoutException as e:
            # A wait inside the workflow gave up; the workflow itself did not hit its timeout
            execution.status = WorkflowExecutionStatus.FAILED.value
            execution.error = type(e).__name__
            execution.cause = str(e)
        except asyncio.TimeoutError:
            execution.status = WorkflowExecutionStatus.TIMED_OUT.value
            execution.error = "States.Timeout"
            execution.cause = f"Workflow {definition.name} exceeded {definition.timeout_seconds}s"
        except asyncio.CancelledError:
            execution.status = WorkflowExecutionStatus.ABORTED.value
            raise
        except Exception as e:
            log.exception(f"Local execution {execution_arn} failed")
            execution.status = WorkflowExecutionStatus.FAILED.value
            execution.error = type(e).__name__
            execution.cause = str(e)
        finally:
            self._finished[execution_arn] = time.monotonic()
            log.info(f"Local execution {execution_arn} finished with status {execution.status}")
            self._evict_finished()

    async def describe_execution(self, execution_arn: str) -> WorkflowExecutionDto:
        execution = self._executions.get(execution_arn)
        if execution is None:
            raise WorkflowExecutionNotFoundException(f"Execution not found: {execution_arn}")
        return execution

    async def stop_execution(self, execution_arn: str, cause: str | None = None) -> None:
        execution = await self.describe_execution(execution_arn)
        task = self._tasks.get(execution_arn)
        if task is not None and not task.done():
            execution.cause = cause
            task.cancel()

    async def wait_for_execution(self, execution_arn: str) -> WorkflowExecutionDto:
        task = self._tasks.get(execution_arn)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return await self.describe_execution(execution_arn)
