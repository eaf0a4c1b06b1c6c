from enum import Enum


class WorkflowExecutionStatus(str, Enum):
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"
    ABORTED = "ABORTED"

    @classmethod
    def failure_statuses(cls) -> set[str]:
        return {cls.FAILED.value, cls.TIMED_OUT.value, cls.ABORTED.value}
