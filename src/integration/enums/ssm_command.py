from enum import Enum


class SsmCommandStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    DELAYED = "Delayed"
    SUCCESS = "Success"
    FAILED = "Failed"
    CANCELLED = "Cancelled"
    TIMED_OUT = "TimedOut"
    CANCELLING = "Cancelling"

    @classmethod
    def failure_statuses(cls) -> set[str]:
        return {cls.FAILED.value, cls.CANCELLED.value, cls.TIMED_OUT.value}
