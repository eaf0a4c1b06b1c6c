from enum import Enum


class DeploymentStatus(str, Enum):
    """Lifecycle of a user's streaming deployment as persisted in the lookup store."""
    PENDING = "pending"  # Request accepted, workflow not started yet
    DEPLOYING = "deploying"  # Workflow running
    RUNNING = "running"  # Instance up, streaming URL available
    FAILED = "failed"  # Workflow failed, partial resources released
    TERMINATING = "terminating"  # Teardown workflow running
    TERMINATED = "terminated"  # Instance gone, data volume kept

    @classmethod
    def active_statuses(cls) -> set["DeploymentStatus"]:
        return {cls.PENDING, cls.DEPLOYING, cls.RUNNING, cls.TERMINATING}
