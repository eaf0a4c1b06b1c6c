"""Instance Record entity persisted in the deployment lookup store."""

import datetime
import uuid
from dataclasses import dataclass, field, fields
from typing import Any

from domain.enums import DeploymentStatus

# Persisted attribute names for each field; the store keeps the camelCase shape the clients read
_DOCUMENT_KEYS = {
    "deployment_id": "deploymentId",
    "user_id": "userId",
    "status": "status",
    "execution_arn": "executionArn",
    "instance_id": "instanceId",
    "instance_arn": "instanceArn",
    "public_ip": "publicIp",
    "private_ip": "privateIp",
    "state": "state",
    "instance_type": "instanceType",
    "ami_id": "amiId",
    "availability_zone": "availabilityZone",
    "volume_id": "volumeId",
    "dcv_url": "dcvUrl",
    "error": "error",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
}


def _utcnow() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


@dataclass
class InstanceRecord:
    """One deployment of a streaming host for a user.

    ``execution_arn`` is the workflow-execution handle. It is stored so the status
    reporter can describe the execution but is never returned to clients.
    """

    user_id: str
    deployment_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: DeploymentStatus = DeploymentStatus.PENDING
    execution_arn: str | None = None
    instance_id: str | None = None
    instance_arn: str | None = None
    public_ip: str | None = None
    private_ip: str | None = None
    state: str | None = None
    instance_type: str | None = None
    ami_id: str | None = None
    availability_zone: str | None = None
    volume_id: str | None = None
    dcv_url: str | None = None
    error: str | None = None
    created_at: str = field(default_factory=_utcnow)
    updated_at: str = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if not self.user_id:
            raise ValueError("user_id cannot be empty")
        if isinstance(self.status, str):
            self.status = DeploymentStatus(self.status)

    @property
    def is_active(self) -> bool:
        return self.status in DeploymentStatus.active_statuses()

    def to_document(self) -> dict[str, Any]:
        document = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, DeploymentStatus):
                value = value.value
            if value is not None:
                document[_DOCUMENT_KEYS[f.name]] = value
        return document

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "InstanceRecord":
        kwargs = {name: document[key] for name, key in _DOCUMENT_KEYS.items() if key in document}
        return cls(**kwargs)

    @staticmethod
    def changes_to_document(**changes: Any) -> dict[str, Any]:
        """Maps snake_case field changes to stored attribute names and stamps ``updatedAt``."""
        document = {}
        for name, value in changes.items():
            if name not in _DOCUMENT_KEYS:
                raise KeyError(f"Unknown instance record field: {name}")
            document[_DOCUMENT_KEYS[name]] = value.value if isinstance(value, DeploymentStatus) else value
        document.setdefault("updatedAt", _utcnow())
        return document
