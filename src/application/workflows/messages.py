"""Versioned messages exchanged between deployment workflow stages.

Every message carries a ``kind`` tag and a ``version`` so a payload that crossed a
process boundary (workflow input/output) is validated against exactly one schema.
Unknown fields are rejected. Payloads use camelCase keys on the wire.
"""

from typing import Any, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from integration.exceptions import ValidationException

M = TypeVar("M", bound="WorkflowMessage")


class WorkflowMessage(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid", frozen=True)

    version: Literal[1] = 1

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class DeployInstanceInput(WorkflowMessage):
    kind: Literal["DeployInstanceInput"] = "DeployInstanceInput"
    deployment_id: str
    user_id: str
    instance_type: str
    ami_id: str | None = None


class InstanceProvisioned(WorkflowMessage):
    kind: Literal["InstanceProvisioned"] = "InstanceProvisioned"
    deployment_id: str
    user_id: str
    instance_id: str
    instance_arn: str
    state: str
    instance_type: str | None = None
    ami_id: str | None = None
    availability_zone: str | None = None
    public_ip: str | None = None
    private_ip: str | None = None
    image_cached: bool


class VolumeAttached(WorkflowMessage):
    kind: Literal["VolumeAttached"] = "VolumeAttached"
    deployment_id: str
    volume_id: str
    status: str
    created: bool


class SessionEstablished(WorkflowMessage):
    kind: Literal["SessionEstablished"] = "SessionEstablished"
    deployment_id: str
    instance_id: str
    dcv_url: str


class DeployInstanceOutput(WorkflowMessage):
    kind: Literal["DeployInstanceOutput"] = "DeployInstanceOutput"
    success: bool
    deployment_id: str
    instance_id: str | None = None
    volume_id: str | None = None
    dcv_url: str | None = None
    ami_id: str | None = None
    error: str | None = None
    message: str | None = None


class TerminateInstanceInput(WorkflowMessage):
    kind: Literal["TerminateInstanceInput"] = "TerminateInstanceInput"
    user_id: str
    deployment_id: str | None = None


class TerminateInstanceOutput(WorkflowMessage):
    kind: Literal["TerminateInstanceOutput"] = "TerminateInstanceOutput"
    success: bool
    user_id: str
    deployment_id: str | None = None
    instance_id: str | None = None
    error: str | None = None
    message: str | None = None


def parse_message(message_type: type[M], payload: dict[str, Any]) -> M:
    """Validates a raw payload against one message type.

    Raises:
        ValidationException: If the payload does not match the schema, kind or version.
    """
    try:
        return message_type.model_validate(payload)
    except ValidationError as e:
        raise ValidationException(f"Invalid {message_type.__name__} payload: {e.errors()}")
