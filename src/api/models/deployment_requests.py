"""Request DTOs for deployment API endpoints."""

from pydantic import BaseModel, ConfigDict, Field


class DeployInstanceRequest(BaseModel):
    """Request body for deploying a streaming instance."""

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "userId": "player-42",
                "instanceType": "g4dn.xlarge",
            }
        },
    )

    user_id: str = Field(..., alias="userId", min_length=1, description="Owner of the streaming instance")
    ami_id: str | None = Field(None, alias="amiId", description="Optional image (cached image used if omitted)")
    instance_type: str | None = Field(None, alias="instanceType", description="Optional EC2 instance type")


class TerminateInstanceRequest(BaseModel):
    """Request body for terminating a user's streaming instance."""

    model_config = ConfigDict(populate_by_name=True, json_schema_extra={"example": {"userId": "player-42"}})

    user_id: str = Field(..., alias="userId", min_length=1, description="Owner of the streaming instance")
