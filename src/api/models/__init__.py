"""API request models."""

from .deployment_requests import DeployInstanceRequest, TerminateInstanceRequest

__all__ = [
    "DeployInstanceRequest",
    "TerminateInstanceRequest",
]
