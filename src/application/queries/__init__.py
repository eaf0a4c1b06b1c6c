"""Application queries package."""

from .get_deployment_status_query import (
    DeploymentStatusReport,
    GetDeploymentStatusQuery,
    GetDeploymentStatusQueryHandler,
)
from .get_streaming_link_query import GetStreamingLinkQuery, GetStreamingLinkQueryHandler

__all__ = [
    "DeploymentStatusReport",
    "GetDeploymentStatusQuery",
    "GetDeploymentStatusQueryHandler",
    "GetStreamingLinkQuery",
    "GetStreamingLinkQueryHandler",
]
