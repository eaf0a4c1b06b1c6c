"""Application commands package."""

from .deploy_instance_command import DeployInstanceCommand, DeployInstanceCommandHandler
from .terminate_instance_command import TerminateInstanceCommand, TerminateInstanceCommandHandler

__all__ = [
    "DeployInstanceCommand",
    "DeployInstanceCommandHandler",
    "TerminateInstanceCommand",
    "TerminateInstanceCommandHandler",
]
