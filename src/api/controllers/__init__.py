"""API Controllers."""

from .deployments_controller import DeploymentsController

__all__ = ["DeploymentsController"]
