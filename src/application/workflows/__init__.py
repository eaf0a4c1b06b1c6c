from .deploy_instance_workflow import DeployInstanceWorkflow, DeployWorkflowOptions
from .local_workflow_engine import LocalWorkflowEngine
from .registry import RetryPolicy, WorkflowDefinition, WorkflowRegistry
from .terminate_instance_workflow import TerminateInstanceWorkflow

__all__ = [
    "DeployInstanceWorkflow",
    "DeployWorkflowOptions",
    "LocalWorkflowEngine",
    "RetryPolicy",
    "TerminateInstanceWorkflow",
    "WorkflowDefinition",
    "WorkflowRegistry",
]
