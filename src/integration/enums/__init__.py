from .ebs_volume import EbsVolumeState, EbsVolumeType
from .ec2_instance import Ec2InstanceState, Ec2InstanceType
from .ssm_command import SsmCommandStatus
from .workflow_execution import WorkflowExecutionStatus

__all__ = [
    "EbsVolumeState",
    "EbsVolumeType",
    "Ec2InstanceState",
    "Ec2InstanceType",
    "SsmCommandStatus",
    "WorkflowExecutionStatus",
]  # Re-export enums (prevents flake8 F401 unused import warnings)
