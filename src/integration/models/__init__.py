from .ebs_volume_dto import EbsVolumeAttachment, EbsVolumeConfig, EbsVolumeDto
from .ec2_instance_dto import Ec2InstanceConfig, Ec2InstanceDto
from .workflow_execution_dto import WorkflowExecutionDto

__all__ = [
    "EbsVolumeAttachment",
    "EbsVolumeConfig",
    "EbsVolumeDto",
    "Ec2InstanceConfig",
    "Ec2InstanceDto",
    "WorkflowExecutionDto",
]
