"""Data Transfer Objects for EC2 instance provisioning.

These DTOs are exchanged between the compute client and the deployment workflow and
carry just what the control plane needs to track a streaming host.
"""

from dataclasses import dataclass, field


@dataclass
class Ec2InstanceConfig:
    """Launch parameters for a streaming host.

    Attributes:
        user_id: Owner of the instance (required, non-empty)
        instance_type: EC2 instance type; the client default applies when omitted
        ami_id: Image to launch; the launch template image is used when omitted
        key_name: SSH/RDP key pair name
        security_group_ids: Security groups attached to the primary interface
        subnet_id: VPC subnet to launch into
        iam_instance_profile: ARN of the instance profile granting command-channel access
        dcv_preinstalled: True when ``ami_id`` is a captured image that already carries the display agent
        tags: Caller tags merged over the managed tags
    """

    user_id: str
    instance_type: str | None = None
    ami_id: str | None = None
    key_name: str | None = None
    security_group_ids: list[str] = field(default_factory=list)
    subnet_id: str | None = None
    iam_instance_profile: str | None = None
    dcv_preinstalled: bool = False
    tags: dict[str, str] = field(default_factory=dict)


@dataclass
class Ec2InstanceDto:
    """Snapshot of an EC2 instance as reported by DescribeInstances."""

    instance_id: str
    instance_arn: str
    user_id: str | None
    state: str
    instance_type: str | None = None
    ami_id: str | None = None
    public_ip: str | None = None
    private_ip: str | None = None
    availability_zone: str | None = None
    created_at: str | None = None
    tags: dict[str, str] = field(default_factory=dict)
