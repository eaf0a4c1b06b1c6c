from enum import Enum


class Ec2InstanceState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting-down"
    TERMINATED = "terminated"
    STOPPING = "stopping"
    STOPPED = "stopped"


class Ec2InstanceType(str, Enum):
    MICRO = "t3.micro"
    SMALL = "t3.small"
    MEDIUM = "t3.medium"
    LARGE = "t3.large"
    GPU_SMALL = "g4dn.xlarge"
    GPU_MEDIUM = "g4dn.2xlarge"
    GPU_LARGE = "g5.xlarge"
