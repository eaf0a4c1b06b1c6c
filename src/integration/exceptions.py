class IntegrationException(Exception):
    """Base exception for integration layer errors."""
    pass


# Taxonomy shared by every provider client

class ValidationException(IntegrationException):
    """Raised when a required input is missing or malformed."""
    pass


class ResourceNotFoundException(IntegrationException):
    """Raised when a record or provider resource does not exist."""
    pass


class ProviderTransientException(IntegrationException):
    """Raised for capacity/throttling errors that are eligible for retry."""
    pass


class ProviderPermanentException(IntegrationException):
    """Raised when the provider rejects a request for a reason a retry cannot fix."""
    pass


class OperationTimeoutException(IntegrationException, TimeoutError):
    """Raised when a wait primitive exceeds its deadline before a terminal state."""
    pass


class ActiveDeploymentExistsException(IntegrationException):
    """Raised when a user already owns a running deployment."""
    pass


class DeploymentNotFoundException(ResourceNotFoundException):
    """Raised when a user has no deployment record."""
    pass


class WorkflowExecutionNotFoundException(ResourceNotFoundException):
    """Raised when the workflow engine does not know an execution handle."""
    pass


# AWS EC2 Specific Exceptions

class EC2Exception(IntegrationException):
    """Base exception for AWS EC2 related errors."""
    pass


class EC2InstanceNotFoundException(EC2Exception, ResourceNotFoundException):
    """Raised when an EC2 instance is not found."""
    pass


class EC2InstanceCreationException(EC2Exception):
    """Raised when EC2 instance creation fails for an unrecognized reason."""
    pass


class EC2AuthenticationException(EC2Exception, ProviderPermanentException):
    """Raised when AWS credentials are invalid or insufficient permissions."""
    pass


class EC2QuotaExceededException(EC2Exception, ProviderTransientException):
    """Raised when AWS resource quota/limit is exceeded."""
    pass


class EC2ProfileNotReadyException(EC2Exception, ProviderTransientException):
    """Raised when a freshly created instance profile is not yet visible to EC2."""
    pass


class EC2InvalidParameterException(EC2Exception, ProviderPermanentException):
    """Raised when a referenced image, subnet, security group or key pair is unknown."""
    pass


class EC2InstanceWaitTimeoutException(EC2Exception, OperationTimeoutException):
    """Raised when an instance does not reach the expected state in time."""
    pass


class EC2InstanceStateException(EC2Exception):
    """Raised when an instance moves to a state it cannot come back from while waiting."""
    pass


class AmiSnapshotException(EC2Exception):
    """Raised when an image capture returns no image id."""
    pass


class MissingPublicIpException(EC2Exception):
    """Raised when a running instance exposes no public IP address."""
    pass


# AWS EBS Specific Exceptions

class EBSException(IntegrationException):
    """Base exception for AWS EBS related errors."""
    pass


class EBSInsufficientCapacityException(EBSException, ProviderTransientException):
    """Raised when the availability zone cannot supply the requested volume."""
    pass


class EBSVolumeNotFoundException(EBSException, ResourceNotFoundException):
    """Raised when an EBS volume is not found."""
    pass


class EBSVolumeErrorStateException(EBSException):
    """Raised when a volume transitions to the error state."""
    pass


class EBSVolumeWaitTimeoutException(EBSException, OperationTimeoutException):
    """Raised when a volume does not reach the target state in time."""
    pass


# AWS SSM Specific Exceptions

class SSMException(IntegrationException):
    """Base exception for AWS Systems Manager related errors."""
    pass


class SSMDocumentNotFoundException(SSMException, ResourceNotFoundException):
    """Raised when a command document does not exist at send time."""
    pass


class SSMCommandFailedException(SSMException):
    """Raised when a command ends in Failed, Cancelled or TimedOut."""

    def __init__(self, status: str, message: str | None = None):
        self.status = status
        super().__init__(message or f"SSM command finished with status {status}")


class SSMCommandTimeoutException(SSMException, OperationTimeoutException):
    """Raised when a command is still running when the caller's deadline passes."""
    pass


class SSMAgentNotOnlineException(SSMException, OperationTimeoutException):
    """Raised when an instance never registers with the command channel."""
    pass


class SSMParameterAlreadyExistsException(SSMException):
    """Raised when a conditional parameter write loses to a concurrent writer."""
    pass
