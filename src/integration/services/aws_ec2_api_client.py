import datetime
import logging
from typing import TYPE_CHECKING, Any

from botocore.exceptions import ClientError, ParamValidationError  # type: ignore

from integration.enums import Ec2InstanceState
from integration.exceptions import (
    AmiSnapshotException,
    EC2AuthenticationException,
    EC2InstanceCreationException,
    EC2InstanceNotFoundException,
    EC2InstanceStateException,
    EC2InstanceWaitTimeoutException,
    EC2InvalidParameterException,
    EC2ProfileNotReadyException,
    EC2QuotaExceededException,
    IntegrationException,
    ValidationException,
)
from integration.models import Ec2InstanceConfig, Ec2InstanceDto
from integration.services.aws_session import AwsSessionFactory
from integration.services.polling import Deadline, PollResult, wait_until

if TYPE_CHECKING:
    from neuroglia.hosting.web import WebApplicationBuilder

log = logging.getLogger(__name__)

MANAGED_BY = "lunaris"
PURPOSE = "cloud-gaming"
DCV_CONFIGURED_TAG = "dcvConfigured"


def _tags_to_dict(tags: list[dict[str, str]] | None) -> dict[str, str]:
    return {tag["Key"]: tag["Value"] for tag in tags or []}


def _dict_to_tags(tags: dict[str, str]) -> list[dict[str, str]]:
    return [{"Key": k, "Value": v} for k, v in tags.items()]


class AwsEc2Client:
    """Compute provisioner for streaming hosts.

    Launches instances from a launch template, waits for them to run, captures
    reusable machine images and reads/writes instance tags.
    """

    sessions: AwsSessionFactory

    def __init__(
        self,
        sessions: AwsSessionFactory,
        launch_template_name: str = "BasicDCV",
        default_instance_type: str = "t3.medium",
        running_timeout_seconds: float = 300,
        terminated_timeout_seconds: float = 300,
        poll_interval_seconds: float = 5.0,
    ):
        self.sessions = sessions
        self.launch_template_name = launch_template_name
        self.default_instance_type = default_instance_type
        self.running_timeout_seconds = running_timeout_seconds
        self.terminated_timeout_seconds = terminated_timeout_seconds
        self.poll_interval_seconds = poll_interval_seconds

    def _parse_aws_error(self, error: ClientError, operation: str) -> Exception:
        """Parse AWS ClientError and return appropriate specific exception.

        Args:
            error: The boto3 ClientError
            operation: Description of the operation that failed

        Returns:
            Specific exception type based on error code
        """
        error_code = error.response.get("Error", {}).get("Code", "")
        error_message = error.response.get("Error", {}).get("Message", str(error))

        # Authentication/Authorization errors
        if error_code in (
            "UnauthorizedOperation",
            "InvalidClientTokenId",
            "SignatureDoesNotMatch",
            "AccessDenied",
        ):
            return EC2AuthenticationException(f"{operation} - Authentication failed: {error_message}")

        if error_code in ("InvalidInstanceID.NotFound", "InvalidInstanceID.Malformed"):
            return EC2InstanceNotFoundException(f"{operation} - Instance not found: {error_message}")

        # Quota/Limit errors
        if error_code in (
            "InstanceLimitExceeded",
            "InsufficientInstanceCapacity",
            "RequestLimitExceeded",
        ):
            return EC2QuotaExceededException(f"{operation} - AWS quota exceeded: {error_message}")

        # Referenced resources that do not exist
        if error_code in ("InvalidAMIID.NotFound", "InvalidAMIID.Malformed"):
            return EC2InvalidParameterException(f"{operation} - AMI not found: {error_message}")
        if error_code == "InvalidSubnetID.NotFound":
            return EC2InvalidParameterException(f"{operation} - Subnet not found: {error_message}")
        if error_code == "InvalidGroup.NotFound":
            return EC2InvalidParameterException(f"{operation} - Security group not found: {error_message}")
        if error_code == "InvalidKeyPair.NotFound":
            return EC2InvalidParameterException(f"{operation} - Key pair not found: {error_message}")

        # A new instance profile takes a few seconds to propagate to EC2
        if error_code == "InvalidParameterValue" and "iamInstanceProfile" in error_message:
            return EC2ProfileNotReadyException(f"{operation} - Instance profile not ready: {error_message}")

        if error_code in ("InvalidParameterValue", "InvalidParameter"):
            return EC2InvalidParameterException(f"{operation} - Invalid parameter: {error_message}")

        # Generic AWS error
        return IntegrationException(f"{operation} - AWS error [{error_code}]: {error_message}")

    def generate_arn(self, instance_id: str) -> str:
        return f"arn:aws:ec2:{self.sessions.region}:{self.sessions.account_id}:instance/{instance_id}"

    def _to_dto(self, instance: dict[str, Any]) -> Ec2InstanceDto:
        tags = _tags_to_dict(instance.get("Tags"))
        launch_time = instance.get("LaunchTime")
        return Ec2InstanceDto(
            instance_id=instance["InstanceId"],
            instance_arn=self.generate_arn(instance["InstanceId"]),
            user_id=tags.get("userId"),
            state=instance.get("State", {}).get("Name", Ec2InstanceState.PENDING.value),
            instance_type=instance.get("InstanceType"),
            ami_id=instance.get("ImageId"),
            public_ip=instance.get("PublicIpAddress"),
            private_ip=instance.get("PrivateIpAddress"),
            availability_zone=instance.get("Placement", {}).get("AvailabilityZone"),
            created_at=tags.get("createdAt") or (launch_time.isoformat() if launch_time else None),
            tags=tags,
        )

    async def create_instance(self, config: Ec2InstanceConfig) -> Ec2InstanceDto:
        """Launches a single streaming host from the launch template.

        Args:
            config: Launch parameters; ``user_id`` is mandatory.

        Returns:
            Ec2InstanceDto for the new (usually still pending) instance.

        Raises:
            ValidationException: If no user id is given.
            EC2QuotaExceededException: If the account instance limit is reached.
            EC2InvalidParameterException: If the image, subnet, security group or key pair is unknown.
            EC2InstanceCreationException: For any other provider failure.
        """
        if not config.user_id:
            raise ValidationException("userId is required to create an instance")

        tags = {
            "userId": config.user_id,
            "managed-by": MANAGED_BY,
            "createdAt": datetime.datetime.now(datetime.timezone.utc).isoformat(),
            "purpose": PURPOSE,
            # Only the cached captured image carries the display agent; other images get it installed
            DCV_CONFIGURED_TAG: "true" if config.ami_id and config.dcv_preinstalled else "false",
        }
        tags.update(config.tags)

        params: dict[str, Any] = {
            "MinCount": 1,
            "MaxCount": 1,
            "LaunchTemplate": {"LaunchTemplateName": self.launch_template_name},
            "InstanceType": config.instance_type or self.default_instance_type,
            "TagSpecifications": [{"ResourceType": "instance", "Tags": _dict_to_tags(tags)}],
        }
        if config.ami_id:
            params["ImageId"] = config.ami_id
        if config.key_name:
            params["KeyName"] = config.key_name
        if config.security_group_ids:
            params["SecurityGroupIds"] = config.security_group_ids
        if config.subnet_id:
            params["SubnetId"] = config.subnet_id
        if config.iam_instance_profile:
            params["IamInstanceProfile"] = {"Arn": config.iam_instance_profile}

        # The instance ARN needs the account id; resolve it before launching
        await self.sessions.resolve_account_id()

        try:
            # https://boto3.amazonaws.com/v1/documentation/api/latest/reference/services/ec2/client/run_instances.html
            response = await self.sessions.call("ec2", "run_instances", **params)
            instances = response.get("Instances") or []
            if not instances or not instances[0].get("InstanceId"):
                raise EC2InstanceCreationException("Failed to create EC2 instance: no instance returned")

            instance = self._to_dto(instances[0])
            log.info(
                f"New streaming EC2 instance created in region {self.sessions.region}: "
                f"id={instance.instance_id}, instance_type={instance.instance_type}, user={config.user_id}"
            )
            return instance

        except ParamValidationError as e:
            log.error(f"Error creating streaming instance - invalid parameters: {e}")
            raise EC2InvalidParameterException(f"Invalid parameters for instance creation: {e}")
        except ClientError as e:
            log.error(f"Error creating streaming instance for user {config.user_id}: {e}")
            parsed = self._parse_aws_error(e, "Create EC2 instance")
            if type(parsed) is IntegrationException:
                message = e.response.get("Error", {}).get("Message", str(e))
                raise EC2InstanceCreationException(f"Failed to create EC2 instance: {message}")
            raise parsed

    async def get_instance(self, instance_id: str) -> Ec2InstanceDto:
        """Reads the current details of an instance.

        Raises:
            EC2InstanceNotFoundException: If the instance does not exist.
        """
        try:
            # https://boto3.amazonaws.com/v1/documentation/api/latest/reference/services/ec2/client/describe_instances.html
            response = await self.sessions.call("ec2", "describe_instances", InstanceIds=[instance_id])
        except ClientError as e:
            raise self._parse_aws_error(e, f"Describe instance {instance_id}")

        await self.sessions.resolve_account_id()
        for reservation in response.get("Reservations", []):
            for instance in reservation.get("Instances", []):
                return self._to_dto(instance)
        raise EC2InstanceNotFoundException(f"Instance {instance_id} not found")

    async def wait_for_instance_running(
        self,
        instance_id: str,
        timeout_seconds: float | None = None,
        deadline: Deadline | None = None,
    ) -> Ec2InstanceDto:
        """Blocks until the instance is running, then re-reads its full details.

        Raises:
            EC2InstanceStateException: If the instance starts shutting down while waiting.
            EC2InstanceWaitTimeoutException: If it is not running in time.
        """

        async def poll() -> PollResult[str]:
            instance = await self.get_instance(instance_id)
            log.debug(f"Instance {instance_id} state: {instance.state}")
            if instance.state in (Ec2InstanceState.SHUTTING_DOWN.value, Ec2InstanceState.TERMINATED.value):
                raise EC2InstanceStateException(f"Instance {instance_id} entered state {instance.state} while starting")
            return PollResult(instance.state == Ec2InstanceState.RUNNING.value, instance.state)

        await wait_until(
            poll,
            interval_seconds=self.poll_interval_seconds,
            timeout_seconds=timeout_seconds or self.running_timeout_seconds,
            description=f"instance {instance_id} to be running",
            deadline=deadline,
            timeout_error=EC2InstanceWaitTimeoutException,
        )
        instance = await self.get_instance(instance_id)
        log.info(f"Instance {instance_id} is running (public_ip={instance.public_ip or 'none'})")
        return instance

    async def create_and_wait_for_instance(
        self, config: Ec2InstanceConfig, deadline: Deadline | None = None
    ) -> Ec2InstanceDto:
        instance = await self.create_instance(config)
        return await self.wait_for_instance_running(instance.instance_id, deadline=deadline)

    async def snapshot_ami_image(self, instance_id: str, user_id: str | None = None) -> str:
        """Captures a machine image from a live instance without rebooting it.

        The image and its backing snapshot are both tagged with creator, user and source
        instance so orphaned images can be traced back.

        Returns:
            The new image id.

        Raises:
            AmiSnapshotException: If the provider returns no image id.
        """
        now = datetime.datetime.now(datetime.timezone.utc).isoformat()
        timestamp = now.replace(":", "-").replace(".", "-")
        image_name = f"Lunaris-DCV-{user_id or instance_id}-{timestamp}"

        image_tags = {
            "Name": image_name,
            "CreatedBy": "Lunaris",
            "CreatedAt": now,
            "SourceInstance": instance_id,
            "Purpose": PURPOSE,
            "HasDCV": "true",
        }
        if user_id:
            image_tags["UserId"] = user_id
        snapshot_tags = {
            "Name": f"{image_name}-snapshot",
            "CreatedBy": "Lunaris",
            "SourceInstance": instance_id,
        }

        try:
            # https://boto3.amazonaws.com/v1/documentation/api/latest/reference/services/ec2/client/create_image.html
            response = await self.sessions.call(
                "ec2",
                "create_image",
                InstanceId=instance_id,
                Name=image_name,
                Description=f"Streaming host image with DCV captured from {instance_id}",
                NoReboot=True,
                TagSpecifications=[
                    {"ResourceType": "image", "Tags": _dict_to_tags(image_tags)},
                    {"ResourceType": "snapshot", "Tags": _dict_to_tags(snapshot_tags)},
                ],
            )
        except ClientError as e:
            log.error(f"Error capturing image from instance {instance_id}: {e}")
            raise self._parse_aws_error(e, f"Create image from {instance_id}")

        image_id = response.get("ImageId")
        if not image_id:
            raise AmiSnapshotException(f"Image capture from {instance_id} returned no image id")

        log.info(f"Captured image {image_id} ({image_name}) from instance {instance_id}")
        return image_id

    async def modify_instance_tag(self, instance_id: str, key: str, value: str) -> None:
        try:
            # https://boto3.amazonaws.com/v1/documentation/api/latest/reference/services/ec2/client/create_tags.html
            await self.sessions.call(
                "ec2", "create_tags", Resources=[instance_id], Tags=[{"Key": key, "Value": value}]
            )
            log.debug(f"Tagged instance {instance_id}: {key}={value}")
        except ClientError as e:
            raise self._parse_aws_error(e, f"Tag instance {instance_id}")

    async def terminate_instance(self, instance_id: str) -> bool:
        """Requests termination of an instance.

        Returns:
            True if the termination request was accepted.
        """
        try:
            # https://boto3.amazonaws.com/v1/documentation/api/latest/reference/services/ec2/client/terminate_instances.html
            response = await self.sessions.call("ec2", "terminate_instances", InstanceIds=[instance_id])
            if response.get("TerminatingInstances"):
                log.info(f"Streaming EC2 instance {instance_id} termination requested")
                return True
            return False
        except ClientError as e:
            log.error(f"Error terminating instance {instance_id}: {e}")
            raise self._parse_aws_error(e, f"Terminate instance {instance_id}")

    async def wait_for_instance_terminated(self, instance_id: str, deadline: Deadline | None = None) -> None:
        async def poll() -> PollResult[str]:
            try:
                instance = await self.get_instance(instance_id)
            except EC2InstanceNotFoundException:
                return PollResult(True, Ec2InstanceState.TERMINATED.value)
            return PollResult(instance.state == Ec2InstanceState.TERMINATED.value, instance.state)

        await wait_until(
            poll,
            interval_seconds=self.poll_interval_seconds,
            timeout_seconds=self.terminated_timeout_seconds,
            description=f"instance {instance_id} to terminate",
            deadline=deadline,
            timeout_error=EC2InstanceWaitTimeoutException,
        )

    @staticmethod
    def configure(builder: "WebApplicationBuilder") -> "AwsEc2Client":
        """Register the compute client as a singleton built from application settings."""
        from application.settings import app_settings

        log.info("☁️ Configuring AWS EC2 Client...")
        client = AwsEc2Client(
            sessions=AwsSessionFactory.from_settings(app_settings),
            launch_template_name=app_settings.ec2_launch_template_name,
            default_instance_type=app_settings.ec2_default_instance_type.value,
            running_timeout_seconds=app_settings.ec2_running_timeout_seconds,
            terminated_timeout_seconds=app_settings.ec2_terminated_timeout_seconds,
            poll_interval_seconds=app_settings.ec2_poll_interval_seconds,
        )
        builder.services.add_singleton(AwsEc2Client, singleton=client)
        return client
