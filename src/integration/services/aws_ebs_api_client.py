import datetime
import logging
from typing import TYPE_CHECKING, Any

from botocore.exceptions import ClientError, ParamValidationError  # type: ignore

from integration.enums import EbsVolumeState
from integration.exceptions import (
    EBSInsufficientCapacityException,
    EBSVolumeErrorStateException,
    EBSVolumeNotFoundException,
    EBSVolumeWaitTimeoutException,
    EC2AuthenticationException,
    EC2InvalidParameterException,
    IntegrationException,
    ValidationException,
)
from integration.models import EbsVolumeAttachment, EbsVolumeConfig, EbsVolumeDto
from integration.services.aws_ec2_api_client import MANAGED_BY, PURPOSE
from integration.services.aws_session import AwsSessionFactory
from integration.services.polling import Deadline, PollResult, wait_until

if TYPE_CHECKING:
    from neuroglia.hosting.web import WebApplicationBuilder

log = logging.getLogger(__name__)


class AwsEbsClient:
    """Volume manager for the persistent per-user data disk."""

    sessions: AwsSessionFactory

    def __init__(
        self,
        sessions: AwsSessionFactory,
        default_size_gib: int = 100,
        default_volume_type: str = "gp3",
        device_name: str = "/dev/sdf",
        wait_timeout_seconds: float = 300,
        poll_interval_seconds: float = 5.0,
    ):
        self.sessions = sessions
        self.default_size_gib = default_size_gib
        self.default_volume_type = default_volume_type
        self.device_name = device_name
        self.wait_timeout_seconds = wait_timeout_seconds
        self.poll_interval_seconds = poll_interval_seconds

    def _parse_aws_error(self, error: ClientError, operation: str) -> Exception:
        error_code = error.response.get("Error", {}).get("Code", "")
        error_message = error.response.get("Error", {}).get("Message", str(error))

        if error_code in ("UnauthorizedOperation", "AccessDenied"):
            return EC2AuthenticationException(f"{operation} - Authentication failed: {error_message}")
        if error_code in ("InsufficientVolumeCapacity", "VolumeLimitExceeded"):
            return EBSInsufficientCapacityException(f"{operation} - Insufficient volume capacity: {error_message}")
        if error_code in ("InvalidVolume.NotFound", "InvalidVolumeID.Malformed"):
            return EBSVolumeNotFoundException(f"{operation} - Volume not found: {error_message}")
        if error_code in ("InvalidParameterValue", "InvalidParameter", "InvalidZone.NotFound"):
            return EC2InvalidParameterException(f"{operation} - Invalid parameter: {error_message}")
        return IntegrationException(f"{operation} - AWS error [{error_code}]: {error_message}")

    @staticmethod
    def _to_dto(volume: dict[str, Any]) -> EbsVolumeDto:
        return EbsVolumeDto(
            volume_id=volume["VolumeId"],
            state=volume.get("State", EbsVolumeState.CREATING.value),
            size=volume.get("Size"),
            volume_type=volume.get("VolumeType"),
            availability_zone=volume.get("AvailabilityZone"),
            tags={tag["Key"]: tag["Value"] for tag in volume.get("Tags", [])},
        )

    async def create_volume(self, config: EbsVolumeConfig) -> EbsVolumeDto:
        """Creates a data volume in the instance's availability zone.

        Raises:
            ValidationException: If user id or availability zone are missing.
            EBSInsufficientCapacityException: If the zone is out of capacity.
        """
        if not config.user_id:
            raise ValidationException("userId is required to create a volume")
        if not config.availability_zone:
            raise ValidationException("availabilityZone is required to create a volume")

        tags = {
            "Name": f"lunaris-{config.user_id}-data",
            "userId": config.user_id,
            "managed-by": MANAGED_BY,
            "createdAt": datetime.datetime.now(datetime.timezone.utc).isoformat(),
            "purpose": PURPOSE,
        }
        tags.update(config.tags)

        try:
            # https://boto3.amazonaws.com/v1/documentation/api/latest/reference/services/ec2/client/create_volume.html
            response = await self.sessions.call(
                "ec2",
                "create_volume",
                AvailabilityZone=config.availability_zone,
                Size=config.size or self.default_size_gib,
                VolumeType=config.volume_type or self.default_volume_type,
                TagSpecifications=[
                    {"ResourceType": "volume", "Tags": [{"Key": k, "Value": v} for k, v in tags.items()]}
                ],
            )
        except ParamValidationError as e:
            raise EC2InvalidParameterException(f"Invalid parameters for volume creation: {e}")
        except ClientError as e:
            log.error(f"Error creating volume for user {config.user_id}: {e}")
            raise self._parse_aws_error(e, "Create EBS volume")

        volume = self._to_dto(response)
        log.info(
            f"Created EBS volume {volume.volume_id} ({volume.size} GiB {volume.volume_type}) "
            f"in {config.availability_zone} for user {config.user_id}"
        )
        return volume

    async def describe_volume(self, volume_id: str) -> EbsVolumeDto:
        try:
            response = await self.sessions.call("ec2", "describe_volumes", VolumeIds=[volume_id])
        except ClientError as e:
            raise self._parse_aws_error(e, f"Describe volume {volume_id}")

        volumes = response.get("Volumes") or []
        if not volumes or not volumes[0].get("State"):
            raise EBSVolumeNotFoundException(f"Volume {volume_id} not found")
        return self._to_dto(volumes[0])

    async def wait_for_volume(
        self,
        volume_id: str,
        target_state: str = EbsVolumeState.AVAILABLE.value,
        timeout_seconds: float | None = None,
        deadline: Deadline | None = None,
    ) -> EbsVolumeDto:
        """Polls a volume until it reaches ``target_state``.

        Raises:
            EBSVolumeNotFoundException: If the provider reports no such volume.
            EBSVolumeErrorStateException: If the volume enters the error state.
            EBSVolumeWaitTimeoutException: If the target state is not reached in time.
        """

        async def poll() -> PollResult[EbsVolumeDto]:
            volume = await self.describe_volume(volume_id)
            log.debug(f"Volume {volume_id} state: {volume.state}")
            if volume.state == EbsVolumeState.ERROR.value:
                raise EBSVolumeErrorStateException(f"Volume {volume_id} is in error state")
            return PollResult(volume.state == target_state, volume)

        return await wait_until(
            poll,
            interval_seconds=self.poll_interval_seconds,
            timeout_seconds=timeout_seconds or self.wait_timeout_seconds,
            description=f"volume {volume_id} to be {target_state}",
            deadline=deadline,
            timeout_error=EBSVolumeWaitTimeoutException,
        )

    async def attach_volume(self, instance_id: str, volume_id: str) -> None:
        """Attaches a volume and keeps it alive past instance termination."""
        try:
            # https://boto3.amazonaws.com/v1/documentation/api/latest/reference/services/ec2/client/attach_volume.html
            await self.sessions.call(
                "ec2", "attach_volume", Device=self.device_name, InstanceId=instance_id, VolumeId=volume_id
            )
            # The data volume must outlive the instance
            await self.sessions.call(
                "ec2",
                "modify_instance_attribute",
                InstanceId=instance_id,
                BlockDeviceMappings=[
                    {"DeviceName": self.device_name, "Ebs": {"DeleteOnTermination": False}},
                ],
            )
        except ClientError as e:
            log.error(f"Error attaching volume {volume_id} to {instance_id}: {e}")
            raise self._parse_aws_error(e, f"Attach volume {volume_id}")
        log.info(f"Attached volume {volume_id} to {instance_id} at {self.device_name}")

    async def create_and_attach_volume(
        self, config: EbsVolumeConfig, instance_id: str, deadline: Deadline | None = None
    ) -> EbsVolumeAttachment:
        volume = await self.create_volume(config)
        await self.wait_for_volume(volume.volume_id, EbsVolumeState.AVAILABLE.value, deadline=deadline)
        await self.attach_volume(instance_id, volume.volume_id)
        attached = await self.wait_for_volume(volume.volume_id, EbsVolumeState.IN_USE.value, deadline=deadline)
        return EbsVolumeAttachment(volume_id=volume.volume_id, status=attached.state, created=True)

    async def find_available_volume(self, user_id: str, availability_zone: str) -> EbsVolumeDto | None:
        """Finds a detached data volume left behind by a previous session of this user."""
        try:
            response = await self.sessions.call(
                "ec2",
                "describe_volumes",
                Filters=[
                    {"Name": "tag:userId", "Values": [user_id]},
                    {"Name": "tag:managed-by", "Values": [MANAGED_BY]},
                    {"Name": "status", "Values": [EbsVolumeState.AVAILABLE.value]},
                    {"Name": "availability-zone", "Values": [availability_zone]},
                ],
            )
        except ClientError as e:
            raise self._parse_aws_error(e, f"Find volumes of {user_id}")

        volumes = response.get("Volumes") or []
        return self._to_dto(volumes[0]) if volumes else None

    async def attach_or_reuse_volume(
        self, config: EbsVolumeConfig, instance_id: str, deadline: Deadline | None = None
    ) -> EbsVolumeAttachment:
        existing = await self.find_available_volume(config.user_id, config.availability_zone)
        if existing is None:
            return await self.create_and_attach_volume(config, instance_id, deadline=deadline)

        log.info(f"Reusing volume {existing.volume_id} for user {config.user_id}")
        await self.attach_volume(instance_id, existing.volume_id)
        attached = await self.wait_for_volume(existing.volume_id, EbsVolumeState.IN_USE.value, deadline=deadline)
        return EbsVolumeAttachment(volume_id=existing.volume_id, status=attached.state, created=False)

    async def detach_volume(self, volume_id: str, instance_id: str) -> None:
        try:
            await self.sessions.call("ec2", "detach_volume", VolumeId=volume_id, InstanceId=instance_id, Force=True)
        except ClientError as e:
            raise self._parse_aws_error(e, f"Detach volume {volume_id}")

    async def delete_volume(self, volume_id: str) -> None:
        try:
            await self.sessions.call("ec2", "delete_volume", VolumeId=volume_id)
        except ClientError as e:
            raise self._parse_aws_error(e, f"Delete volume {volume_id}")
        log.info(f"Deleted volume {volume_id}")

    async def release_volume(
        self, attachment: EbsVolumeAttachment, instance_id: str, deadline: Deadline | None = None
    ) -> None:
        """Undoes an attachment; volumes created for it are deleted, reused ones are kept."""
        await self.detach_volume(attachment.volume_id, instance_id)
        await self.wait_for_volume(attachment.volume_id, EbsVolumeState.AVAILABLE.value, deadline=deadline)
        if attachment.created:
            await self.delete_volume(attachment.volume_id)

    @staticmethod
    def configure(builder: "WebApplicationBuilder") -> "AwsEbsClient":
        from application.settings import app_settings

        log.info("💾 Configuring AWS EBS Client...")
        client = AwsEbsClient(
            sessions=AwsSessionFactory.from_settings(app_settings),
            default_size_gib=app_settings.ebs_default_size_gib,
            default_volume_type=app_settings.ebs_default_volume_type.value,
            device_name=app_settings.ebs_device_name,
            wait_timeout_seconds=app_settings.ebs_wait_timeout_seconds,
            poll_interval_seconds=app_settings.ebs_poll_interval_seconds,
        )
        builder.services.add_singleton(AwsEbsClient, singleton=client)
        return client
