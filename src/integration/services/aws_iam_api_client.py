import json
import logging
from typing import TYPE_CHECKING

from botocore.exceptions import ClientError  # type: ignore

from integration.services.aws_session import AwsSessionFactory

if TYPE_CHECKING:
    from neuroglia.hosting.web import WebApplicationBuilder

log = logging.getLogger(__name__)

EC2_TRUST_POLICY = {
    "Version": "2012-10-17",
    "Statement": [
        {
            "Effect": "Allow",
            "Principal": {"Service": "ec2.amazonaws.com"},
            "Action": "sts:AssumeRole",
        }
    ],
}


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


class AwsIamClient:
    """Identity bootstrapper: get-or-create of the instance role and profile.

    Concurrent creators are tolerated: EntityAlreadyExists falls back to a fetch and
    LimitExceeded on an attach means the attachment is already in place. Every other
    IAM error propagates unmodified.
    """

    sessions: AwsSessionFactory

    def __init__(
        self,
        sessions: AwsSessionFactory,
        role_name: str = "Lunaris-EC2-SSM-Role",
        profile_name: str = "Lunaris-EC2-SSM-Profile",
        managed_policy_arn: str = "arn:aws:iam::aws:policy/AmazonSSMManagedInstanceCore",
    ):
        self.sessions = sessions
        self.role_name = role_name
        self.profile_name = profile_name
        self.managed_policy_arn = managed_policy_arn

    @property
    def _tags(self) -> list[dict[str, str]]:
        return [{"Key": "Application", "Value": "Lunaris"}, {"Key": "ManagedBy", "Value": "Lunaris"}]

    async def get_role(self) -> str:
        try:
            await self.sessions.call("iam", "get_role", RoleName=self.role_name)
            return self.role_name
        except ClientError as e:
            if _error_code(e) != "NoSuchEntity":
                raise

        log.info(f"IAM role {self.role_name} not found, creating it")
        try:
            await self.sessions.call(
                "iam",
                "create_role",
                RoleName=self.role_name,
                AssumeRolePolicyDocument=json.dumps(EC2_TRUST_POLICY),
                Description="Allows streaming hosts to receive Systems Manager commands",
                Tags=self._tags,
            )
        except ClientError as e:
            if _error_code(e) != "EntityAlreadyExists":
                raise
            log.info(f"IAM role {self.role_name} was created concurrently")
            await self.sessions.call("iam", "get_role", RoleName=self.role_name)
            return self.role_name

        try:
            await self.sessions.call(
                "iam", "attach_role_policy", RoleName=self.role_name, PolicyArn=self.managed_policy_arn
            )
        except ClientError as e:
            if _error_code(e) != "LimitExceeded":
                raise
        return self.role_name

    async def get_profile(self) -> str:
        """Returns the ARN of the instance profile, creating profile and role if absent."""
        try:
            response = await self.sessions.call("iam", "get_instance_profile", InstanceProfileName=self.profile_name)
            return response["InstanceProfile"]["Arn"]
        except ClientError as e:
            if _error_code(e) != "NoSuchEntity":
                raise

        role_name = await self.get_role()

        log.info(f"IAM instance profile {self.profile_name} not found, creating it")
        try:
            response = await self.sessions.call(
                "iam", "create_instance_profile", InstanceProfileName=self.profile_name, Tags=self._tags
            )
        except ClientError as e:
            if _error_code(e) != "EntityAlreadyExists":
                raise
            log.info(f"IAM instance profile {self.profile_name} was created concurrently")
            response = await self.sessions.call("iam", "get_instance_profile", InstanceProfileName=self.profile_name)
        profile_arn = response["InstanceProfile"]["Arn"]

        try:
            await self.sessions.call(
                "iam", "add_role_to_instance_profile", InstanceProfileName=self.profile_name, RoleName=role_name
            )
        except ClientError as e:
            # A profile holds at most one role; LimitExceeded means it is already attached
            if _error_code(e) not in ("LimitExceeded", "EntityAlreadyExists"):
                raise

        log.info(f"IAM instance profile ready: {profile_arn}")
        return profile_arn

    @staticmethod
    def configure(builder: "WebApplicationBuilder") -> "AwsIamClient":
        from application.settings import app_settings

        client = AwsIamClient(
            sessions=AwsSessionFactory.from_settings(app_settings),
            role_name=app_settings.iam_role_name,
            profile_name=app_settings.iam_instance_profile_name,
            managed_policy_arn=app_settings.iam_managed_policy_arn,
        )
        builder.services.add_singleton(AwsIamClient, singleton=client)
        return client
