import json

from infra.clients import AwsClients
from infra.components.base import ResourceHandle

EC2_ASSUME_ROLE_POLICY = json.dumps(
    {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Effect": "Allow",
                "Principal": {"Service": "ec2.amazonaws.com"},
                "Action": "sts:AssumeRole",
            }
        ],
    }
)

# Nodes read and write the join artifact
MACHINE_POLICY = json.dumps(
    {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Effect": "Allow",
                "Action": ["s3:GetObject", "s3:PutObject"],
                "Resource": "arn:aws:s3:::*",
            }
        ],
    }
)

# The pool controller lists and launches instances and reads the join artifact
CONTROLLER_POLICY = json.dumps(
    {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Effect": "Allow",
                "Action": [
                    "ec2:DescribeInstances",
                    "ec2:DescribeInstanceStatus",
                    "ec2:RunInstances",
                    "ec2:TerminateInstances",
                    "ec2:CreateTags",
                ],
                "Resource": "*",
            },
            {
                "Effect": "Allow",
                "Action": ["s3:GetObject", "s3:ListBucket"],
                "Resource": "arn:aws:s3:::*",
            },
            {
                "Effect": "Allow",
                "Action": ["iam:PassRole", "iam:GetInstanceProfile"],
                "Resource": "*",
            },
        ],
    }
)

POLICY_DOCUMENTS = {
    "machine": MACHINE_POLICY,
    "controller": CONTROLLER_POLICY,
}


class IamPolicy(ResourceHandle):
    """Customer managed policy; the id is the policy ARN."""

    kind = "IAM policy"

    def __init__(
        self,
        clients: AwsClients,
        name: str = "",
        policy_type: str = "",
        resource_id: str = "",
    ):
        super().__init__(clients, resource_id)
        self.name = name
        self.policy_type = policy_type

    def create(self) -> str:
        document = POLICY_DOCUMENTS.get(self.policy_type)
        if document is None:
            raise ValueError(f"Unrecognized policy type: {self.policy_type}")

        reply = self.clients.iam.create_policy(PolicyName=self.name, PolicyDocument=document)
        self.id = reply["Policy"]["Arn"]
        return self.id

    def describe(self) -> str:
        with self._not_found_as_error():
            self.clients.iam.get_policy(PolicyArn=self.id)
        return "available"

    def delete(self) -> None:
        with self._not_found_as_error():
            self.clients.iam.delete_policy(PolicyArn=self.id)


class IamRole(ResourceHandle):
    """EC2-assumable role with one managed policy attached; the id is the role name."""

    kind = "IAM role"

    def __init__(
        self,
        clients: AwsClients,
        name: str = "",
        policy_arn: str = "",
        resource_id: str = "",
    ):
        super().__init__(clients, resource_id)
        self.name = name or resource_id
        self.policy_arn = policy_arn

    def create(self) -> str:
        iam = self.clients.iam
        iam.create_role(RoleName=self.name, AssumeRolePolicyDocument=EC2_ASSUME_ROLE_POLICY)
        self.id = self.name

        iam.attach_role_policy(RoleName=self.name, PolicyArn=self.policy_arn)
        return self.id

    def describe(self) -> str:
        with self._not_found_as_error():
            self.clients.iam.get_role(RoleName=self.id)
        return "available"

    def delete(self) -> None:
        iam = self.clients.iam
        if self.policy_arn:
            with self._detach_step("policy attachment"):
                iam.detach_role_policy(RoleName=self.id, PolicyArn=self.policy_arn)
        with self._not_found_as_error():
            iam.delete_role(RoleName=self.id)


class InstanceProfile(ResourceHandle):
    """Instance profile wrapping the node role; the id is the profile name."""

    kind = "instance profile"

    def __init__(
        self,
        clients: AwsClients,
        name: str = "",
        role_name: str = "",
        resource_id: str = "",
    ):
        super().__init__(clients, resource_id)
        self.name = name or resource_id
        self.role_name = role_name

    def create(self) -> str:
        iam = self.clients.iam
        iam.create_instance_profile(InstanceProfileName=self.name)
        self.id = self.name

        iam.add_role_to_instance_profile(InstanceProfileName=self.name, RoleName=self.role_name)
        return self.id

    def describe(self) -> str:
        with self._not_found_as_error():
            reply = self.clients.iam.get_instance_profile(InstanceProfileName=self.id)
        roles = reply["InstanceProfile"].get("Roles", [])
        return "ready" if roles else "empty"

    def delete(self) -> None:
        iam = self.clients.iam
        if self.role_name:
            with self._detach_step("role membership"):
                iam.remove_role_from_instance_profile(
                    InstanceProfileName=self.id, RoleName=self.role_name
                )
        with self._not_found_as_error():
            iam.delete_instance_profile(InstanceProfileName=self.id)


class IamGroup(ResourceHandle):
    """Group carrying the controller policy; the id is the group name."""

    kind = "IAM group"

    def __init__(
        self,
        clients: AwsClients,
        name: str = "",
        policy_arn: str = "",
        resource_id: str = "",
    ):
        super().__init__(clients, resource_id)
        self.name = name or resource_id
        self.policy_arn = policy_arn

    def create(self) -> str:
        iam = self.clients.iam
        iam.create_group(GroupName=self.name)
        self.id = self.name

        iam.attach_group_policy(GroupName=self.name, PolicyArn=self.policy_arn)
        return self.id

    def describe(self) -> str:
        with self._not_found_as_error():
            self.clients.iam.get_group(GroupName=self.id)
        return "available"

    def delete(self) -> None:
        iam = self.clients.iam
        if self.policy_arn:
            with self._detach_step("policy attachment"):
                iam.detach_group_policy(GroupName=self.id, PolicyArn=self.policy_arn)
        with self._not_found_as_error():
            iam.delete_group(GroupName=self.id)


class IamUser(ResourceHandle):
    """Controller user with one access key; the id is the user name.

    The secret access key is only available from ``secrets()`` right after
    ``create`` and is never written to the inventory.
    """

    kind = "IAM user"

    def __init__(
        self,
        clients: AwsClients,
        name: str = "",
        group_name: str = "",
        access_key_id: str = "",
        resource_id: str = "",
    ):
        super().__init__(clients, resource_id)
        self.name = name or resource_id
        self.group_name = group_name
        self.access_key_id = access_key_id
        self._secret_access_key = ""

    def create(self) -> str:
        iam = self.clients.iam
        iam.create_user(UserName=self.name)
        self.id = self.name

        iam.add_user_to_group(GroupName=self.group_name, UserName=self.name)

        reply = iam.create_access_key(UserName=self.name)
        self.access_key_id = reply["AccessKey"]["AccessKeyId"]
        self._secret_access_key = reply["AccessKey"]["SecretAccessKey"]
        return self.id

    def secrets(self) -> dict[str, str]:
        if not self._secret_access_key:
            return {}
        return {
            "aws_access_key_id": self.access_key_id,
            "aws_secret_access_key": self._secret_access_key,
        }

    def describe(self) -> str:
        with self._not_found_as_error():
            self.clients.iam.get_user(UserName=self.id)
        return "available"

    def delete(self) -> None:
        iam = self.clients.iam
        if self.access_key_id:
            with self._detach_step("access key"):
                iam.delete_access_key(UserName=self.id, AccessKeyId=self.access_key_id)
        if self.group_name:
            with self._detach_step("group membership"):
                iam.remove_user_from_group(GroupName=self.group_name, UserName=self.id)
        with self._not_found_as_error():
            iam.delete_user(UserName=self.id)
