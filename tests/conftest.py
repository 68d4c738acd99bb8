from typing import Optional
from unittest.mock import MagicMock

import pytest
from moto import mock_aws

from api.models import Inventory
from infra.clients import AwsClients
from infra.components.base import ResourceHandle
from infra.errors import ResourceNotFoundError

REGION = "us-east-1"
AMI_ID = "ami-12c6146b"


@pytest.fixture
def aws_credentials(monkeypatch):
    """Fake credentials so nothing can reach a real account."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", REGION)


@pytest.fixture
def clients(aws_credentials):
    with mock_aws():
        yield AwsClients(REGION)


@pytest.fixture
def network(clients):
    """VPC, subnet and security group in the mocked account."""
    ec2 = clients.ec2
    vpc_id = ec2.create_vpc(CidrBlock="10.0.0.0/16")["Vpc"]["VpcId"]
    subnet_id = ec2.create_subnet(VpcId=vpc_id, CidrBlock="10.0.0.0/18")["Subnet"]["SubnetId"]
    sg_id = ec2.create_security_group(GroupName="demo-sg", Description="test", VpcId=vpc_id)["GroupId"]
    return {"vpc_id": vpc_id, "subnet_id": subnet_id, "security_group_id": sg_id}


class FakeHandle(ResourceHandle):
    """In-memory handle that writes every call into a shared journal."""

    kind = "fake"

    def __init__(
        self,
        journal: list,
        name: str,
        resource_id: str = "",
        fail_create: Optional[Exception] = None,
        fail_delete: Optional[Exception] = None,
        states: Optional[list[str]] = None,
    ):
        super().__init__(MagicMock(region=REGION), resource_id)
        self.journal = journal
        self.name = name
        self.fail_create = fail_create
        self.fail_delete = fail_delete
        self.states = list(states or ["available"])

    def create(self) -> str:
        self.journal.append(("create", self.name))
        if self.fail_create:
            raise self.fail_create
        self.id = f"{self.name}-id"
        return self.id

    def describe(self) -> str:
        state = self.states.pop(0) if len(self.states) > 1 else self.states[0]
        self.journal.append(("describe", self.name, state))
        return state

    def delete(self) -> None:
        self.journal.append(("delete", self.name))
        if self.fail_delete:
            raise self.fail_delete


@pytest.fixture
def journal() -> list:
    return []


@pytest.fixture
def full_inventory() -> Inventory:
    return Inventory(
        cluster_name="demo",
        region=REGION,
        vpc_id="vpc-1",
        route_table_id="rtb-1",
        subnet_id="subnet-1",
        internet_gateway_id="igw-1",
        security_group_id="sg-1",
        bucket_id="demo-artifacts-abc",
        node_iam_policy_id="arn:aws:iam::123456789012:policy/demo-node-policy",
        node_iam_role_id="demo-node-role",
        instance_profile_id="demo-profile",
        controller_iam_policy_id="arn:aws:iam::123456789012:policy/demo-controller-policy",
        controller_iam_group_id="demo-controller-group",
        controller_iam_user_id="demo-controller-user",
        access_key_id="AKIAEXAMPLE",
        instance_id="i-0123456789abcdef0",
    )


def not_found(kind: str = "fake", resource_id: str = "x") -> ResourceNotFoundError:
    return ResourceNotFoundError(kind, resource_id)
