from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from conftest import AMI_ID
from infra.components import (
    Bucket,
    IamGroup,
    IamPolicy,
    IamRole,
    IamUser,
    Instance,
    InstanceProfile,
    InternetGateway,
    RouteTable,
    SecurityGroup,
    Subnet,
    Vpc,
    list_pool_instances,
)
from infra.errors import ResourceNotFoundError


class TestNetworking:
    def test_vpc_lifecycle(self, clients):
        vpc = Vpc(clients, cidr_block="10.0.0.0/16", tags={"Name": "demo-vpc", "Cluster": "demo"})

        vpc_id = vpc.create()

        assert vpc_id.startswith("vpc-")
        assert vpc.describe() == "available"
        tags = clients.ec2.describe_vpcs(VpcIds=[vpc_id])["Vpcs"][0]["Tags"]
        assert {"Key": "Cluster", "Value": "demo"} in tags

        vpc.delete()
        with pytest.raises(ResourceNotFoundError):
            vpc.describe()

    def test_route_table_is_looked_up_not_created(self, clients):
        vpc_id = Vpc(clients, cidr_block="10.0.0.0/16").create()
        before = len(clients.ec2.describe_route_tables()["RouteTables"])

        table = RouteTable(clients, vpc_id=vpc_id)
        table_id = table.create()

        assert table_id.startswith("rtb-")
        assert len(clients.ec2.describe_route_tables()["RouteTables"]) == before
        table.delete()
        assert table.describe() == table_id

    def test_internet_gateway_is_attached_with_default_route(self, clients):
        vpc_id = Vpc(clients, cidr_block="10.0.0.0/16").create()
        table_id = RouteTable(clients, vpc_id=vpc_id).create()

        igw = InternetGateway(clients, vpc_id=vpc_id, route_table_id=table_id)
        igw_id = igw.create()

        assert igw.describe() == "available"
        routes = clients.ec2.describe_route_tables(RouteTableIds=[table_id])["RouteTables"][0]["Routes"]
        assert any(r.get("GatewayId") == igw_id and r["DestinationCidrBlock"] == "0.0.0.0/0" for r in routes)

        igw.delete()
        assert clients.ec2.describe_internet_gateways(
            Filters=[{"Name": "internet-gateway-id", "Values": [igw_id]}]
        )["InternetGateways"] == []

    def test_security_group_opens_api_server_and_ssh(self, clients):
        vpc_id = Vpc(clients, cidr_block="10.0.0.0/16").create()
        sg = SecurityGroup(clients, vpc_id=vpc_id, group_name="demo-security-group")

        sg_id = sg.create()

        group = clients.ec2.describe_security_groups(GroupIds=[sg_id])["SecurityGroups"][0]
        assert sorted(p["FromPort"] for p in group["IpPermissions"]) == [22, 6443]
        sg.delete()

    def test_subnet_lifecycle(self, clients):
        vpc_id = Vpc(clients, cidr_block="10.0.0.0/16").create()
        subnet = Subnet(clients, vpc_id=vpc_id, cidr_block="10.0.0.0/18")

        subnet.create()

        assert subnet.describe() == "available"
        subnet.delete()
        with pytest.raises(ResourceNotFoundError):
            subnet.delete()


class TestBucket:
    def test_delete_empties_the_bucket_first(self, clients):
        bucket = Bucket(clients, name="demo-artifacts-test")
        bucket.create()
        for index in range(3):
            clients.s3.put_object(Bucket=bucket.id, Key=f"obj-{index}", Body=b"x")

        bucket.delete()

        with pytest.raises(ResourceNotFoundError):
            bucket.describe()

    def test_create_outside_default_region(self, aws_credentials):
        from moto import mock_aws

        from infra.clients import AwsClients

        with mock_aws():
            clients = AwsClients("eu-west-1")
            bucket = Bucket(clients, name="demo-artifacts-eu")
            bucket.create()

            location = clients.s3.get_bucket_location(Bucket=bucket.id)["LocationConstraint"]
            assert location == "eu-west-1"


class TestIam:
    def test_unknown_policy_type_is_rejected(self, clients):
        with pytest.raises(ValueError):
            IamPolicy(clients, name="demo-odd-policy", policy_type="database").create()

    def test_node_role_chain_create_and_delete(self, clients):
        policy = IamPolicy(clients, name="demo-node-policy", policy_type="machine")
        policy_arn = policy.create()
        role = IamRole(clients, name="demo-node-role", policy_arn=policy_arn)
        role.create()
        profile = InstanceProfile(clients, name="demo-profile", role_name=role.id)
        profile.create()

        assert policy_arn.startswith("arn:aws:iam::")
        assert profile.describe() == "ready"
        attached = clients.iam.list_attached_role_policies(RoleName=role.id)["AttachedPolicies"]
        assert [p["PolicyArn"] for p in attached] == [policy_arn]

        profile.delete()
        role.delete()
        policy.delete()
        with pytest.raises(ResourceNotFoundError):
            role.describe()
        with pytest.raises(ResourceNotFoundError):
            profile.describe()

    def test_controller_user_exposes_credentials_only_as_secrets(self, clients):
        policy_arn = IamPolicy(clients, name="demo-controller-policy", policy_type="controller").create()
        group = IamGroup(clients, name="demo-controller-group", policy_arn=policy_arn)
        group.create()
        user = IamUser(clients, name="demo-controller-user", group_name=group.id)

        user.create()

        secrets = user.secrets()
        assert secrets["aws_access_key_id"] == user.access_key_id
        assert secrets["aws_secret_access_key"]
        groups = clients.iam.list_groups_for_user(UserName=user.id)["Groups"]
        assert [g["GroupName"] for g in groups] == ["demo-controller-group"]

        rebuilt = IamUser(clients, group_name=group.id, access_key_id=user.access_key_id, resource_id=user.id)
        assert rebuilt.secrets() == {}
        rebuilt.delete()
        group.delete()
        with pytest.raises(ResourceNotFoundError):
            rebuilt.describe()


class TestInstances:
    def _launch(self, clients, network, machine_type="worker", cluster="demo"):
        instance = Instance(
            clients,
            image_id=AMI_ID,
            subnet_id=network["subnet_id"],
            security_group_id=network["security_group_id"],
            cluster_name=cluster,
            machine_type=machine_type,
            name=f"{cluster}-{machine_type}",
            user_data="#!/bin/bash\necho hi\n",
        )
        instance.create()
        return instance

    def test_instance_is_tagged_for_its_pool(self, clients, network):
        instance = self._launch(clients, network)

        reply = clients.ec2.describe_instances(InstanceIds=[instance.id])
        tags = {t["Key"]: t["Value"] for t in reply["Reservations"][0]["Instances"][0]["Tags"]}
        assert tags == {"Name": "demo-worker", "Cluster": "demo", "MachineType": "worker"}
        assert instance.describe() in ("pending", "running")

    def test_list_pool_counts_only_live_matching_instances(self, clients, network):
        live = [self._launch(clients, network) for _ in range(2)]
        gone = self._launch(clients, network)
        self._launch(clients, network, machine_type="boot-master")
        self._launch(clients, network, cluster="other")

        gone.delete()

        assert sorted(list_pool_instances(clients, "demo", "worker")) == sorted(i.id for i in live)
        assert gone.describe() == "terminated"


def _client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class TestDeleteAfterPartialTeardown:
    def test_profile_deleted_when_role_already_removed(self):
        clients = MagicMock(region="us-east-1")
        clients.iam.remove_role_from_instance_profile.side_effect = _client_error(
            "NoSuchEntity", "RemoveRoleFromInstanceProfile"
        )

        InstanceProfile(clients, role_name="demo-node-role", resource_id="demo-profile").delete()

        clients.iam.delete_instance_profile.assert_called_once_with(InstanceProfileName="demo-profile")

    def test_gateway_deleted_when_already_detached(self):
        clients = MagicMock(region="us-east-1")
        clients.ec2.detach_internet_gateway.side_effect = _client_error(
            "Gateway.NotAttached", "DetachInternetGateway"
        )

        InternetGateway(clients, vpc_id="vpc-1", resource_id="igw-1").delete()

        clients.ec2.delete_internet_gateway.assert_called_once_with(InternetGatewayId="igw-1")

    def test_missing_object_is_still_reported_gone(self):
        clients = MagicMock(region="us-east-1")
        clients.iam.delete_access_key.side_effect = _client_error("NoSuchEntity", "DeleteAccessKey")
        clients.iam.remove_user_from_group.side_effect = _client_error("NoSuchEntity", "RemoveUserFromGroup")
        clients.iam.delete_user.side_effect = _client_error("NoSuchEntity", "DeleteUser")
        user = IamUser(clients, group_name="demo-group", access_key_id="AKIA", resource_id="demo-user")

        with pytest.raises(ResourceNotFoundError):
            user.delete()

    def test_other_detach_errors_propagate(self):
        clients = MagicMock(region="us-east-1")
        clients.ec2.detach_internet_gateway.side_effect = _client_error(
            "DependencyViolation", "DetachInternetGateway"
        )

        with pytest.raises(ClientError):
            InternetGateway(clients, vpc_id="vpc-1", resource_id="igw-1").delete()

        clients.ec2.delete_internet_gateway.assert_not_called()
