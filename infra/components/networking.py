from typing import Optional

from infra.clients import AwsClients
from infra.components.base import ResourceHandle

# Kubernetes API server and SSH
MASTER_INGRESS_PORTS = (6443, 22)


class Vpc(ResourceHandle):
    """VPC holding all cluster networking."""

    kind = "vpc"

    def __init__(
        self,
        clients: AwsClients,
        cidr_block: str = "",
        tags: Optional[dict[str, str]] = None,
        resource_id: str = "",
    ):
        super().__init__(clients, resource_id)
        self.cidr_block = cidr_block
        self.tags = tags or {}

    def create(self) -> str:
        reply = self.clients.ec2.create_vpc(
            CidrBlock=self.cidr_block,
            TagSpecifications=self._tag_specifications("vpc", self.tags),
        )
        self.id = reply["Vpc"]["VpcId"]
        return self.id

    def describe(self) -> str:
        with self._not_found_as_error():
            reply = self.clients.ec2.describe_vpcs(VpcIds=[self.id])
        return reply["Vpcs"][0]["State"]

    def delete(self) -> None:
        with self._not_found_as_error():
            self.clients.ec2.delete_vpc(VpcId=self.id)


class RouteTable(ResourceHandle):
    """Main route table of a VPC.

    AWS creates it together with the VPC, so "create" only looks it up and
    "delete" is a no-op: the table goes away with the VPC.
    """

    kind = "route table"

    def __init__(self, clients: AwsClients, vpc_id: str = "", resource_id: str = ""):
        super().__init__(clients, resource_id)
        self.vpc_id = vpc_id

    def create(self) -> str:
        self.id = self.describe()
        return self.id

    def describe(self) -> str:
        reply = self.clients.ec2.describe_route_tables(
            Filters=[{"Name": "vpc-id", "Values": [self.vpc_id]}]
        )
        tables = reply.get("RouteTables", [])
        if not tables:
            raise ValueError(f"No route table found for VPC {self.vpc_id}")

        for table in tables:
            if any(assoc.get("Main") for assoc in table.get("Associations", [])):
                return table["RouteTableId"]
        return tables[0]["RouteTableId"]

    def delete(self) -> None:
        return None


class Subnet(ResourceHandle):
    """Single subnet the master and workers are launched into."""

    kind = "subnet"

    def __init__(
        self,
        clients: AwsClients,
        vpc_id: str = "",
        cidr_block: str = "",
        tags: Optional[dict[str, str]] = None,
        resource_id: str = "",
    ):
        super().__init__(clients, resource_id)
        self.vpc_id = vpc_id
        self.cidr_block = cidr_block
        self.tags = tags or {}

    def create(self) -> str:
        reply = self.clients.ec2.create_subnet(
            VpcId=self.vpc_id,
            CidrBlock=self.cidr_block,
            TagSpecifications=self._tag_specifications("subnet", self.tags),
        )
        self.id = reply["Subnet"]["SubnetId"]
        return self.id

    def describe(self) -> str:
        with self._not_found_as_error():
            reply = self.clients.ec2.describe_subnets(SubnetIds=[self.id])
        return reply["Subnets"][0]["State"]

    def delete(self) -> None:
        with self._not_found_as_error():
            self.clients.ec2.delete_subnet(SubnetId=self.id)


class InternetGateway(ResourceHandle):
    """Internet gateway attached to the VPC with a default route in the route table."""

    kind = "internet gateway"

    def __init__(
        self,
        clients: AwsClients,
        vpc_id: str = "",
        route_table_id: str = "",
        tags: Optional[dict[str, str]] = None,
        resource_id: str = "",
    ):
        super().__init__(clients, resource_id)
        self.vpc_id = vpc_id
        self.route_table_id = route_table_id
        self.tags = tags or {}

    def create(self) -> str:
        ec2 = self.clients.ec2
        reply = ec2.create_internet_gateway(
            TagSpecifications=self._tag_specifications("internet-gateway", self.tags),
        )
        self.id = reply["InternetGateway"]["InternetGatewayId"]

        ec2.attach_internet_gateway(InternetGatewayId=self.id, VpcId=self.vpc_id)
        ec2.create_route(
            DestinationCidrBlock="0.0.0.0/0",
            GatewayId=self.id,
            RouteTableId=self.route_table_id,
        )
        return self.id

    def describe(self) -> str:
        with self._not_found_as_error():
            reply = self.clients.ec2.describe_internet_gateways(InternetGatewayIds=[self.id])
        attachments = reply["InternetGateways"][0].get("Attachments", [])
        if not attachments:
            return "detached"
        return attachments[0]["State"]

    def delete(self) -> None:
        ec2 = self.clients.ec2
        if self.vpc_id:
            with self._detach_step("VPC attachment"):
                ec2.detach_internet_gateway(InternetGatewayId=self.id, VpcId=self.vpc_id)
        with self._not_found_as_error():
            ec2.delete_internet_gateway(InternetGatewayId=self.id)


class SecurityGroup(ResourceHandle):
    """Security group for cluster nodes, open on the API server and SSH ports."""

    kind = "security group"

    def __init__(
        self,
        clients: AwsClients,
        vpc_id: str = "",
        group_name: str = "",
        description: str = "Kubernetes bootstrap master security group",
        tags: Optional[dict[str, str]] = None,
        resource_id: str = "",
    ):
        super().__init__(clients, resource_id)
        self.vpc_id = vpc_id
        self.group_name = group_name
        self.description = description
        self.tags = tags or {}

    def create(self) -> str:
        ec2 = self.clients.ec2
        reply = ec2.create_security_group(
            GroupName=self.group_name,
            Description=self.description,
            VpcId=self.vpc_id,
            TagSpecifications=self._tag_specifications("security-group", self.tags),
        )
        self.id = reply["GroupId"]

        ec2.authorize_security_group_ingress(
            GroupId=self.id,
            IpPermissions=[
                {
                    "IpProtocol": "tcp",
                    "FromPort": port,
                    "ToPort": port,
                    "IpRanges": [{"CidrIp": "0.0.0.0/0"}],
                }
                for port in MASTER_INGRESS_PORTS
            ],
        )
        return self.id

    def describe(self) -> str:
        with self._not_found_as_error():
            self.clients.ec2.describe_security_groups(GroupIds=[self.id])
        return "available"

    def delete(self) -> None:
        with self._not_found_as_error():
            self.clients.ec2.delete_security_group(GroupId=self.id)
