from infra.components.base import ResourceHandle
from infra.components.iam import IamGroup, IamPolicy, IamRole, IamUser, InstanceProfile
from infra.components.instances import Instance, list_pool_instances
from infra.components.networking import InternetGateway, RouteTable, SecurityGroup, Subnet, Vpc
from infra.components.storage import Bucket

__all__ = [
    "Bucket",
    "IamGroup",
    "IamPolicy",
    "IamRole",
    "IamUser",
    "Instance",
    "InstanceProfile",
    "InternetGateway",
    "ResourceHandle",
    "RouteTable",
    "SecurityGroup",
    "Subnet",
    "Vpc",
    "list_pool_instances",
]
