import logging

from infra.clients import AwsClients
from infra.components.base import ResourceHandle
from infra.errors import ResourceNotFoundError

logger = logging.getLogger(__name__)

# EC2 state codes: 0 pending, 16 running, 32 shutting-down, 48 terminated,
# 64 stopping, 80 stopped. Anything below 17 counts towards a pool.
LIVE_STATE_CODE_LIMIT = 17

DEFAULT_INSTANCE_TYPE = "t2.medium"

CLUSTER_TAG = "Cluster"
MACHINE_TYPE_TAG = "MachineType"


def pool_tags(cluster_name: str, machine_type: str) -> dict[str, str]:
    """Tags that make an instance count towards a (cluster, machine type) pool."""
    return {CLUSTER_TAG: cluster_name, MACHINE_TYPE_TAG: machine_type}


class Instance(ResourceHandle):
    """A single compute instance launched into the cluster subnet."""

    kind = "instance"

    def __init__(
        self,
        clients: AwsClients,
        image_id: str = "",
        subnet_id: str = "",
        security_group_id: str = "",
        instance_profile: str = "",
        cluster_name: str = "",
        machine_type: str = "",
        name: str = "",
        key_name: str = "",
        user_data: str = "",
        instance_type: str = DEFAULT_INSTANCE_TYPE,
        resource_id: str = "",
    ):
        super().__init__(clients, resource_id)
        self.image_id = image_id
        self.subnet_id = subnet_id
        self.security_group_id = security_group_id
        self.instance_profile = instance_profile
        self.cluster_name = cluster_name
        self.machine_type = machine_type
        self.name = name
        self.key_name = key_name
        self.user_data = user_data
        self.instance_type = instance_type

    @property
    def tags(self) -> dict[str, str]:
        return {"Name": self.name, **pool_tags(self.cluster_name, self.machine_type)}

    def create(self) -> str:
        params: dict = {
            "ImageId": self.image_id,
            "InstanceType": self.instance_type,
            "MinCount": 1,
            "MaxCount": 1,
            "NetworkInterfaces": [
                {
                    "DeviceIndex": 0,
                    "AssociatePublicIpAddress": True,
                    "SubnetId": self.subnet_id,
                    "Groups": [self.security_group_id],
                    "DeleteOnTermination": True,
                }
            ],
            "TagSpecifications": self._tag_specifications("instance", self.tags),
        }
        if self.key_name:
            params["KeyName"] = self.key_name
        if self.user_data:
            # boto3 base64-encodes UserData for RunInstances
            params["UserData"] = self.user_data
        if self.instance_profile:
            params["IamInstanceProfile"] = {"Name": self.instance_profile}

        reply = self.clients.ec2.run_instances(**params)
        self.id = reply["Instances"][0]["InstanceId"]
        return self.id

    def describe(self) -> str:
        with self._not_found_as_error():
            reply = self.clients.ec2.describe_instances(InstanceIds=[self.id])

        for reservation in reply.get("Reservations", []):
            for instance in reservation.get("Instances", []):
                return instance["State"]["Name"]
        raise ResourceNotFoundError(self.kind, self.id)

    def delete(self) -> None:
        with self._not_found_as_error():
            self.clients.ec2.terminate_instances(InstanceIds=[self.id])


def list_pool_instances(clients: AwsClients, cluster_name: str, machine_type: str) -> list[str]:
    """List ids of pending/running instances carrying the pool tags."""
    paginator = clients.ec2.get_paginator("describe_instances")
    filters = [
        {"Name": f"tag:{key}", "Values": [value]}
        for key, value in pool_tags(cluster_name, machine_type).items()
    ]

    live: list[str] = []
    for page in paginator.paginate(Filters=filters):
        for reservation in page.get("Reservations", []):
            for instance in reservation.get("Instances", []):
                # the high byte of the state code is reserved for internal use
                code = instance["State"]["Code"] & 0xFF
                if code < LIVE_STATE_CODE_LIMIT:
                    logger.debug("Found pending/running instance %s", instance["InstanceId"])
                    live.append(instance["InstanceId"])
                else:
                    logger.debug(
                        "Found instance %s in state %s",
                        instance["InstanceId"],
                        instance["State"]["Name"],
                    )
    return live
