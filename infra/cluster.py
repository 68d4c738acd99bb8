"""Create plan for a single-master cluster and the user-data scripts nodes boot with."""

import base64
import logging
import shlex
import uuid
from typing import Callable, Optional

from api.models import ClusterConfig, Inventory, InventoryRole, MachinePoolSpec
from infra.clients import AwsClients
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
)
from infra.pipeline import CreatePipeline, CreateStep, PipelineContext, PipelineResult, WaitStep

logger = logging.getLogger(__name__)

MASTER_MACHINE_TYPE = "boot-master"

# Instance profiles are not usable by RunInstances until IAM has propagated them
DEFAULT_PROFILE_PROPAGATION_SECONDS = 15.0


def _b64(value: str) -> str:
    return base64.b64encode(value.encode()).decode()


def controller_env(secrets: dict[str, str], region: str) -> str:
    """Environment file for the pool controller running on the master."""
    lines = [
        f"AWS_ACCESS_KEY_ID={secrets.get('aws_access_key_id', '')}",
        f"AWS_SECRET_ACCESS_KEY={secrets.get('aws_secret_access_key', '')}",
        f"AWS_REGION={region}",
    ]
    return "\n".join(lines) + "\n"


def master_user_data(
    bucket: str,
    region: str,
    cluster_name: str,
    controller_environment: str = "",
    inventory_json: str = "",
) -> str:
    args = ["bootctl", "boot", "-a", bucket, "-r", region, "-n", cluster_name]
    if controller_environment:
        args += ["--controller-env", _b64(controller_environment)]
    if inventory_json:
        args += ["--inventory", _b64(inventory_json)]
    return "#!/bin/bash\nset -e\n" + shlex.join(args) + "\n"


def worker_user_data(join_command: Optional[str] = None, bucket: str = "", region: str = "") -> str:
    """User-data for a worker: join with an embedded command, or fetch it from the bucket."""
    if join_command:
        args = ["bootctl", "join", "--command", _b64(join_command)]
    else:
        args = ["bootctl", "join", "-a", bucket, "-r", region]
    return "#!/bin/bash\nset -e\n" + shlex.join(args) + "\n"


def bucket_name(cluster_name: str) -> str:
    # bucket names are globally unique and at most 63 characters
    return f"{cluster_name}-artifacts-{uuid.uuid4().hex[:12]}"


def build_cluster_steps(
    config: ClusterConfig,
    machine: MachinePoolSpec,
    clients: AwsClients,
    profile_propagation_seconds: float = DEFAULT_PROFILE_PROPAGATION_SECONDS,
    instance_type: Optional[str] = None,
) -> list:
    name = config.name

    def tags(suffix: str) -> dict[str, str]:
        return {"Name": f"{name}-{suffix}", "Cluster": name, **config.tags}

    def master(ctx: PipelineContext) -> Instance:
        # the access key id is needed later to delete the controller user
        ctx.inventory.access_key_id = ctx.handle(InventoryRole.CONTROLLER_USER).access_key_id
        user_data = master_user_data(
            bucket=ctx.id_of(InventoryRole.ARTIFACT_BUCKET),
            region=config.region,
            cluster_name=name,
            controller_environment=controller_env(ctx.secrets, config.region),
            inventory_json=ctx.inventory.to_json(),
        )
        return Instance(
            clients,
            image_id=machine.image_id,
            subnet_id=ctx.id_of(InventoryRole.SUBNET),
            security_group_id=ctx.id_of(InventoryRole.SECURITY_GROUP),
            instance_profile=ctx.id_of(InventoryRole.INSTANCE_PROFILE),
            cluster_name=name,
            machine_type=MASTER_MACHINE_TYPE,
            name=f"{name}-master",
            key_name=machine.key_name,
            user_data=user_data,
            instance_type=instance_type or machine.instance_type,
        )

    return [
        CreateStep(
            InventoryRole.VPC,
            lambda ctx: Vpc(clients, cidr_block=config.vpc_cidr, tags=tags("vpc")),
        ),
        CreateStep(
            InventoryRole.ROUTE_TABLE,
            lambda ctx: RouteTable(clients, vpc_id=ctx.id_of(InventoryRole.VPC)),
        ),
        CreateStep(
            InventoryRole.SUBNET,
            lambda ctx: Subnet(
                clients,
                vpc_id=ctx.id_of(InventoryRole.VPC),
                cidr_block=config.subnet_cidr,
                tags=tags("subnet"),
            ),
        ),
        CreateStep(
            InventoryRole.INTERNET_GATEWAY,
            lambda ctx: InternetGateway(
                clients,
                vpc_id=ctx.id_of(InventoryRole.VPC),
                route_table_id=ctx.id_of(InventoryRole.ROUTE_TABLE),
                tags=tags("igw"),
            ),
        ),
        CreateStep(
            InventoryRole.SECURITY_GROUP,
            lambda ctx: SecurityGroup(
                clients,
                vpc_id=ctx.id_of(InventoryRole.VPC),
                group_name=f"{name}-security-group",
                tags=tags("security-group"),
            ),
        ),
        CreateStep(
            InventoryRole.ARTIFACT_BUCKET,
            lambda ctx: Bucket(clients, name=bucket_name(name)),
        ),
        CreateStep(
            InventoryRole.NODE_POLICY,
            lambda ctx: IamPolicy(clients, name=f"{name}-node-policy", policy_type="machine"),
        ),
        CreateStep(
            InventoryRole.NODE_ROLE,
            lambda ctx: IamRole(
                clients,
                name=f"{name}-node-role",
                policy_arn=ctx.id_of(InventoryRole.NODE_POLICY),
            ),
        ),
        CreateStep(
            InventoryRole.INSTANCE_PROFILE,
            lambda ctx: InstanceProfile(
                clients,
                name=f"{name}-profile",
                role_name=ctx.id_of(InventoryRole.NODE_ROLE),
            ),
        ),
        CreateStep(
            InventoryRole.CONTROLLER_POLICY,
            lambda ctx: IamPolicy(clients, name=f"{name}-controller-policy", policy_type="controller"),
        ),
        CreateStep(
            InventoryRole.CONTROLLER_GROUP,
            lambda ctx: IamGroup(
                clients,
                name=f"{name}-controller-group",
                policy_arn=ctx.id_of(InventoryRole.CONTROLLER_POLICY),
            ),
        ),
        CreateStep(
            InventoryRole.CONTROLLER_USER,
            lambda ctx: IamUser(
                clients,
                name=f"{name}-controller-user",
                group_name=ctx.id_of(InventoryRole.CONTROLLER_GROUP),
            ),
        ),
        WaitStep(profile_propagation_seconds, "waiting for the instance profile to propagate"),
        CreateStep(InventoryRole.INSTANCE, master),
    ]


def create_cluster(
    config: ClusterConfig,
    machine: MachinePoolSpec,
    clients: AwsClients,
    profile_propagation_seconds: float = DEFAULT_PROFILE_PROPAGATION_SECONDS,
    instance_type: Optional[str] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> PipelineResult:
    """Provision the full cluster; on failure everything created is rolled back."""
    logger.info("Creating cluster %s in %s", config.name, config.region)

    inventory = Inventory(cluster_name=config.name, region=config.region)
    steps = build_cluster_steps(config, machine, clients, profile_propagation_seconds, instance_type)
    pipeline = CreatePipeline(steps, sleep=sleep) if sleep else CreatePipeline(steps)
    result = pipeline.run(inventory)

    logger.info("Cluster %s created, master instance %s", config.name, inventory.instance_id)
    return result
