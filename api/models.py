import ipaddress
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from infra.errors import InventoryOrderError


class ClusterStatus(str, Enum):
    """Lifecycle status of a cluster managed by the controller service."""

    PENDING = "pending"
    CREATING = "creating"
    READY = "ready"
    FAILED = "failed"
    DESTROYING = "destroying"
    DESTROYED = "destroyed"


class InventoryRole(str, Enum):
    """Logical resource roles, in creation dependency order."""

    VPC = "vpc"
    ROUTE_TABLE = "route_table"
    SUBNET = "subnet"
    INTERNET_GATEWAY = "internet_gateway"
    SECURITY_GROUP = "security_group"
    ARTIFACT_BUCKET = "artifact_bucket"
    NODE_POLICY = "node_policy"
    NODE_ROLE = "node_role"
    INSTANCE_PROFILE = "instance_profile"
    CONTROLLER_POLICY = "controller_policy"
    CONTROLLER_GROUP = "controller_group"
    CONTROLLER_USER = "controller_user"
    INSTANCE = "instance"


# Enum definition order is the dependency order
ROLE_ORDER: tuple[InventoryRole, ...] = tuple(InventoryRole)

ROLE_FIELDS: dict[InventoryRole, str] = {
    InventoryRole.VPC: "vpc_id",
    InventoryRole.ROUTE_TABLE: "route_table_id",
    InventoryRole.SUBNET: "subnet_id",
    InventoryRole.INTERNET_GATEWAY: "internet_gateway_id",
    InventoryRole.SECURITY_GROUP: "security_group_id",
    InventoryRole.ARTIFACT_BUCKET: "bucket_id",
    InventoryRole.NODE_POLICY: "node_iam_policy_id",
    InventoryRole.NODE_ROLE: "node_iam_role_id",
    InventoryRole.INSTANCE_PROFILE: "instance_profile_id",
    InventoryRole.CONTROLLER_POLICY: "controller_iam_policy_id",
    InventoryRole.CONTROLLER_GROUP: "controller_iam_group_id",
    InventoryRole.CONTROLLER_USER: "controller_iam_user_id",
    InventoryRole.INSTANCE: "instance_id",
}


class Inventory(BaseModel):
    """Durable record linking logical resource roles to provider ids.

    Serialized as one flat camelCase JSON object. It is the only record of
    what a create run left behind, so teardown reads it back verbatim.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    cluster_name: str = ""
    region: str

    vpc_id: str = ""
    route_table_id: str = ""
    subnet_id: str = ""
    internet_gateway_id: str = ""
    security_group_id: str = ""
    bucket_id: str = ""
    node_iam_policy_id: str = ""
    node_iam_role_id: str = ""
    instance_profile_id: str = ""
    controller_iam_policy_id: str = ""
    controller_iam_group_id: str = ""
    controller_iam_user_id: str = ""
    access_key_id: str = ""
    instance_id: str = ""

    def get(self, role: InventoryRole) -> str:
        return getattr(self, ROLE_FIELDS[role])

    def record(self, role: InventoryRole, resource_id: str) -> None:
        """Record the id of a created resource, enforcing dependency order."""
        for earlier in ROLE_ORDER[: ROLE_ORDER.index(role)]:
            if not self.get(earlier):
                raise InventoryOrderError(
                    f"Cannot record {role.value} before {earlier.value} is populated"
                )
        setattr(self, ROLE_FIELDS[role], resource_id)

    def populated_roles(self) -> list[InventoryRole]:
        return [role for role in ROLE_ORDER if self.get(role)]

    @property
    def complete(self) -> bool:
        return all(self.get(role) for role in ROLE_ORDER)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)


class ClusterConfig(BaseModel):
    """Cluster definition loaded from the cluster config file."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str = Field(..., pattern=r"^[a-z0-9-]+$", min_length=3, max_length=40)
    region: str = Field(default="us-east-1")
    vpc_cidr: str = Field(default="10.0.0.0/16")
    subnet_cidr: str = Field(default="10.0.0.0/18")
    tags: dict[str, str] = Field(default_factory=dict)

    @field_validator("vpc_cidr", "subnet_cidr")
    @classmethod
    def validate_cidr(cls, v: str) -> str:
        try:
            ipaddress.ip_network(v, strict=False)
        except ValueError as e:
            raise ValueError(f"Invalid CIDR block: {e}") from e
        return v

    @model_validator(mode="after")
    def validate_subnet_in_vpc(self) -> "ClusterConfig":
        vpc = ipaddress.IPv4Network(self.vpc_cidr, strict=False)
        subnet = ipaddress.IPv4Network(self.subnet_cidr, strict=False)
        if not subnet.subnet_of(vpc):
            raise ValueError(f"Subnet CIDR {self.subnet_cidr} is not within VPC CIDR {self.vpc_cidr}")
        return self


class MachinePoolSpec(BaseModel):
    """Desired state of a pool of machines sharing a machine type tag."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str = Field(..., pattern=r"^[a-z0-9-]+$")
    machine_type: str = Field(..., min_length=1, description="Value of the MachineType tag")
    replicas: int = Field(default=1, ge=0, le=100)
    image_id: str = Field(..., min_length=1)
    key_name: str = Field(default="")
    instance_type: str = Field(default="t2.medium")


class ObservedPool(BaseModel):
    """Live view of a pool, recomputed on every reconciliation pass."""

    cluster: str
    machine_type: str
    instance_ids: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def count(self) -> int:
        return len(self.instance_ids)


class ReconcileAction(str, Enum):
    """Outcome of a single reconciliation pass."""

    SCALED_UP = "scaled_up"
    IN_SYNC = "in_sync"
    SCALE_DOWN_UNSUPPORTED = "scale_down_unsupported"
    IGNORED = "ignored"
    FAILED = "failed"


class ReconcileResult(BaseModel):
    """What a reconciliation pass observed and did."""

    pool: str
    desired: int
    actual: int
    action: ReconcileAction
    created_instance_ids: list[str] = Field(default_factory=list)
    error: Optional[str] = None


class ClusterCreateRequest(BaseModel):
    """Request body for creating a cluster through the controller service."""

    cluster: ClusterConfig
    machine: MachinePoolSpec


class DestroyRequest(BaseModel):
    """Request model for destroying a cluster."""

    confirm: bool = Field(..., description="Must be true to confirm destruction")

    @field_validator("confirm")
    @classmethod
    def validate_confirm(cls, v: bool) -> bool:
        if not v:
            raise ValueError("confirm must be true to destroy infrastructure")
        return v


class ClusterResponse(BaseModel):
    """Cluster operation status."""

    name: str
    region: str
    status: ClusterStatus
    message: str = ""
    inventory: Optional[dict] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ClusterListResponse(BaseModel):
    clusters: list[ClusterResponse]
    total: int


class MachinePoolResponse(BaseModel):
    """Desired and observed state of a machine pool."""

    cluster: str
    spec: MachinePoolSpec
    observed: Optional[ObservedPool] = None
    reconcile: Optional[ReconcileResult] = None


class MachinePoolListResponse(BaseModel):
    """Desired specs of every pool stored for a cluster."""

    cluster: str
    pools: list[MachinePoolSpec]
    total: int


class MachinePoolEvent(BaseModel):
    """Desired-state-changed notification from an external watcher."""

    cluster: str
    pool: str
