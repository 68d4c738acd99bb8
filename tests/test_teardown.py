import pytest

from api.models import ROLE_ORDER, Inventory, InventoryRole
from conftest import REGION, FakeHandle
from infra.components import IamGroup, IamPolicy, IamRole, IamUser, Instance, InstanceProfile, InternetGateway
from infra.errors import ReadinessTimeoutError, ResourceNotFoundError, TeardownError
from infra.teardown import TeardownPipeline, handle_for_role


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


def _factory(journal, instance_states=None, fail_delete=None):
    def build(role, inventory, clients):
        return FakeHandle(
            journal,
            role.value,
            resource_id=inventory.get(role),
            states=instance_states if role == InventoryRole.INSTANCE else None,
            fail_delete=(fail_delete or {}).get(role),
        )

    return build


class TestTeardownPipeline:
    def test_deletes_in_exact_reverse_order(self, journal, full_inventory):
        clock = FakeClock()
        pipeline = TeardownPipeline(
            full_inventory,
            clients=None,
            sleep=clock.sleep,
            clock=clock,
            handle_factory=_factory(journal, instance_states=["terminated"]),
        )

        deleted = pipeline.run()

        assert deleted == list(reversed(ROLE_ORDER))
        deletes = [entry[1] for entry in journal if entry[0] == "delete"]
        assert deletes == [role.value for role in reversed(ROLE_ORDER)]

    def test_waits_for_termination_before_deleting_network(self, journal, full_inventory):
        clock = FakeClock()
        pipeline = TeardownPipeline(
            full_inventory,
            clients=None,
            poll_interval=5,
            sleep=clock.sleep,
            clock=clock,
            handle_factory=_factory(journal, instance_states=["shutting-down", "shutting-down", "terminated"]),
        )

        pipeline.run()

        terminated_at = journal.index(("describe", "instance", "terminated"))
        first_network_delete = journal.index(("delete", "security_group"))
        assert terminated_at < first_network_delete
        assert clock.now == 10

    def test_termination_timeout(self, journal, full_inventory):
        clock = FakeClock()
        pipeline = TeardownPipeline(
            full_inventory,
            clients=None,
            poll_interval=5,
            timeout=20,
            sleep=clock.sleep,
            clock=clock,
            handle_factory=_factory(journal, instance_states=["shutting-down"]),
        )

        with pytest.raises(ReadinessTimeoutError) as exc_info:
            pipeline.run()

        assert exc_info.value.expected == "terminated"
        assert all(entry[0] != "delete" or entry[1] == "instance" for entry in journal)

    def test_fails_fast_on_delete_error(self, journal, full_inventory):
        cause = RuntimeError("DependencyViolation")
        pipeline = TeardownPipeline(
            full_inventory,
            clients=None,
            handle_factory=_factory(
                journal,
                instance_states=["terminated"],
                fail_delete={InventoryRole.INTERNET_GATEWAY: cause},
            ),
        )

        with pytest.raises(TeardownError) as exc_info:
            pipeline.run()

        assert exc_info.value.role == "internet_gateway"
        assert exc_info.value.__cause__ is cause
        deletes = [entry[1] for entry in journal if entry[0] == "delete"]
        assert deletes[-1] == "internet_gateway"
        assert "subnet" not in deletes
        assert "vpc" not in deletes

    def test_already_deleted_resources_are_skipped(self, journal, full_inventory):
        pipeline = TeardownPipeline(
            full_inventory,
            clients=None,
            handle_factory=_factory(
                journal,
                instance_states=["terminated"],
                fail_delete={InventoryRole.ARTIFACT_BUCKET: ResourceNotFoundError("bucket", "gone")},
            ),
        )

        deleted = pipeline.run()

        assert InventoryRole.ARTIFACT_BUCKET in deleted
        assert deleted[-1] == InventoryRole.VPC

    def test_empty_roles_are_skipped(self, journal, full_inventory):
        full_inventory.instance_id = ""
        full_inventory.controller_iam_user_id = ""

        deleted = TeardownPipeline(full_inventory, clients=None, handle_factory=_factory(journal)).run()

        assert InventoryRole.INSTANCE not in deleted
        assert InventoryRole.CONTROLLER_USER not in deleted
        assert not any(entry[0] == "describe" for entry in journal)
        assert len(deleted) == len(ROLE_ORDER) - 2


class TestHandleForRole:
    def test_handles_carry_what_delete_needs(self, full_inventory):
        clients = object()

        user = handle_for_role(InventoryRole.CONTROLLER_USER, full_inventory, clients)
        group = handle_for_role(InventoryRole.CONTROLLER_GROUP, full_inventory, clients)
        role = handle_for_role(InventoryRole.NODE_ROLE, full_inventory, clients)
        profile = handle_for_role(InventoryRole.INSTANCE_PROFILE, full_inventory, clients)
        igw = handle_for_role(InventoryRole.INTERNET_GATEWAY, full_inventory, clients)
        instance = handle_for_role(InventoryRole.INSTANCE, full_inventory, clients)

        assert isinstance(user, IamUser)
        assert user.access_key_id == "AKIAEXAMPLE"
        assert user.group_name == "demo-controller-group"
        assert isinstance(group, IamGroup)
        assert group.policy_arn == full_inventory.controller_iam_policy_id
        assert isinstance(role, IamRole)
        assert role.policy_arn == full_inventory.node_iam_policy_id
        assert isinstance(profile, InstanceProfile)
        assert profile.role_name == "demo-node-role"
        assert isinstance(igw, InternetGateway)
        assert igw.vpc_id == "vpc-1"
        assert isinstance(instance, Instance)
        assert instance.id == "i-0123456789abcdef0"


class TestRerunAfterPartialTeardown:
    def _controller_chain(self, clients) -> Inventory:
        policy_arn = IamPolicy(clients, name="demo-controller-policy", policy_type="controller").create()
        group_name = IamGroup(clients, name="demo-controller-group", policy_arn=policy_arn).create()
        user = IamUser(clients, name="demo-controller-user", group_name=group_name)
        user.create()
        return Inventory(
            cluster_name="demo",
            region=REGION,
            controller_iam_policy_id=policy_arn,
            controller_iam_group_id=group_name,
            controller_iam_user_id=user.id,
            access_key_id=user.access_key_id,
        )

    def _assert_controller_chain_gone(self, clients):
        assert clients.iam.list_users()["Users"] == []
        assert clients.iam.list_groups()["Groups"] == []
        assert clients.iam.list_policies(Scope="Local")["Policies"] == []

    def test_user_deleted_when_access_key_already_gone(self, clients):
        inventory = self._controller_chain(clients)
        clients.iam.delete_access_key(UserName="demo-controller-user", AccessKeyId=inventory.access_key_id)

        deleted = TeardownPipeline(inventory, clients).run()

        assert deleted == [
            InventoryRole.CONTROLLER_USER,
            InventoryRole.CONTROLLER_GROUP,
            InventoryRole.CONTROLLER_POLICY,
        ]
        self._assert_controller_chain_gone(clients)

    def test_user_and_group_deleted_when_memberships_already_undone(self, clients):
        inventory = self._controller_chain(clients)
        iam = clients.iam
        iam.delete_access_key(UserName="demo-controller-user", AccessKeyId=inventory.access_key_id)
        iam.remove_user_from_group(GroupName="demo-controller-group", UserName="demo-controller-user")
        iam.detach_group_policy(GroupName="demo-controller-group", PolicyArn=inventory.controller_iam_policy_id)

        TeardownPipeline(inventory, clients).run()

        self._assert_controller_chain_gone(clients)

    def test_role_deleted_when_policy_already_detached(self, clients):
        policy_arn = IamPolicy(clients, name="demo-node-policy", policy_type="machine").create()
        role_name = IamRole(clients, name="demo-node-role", policy_arn=policy_arn).create()
        profile_name = InstanceProfile(clients, name="demo-profile", role_name=role_name).create()
        clients.iam.detach_role_policy(RoleName=role_name, PolicyArn=policy_arn)
        inventory = Inventory(
            cluster_name="demo",
            region=REGION,
            node_iam_policy_id=policy_arn,
            node_iam_role_id=role_name,
            instance_profile_id=profile_name,
        )

        deleted = TeardownPipeline(inventory, clients).run()

        assert deleted == [InventoryRole.INSTANCE_PROFILE, InventoryRole.NODE_ROLE, InventoryRole.NODE_POLICY]
        assert clients.iam.list_roles()["Roles"] == []
        assert clients.iam.list_instance_profiles()["InstanceProfiles"] == []

    def test_second_run_after_full_teardown_succeeds(self, clients):
        inventory = self._controller_chain(clients)
        TeardownPipeline(inventory, clients).run()

        deleted = TeardownPipeline(inventory, clients).run()

        assert len(deleted) == 3
        self._assert_controller_chain_gone(clients)
