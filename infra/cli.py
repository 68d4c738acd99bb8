"""bootctl command line.

    bootctl create -c cluster.yaml -m machine.yaml [-o inventory.json]
    bootctl destroy -i inventory.json
    bootctl boot -a <bucket> -r <region> -n <cluster>
    bootctl join -a <bucket> -r <region>
"""

import argparse
import base64
import binascii
import logging
import sys
from typing import Optional

from api.settings import get_settings
from infra.artifacts import ArtifactStore
from infra.clients import AwsClients
from infra.cluster import create_cluster
from infra.config import load_cluster_config, load_inventory, load_machine_spec, write_inventory
from infra.errors import BootctlError
from infra.node import NodeBootstrapper
from infra.teardown import TeardownPipeline

logger = logging.getLogger("bootctl")


def _decode(value: Optional[str], flag: str) -> str:
    if not value:
        return ""
    try:
        return base64.b64decode(value, validate=True).decode()
    except (binascii.Error, UnicodeDecodeError) as e:
        raise ValueError(f"{flag} must be base64 encoded: {e}") from e


def _clients(region: str) -> AwsClients:
    settings = get_settings()
    return AwsClients(region, role_arn=settings.aws_role_arn, external_id=settings.aws_external_id)


def cmd_create(args: argparse.Namespace) -> None:
    settings = get_settings()
    config = load_cluster_config(args.cluster_config)
    machine = load_machine_spec(args.machine_config)

    result = create_cluster(
        config,
        machine,
        _clients(config.region),
        profile_propagation_seconds=settings.profile_propagation_seconds,
    )

    if args.output:
        write_inventory(result.inventory, args.output)
    else:
        print(result.inventory.to_json())


def cmd_destroy(args: argparse.Namespace) -> None:
    settings = get_settings()
    inventory = load_inventory(args.inventory)

    TeardownPipeline(
        inventory,
        _clients(inventory.region),
        poll_interval=settings.termination_poll_seconds,
        timeout=settings.termination_timeout_seconds,
    ).run()
    logger.info("Cluster %s destroyed", inventory.cluster_name or inventory.vpc_id)


def cmd_boot(args: argparse.Namespace) -> None:
    settings = get_settings()
    artifacts = ArtifactStore(_clients(args.region), args.artifacts)
    NodeBootstrapper(artifacts, admin_user=settings.admin_user, state_dir=args.state_dir).boot(
        args.cluster,
        controller_env=_decode(args.controller_env, "--controller-env"),
        inventory_json=_decode(args.inventory, "--inventory"),
    )


def cmd_join(args: argparse.Namespace) -> None:
    join_command = _decode(args.command, "--command")
    if join_command:
        NodeBootstrapper().join(join_command)
        return

    if not args.artifacts or not args.region:
        raise ValueError("'--artifacts' and '--region' are required when no --command is given")
    NodeBootstrapper(ArtifactStore(_clients(args.region), args.artifacts)).join()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bootctl",
        description="Bootstrap single-master Kubernetes clusters on AWS",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command_name", required=True)

    create = sub.add_parser("create", help="Create a new cluster")
    create.add_argument("-c", "--cluster-config", required=True, help="Cluster config file (YAML/JSON)")
    create.add_argument("-m", "--machine-config", required=True, help="Master machine config file (YAML/JSON)")
    create.add_argument("-o", "--output", help="Write the inventory here instead of stdout")
    create.set_defaults(func=cmd_create)

    destroy = sub.add_parser("destroy", help="Destroy a cluster's infrastructure")
    destroy.add_argument("-i", "--inventory", required=True, help="Inventory file written by create")
    destroy.set_defaults(func=cmd_destroy)

    boot = sub.add_parser("boot", help="Boot a new Kubernetes master node")
    boot.add_argument("-a", "--artifacts", required=True, help="Artifacts bucket")
    boot.add_argument("-r", "--region", required=True, help="AWS region")
    boot.add_argument("-n", "--cluster", required=True, help="Cluster name")
    boot.add_argument("--controller-env", help="Base64 controller environment file")
    boot.add_argument("--inventory", help="Base64 inventory JSON")
    boot.add_argument("--state-dir", default="/etc/bootctl", help="Where controller state is written")
    boot.set_defaults(func=cmd_boot)

    join = sub.add_parser("join", help="Join a worker node to the cluster")
    join.add_argument("-a", "--artifacts", help="Artifacts bucket")
    join.add_argument("-r", "--region", help="AWS region")
    join.add_argument("--command", help="Base64 join command")
    join.set_defaults(func=cmd_join)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    try:
        args.func(args)
    except (BootctlError, ValueError) as e:
        logger.error("%s failed: %s", args.command_name, e)
        if isinstance(e, ValueError):
            logger.error("'bootctl %s -h' for help message", args.command_name)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
