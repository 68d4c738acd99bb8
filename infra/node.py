"""Node bootstrap sequences run on the instances themselves.

``boot`` initializes the control plane on the master, publishes the join
command and starts the machine pool controller; ``join`` runs that command
on a worker. Both shell out to kubeadm, kubectl and systemctl, so the
external commands go through an injectable runner.
"""

import logging
import os
import pwd
import shutil
import subprocess
from pathlib import Path
from typing import Callable, Optional

from api.models import Inventory
from api.storage import FileInventoryStorage
from infra.artifacts import ArtifactStore
from infra.errors import NodeBootstrapError

logger = logging.getLogger(__name__)

KUBEADM = "/usr/bin/kubeadm"
KUBECTL = "/usr/bin/kubectl"
ADMIN_KUBECONFIG = "/etc/kubernetes/admin.conf"
NETWORK_MANIFEST = "/etc/kubernetes/network/network.yaml"
POD_NETWORK_CIDR = "192.168.0.0/16"
DEFAULT_STATE_DIR = "/etc/bootctl"
DEFAULT_UNIT_DIR = "/etc/systemd/system"

SYSTEMCTL = "/bin/systemctl"
CONTROLLER_SERVICE = "bootctl-controller.service"
CONTROLLER_ENV_FILE = "controller.env"
CONTROLLER_PORT = 8080

# Listens on loopback only; the security group exposes just the API server and SSH
CONTROLLER_UNIT = """[Unit]
Description=bootctl machine pool controller
After=network-online.target

[Service]
EnvironmentFile={env_file}
WorkingDirectory={state_dir}
ExecStart=/usr/bin/env uvicorn api.main:app --host 127.0.0.1 --port {port}
Restart=on-failure

[Install]
WantedBy=multi-user.target
"""

Runner = Callable[..., subprocess.CompletedProcess]


def run_command(command: list[str], runner: Runner = subprocess.run) -> str:
    """Run a command, returning combined output; raise NodeBootstrapError on failure."""
    logger.debug("Running %s", " ".join(command))
    result = runner(command, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True)
    output = result.stdout or ""
    if result.returncode != 0:
        logger.error("Command %s failed: %s", command[0], output.strip())
        raise NodeBootstrapError(command, result.returncode, output)
    return output


class NodeBootstrapper:
    def __init__(
        self,
        artifacts: Optional[ArtifactStore] = None,
        admin_user: str = "ubuntu",
        state_dir: str = DEFAULT_STATE_DIR,
        unit_dir: str = DEFAULT_UNIT_DIR,
        runner: Runner = subprocess.run,
    ):
        self.artifacts = artifacts
        self.admin_user = admin_user
        self.state_dir = Path(state_dir)
        self.unit_dir = Path(unit_dir)
        self.runner = runner

    def _run(self, command: list[str]) -> str:
        return run_command(command, self.runner)

    def boot(self, cluster_name: str, controller_env: str = "", inventory_json: str = "") -> str:
        """Initialize the master and deposit the join command. Returns the join command.

        With an inventory, the master also runs the machine pool controller
        service against it once the join command is available.
        """
        if self.artifacts is None:
            raise ValueError("An artifact store is required to boot a master")

        logger.info("Initializing Kubernetes cluster %s...", cluster_name)
        output = self._run([KUBEADM, "init", f"--pod-network-cidr={POD_NETWORK_CIDR}"])
        logger.info(output.strip())

        logger.info("Copying kubeconfig file...")
        self.install_kubeconfig()

        logger.info("Deploying pod network provider...")
        output = self._run([KUBECTL, "--kubeconfig", ADMIN_KUBECONFIG, "apply", "-f", NETWORK_MANIFEST])
        logger.info(output.strip())

        if inventory_json:
            self.write_controller_state(cluster_name, controller_env, inventory_json)

        logger.info("Creating kubeadm join token...")
        join_command = self._run([KUBEADM, "token", "create", "--print-join-command"]).strip()
        self.artifacts.deposit(join_command)
        logger.info("Join token created and deposited on artifacts store")

        if inventory_json:
            logger.info("Starting machine pool controller...")
            self.start_controller()

        logger.info("Kubernetes cluster booted")
        return join_command

    def install_kubeconfig(self) -> Path:
        """Copy the admin kubeconfig into the admin user's home and hand it over."""
        user = pwd.getpwnam(self.admin_user)
        kube_dir = Path(user.pw_dir) / ".kube"
        kube_dir.mkdir(parents=True, exist_ok=True)

        target = kube_dir / "config"
        shutil.copyfile(ADMIN_KUBECONFIG, target)
        os.chown(kube_dir, user.pw_uid, user.pw_gid)
        os.chown(target, user.pw_uid, user.pw_gid)
        return target

    def write_controller_state(self, cluster_name: str, controller_env: str, inventory_json: str) -> Path:
        """Save the inventory and the controller service's environment file.

        The environment file carries the controller credentials plus the
        ``STORAGE_PATH`` and ``DATABASE_URL`` settings that point the service
        at the inventory saved here.
        """
        storage_path = self.state_dir / "state"
        inventory = Inventory.model_validate_json(inventory_json)
        FileInventoryStorage(str(storage_path)).save(cluster_name, inventory)

        if controller_env and not controller_env.endswith("\n"):
            controller_env += "\n"
        env_file = self.state_dir / CONTROLLER_ENV_FILE
        env_file.write_text(
            controller_env
            + f"STORAGE_PATH={storage_path}\n"
            + f"DATABASE_URL=sqlite:///{self.state_dir / 'bootctl.db'}\n"
        )
        env_file.chmod(0o600)
        logger.info("Controller state written to %s", self.state_dir)
        return env_file

    def start_controller(self) -> Path:
        """Install the controller systemd unit and start it."""
        self.unit_dir.mkdir(parents=True, exist_ok=True)
        unit = self.unit_dir / CONTROLLER_SERVICE
        unit.write_text(
            CONTROLLER_UNIT.format(
                env_file=self.state_dir / CONTROLLER_ENV_FILE,
                state_dir=self.state_dir,
                port=CONTROLLER_PORT,
            )
        )
        self._run([SYSTEMCTL, "daemon-reload"])
        self._run([SYSTEMCTL, "enable", "--now", CONTROLLER_SERVICE])
        return unit

    def join(self, join_command: Optional[str] = None) -> str:
        """Join this node to the cluster, fetching the join command if none was given."""
        if not join_command:
            if self.artifacts is None:
                raise ValueError("Either a join command or an artifact store is required")
            join_command = self.artifacts.retrieve()

        join_command = join_command.strip()
        if not join_command.startswith("kubeadm "):
            raise ValueError(f"Unexpected join command: {join_command.split(' ', 1)[0]}")

        logger.info("Joining node to cluster...")
        output = self._run(["/bin/bash", "-c", f"/usr/bin/{join_command}"])
        logger.info(output.strip())
        logger.info("Node joined to cluster")
        return output
