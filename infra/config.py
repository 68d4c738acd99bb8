"""Load cluster and machine definitions from YAML or JSON files.

Both flat documents and Kubernetes-style manifests are accepted::

    kind: Cluster
    metadata:
      name: demo
    spec:
      region: us-west-2
"""

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from api.models import ClusterConfig, Inventory, MachinePoolSpec

logger = logging.getLogger(__name__)

# Older machine manifests call the image "ami"
_MACHINE_ALIASES = {"ami": "imageId"}


def _read_document(path: str) -> dict[str, Any]:
    file_path = Path(path)
    if not file_path.exists():
        raise ValueError(f"Config file not found: {path}")

    try:
        data = yaml.safe_load(file_path.read_text())
    except yaml.YAMLError as e:
        raise ValueError(f"Failed to parse {path}: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return data


def _flatten_manifest(data: dict[str, Any]) -> dict[str, Any]:
    """Turn ``{metadata: {name}, spec: {...}}`` into a flat mapping."""
    if "spec" not in data:
        return data

    flat = dict(data["spec"] or {})
    name = (data.get("metadata") or {}).get("name")
    if name and "name" not in flat:
        flat["name"] = name
    return flat


def load_cluster_config(path: str) -> ClusterConfig:
    data = _flatten_manifest(_read_document(path))
    try:
        return ClusterConfig.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Invalid cluster config {path}: {e}") from e


def load_machine_spec(path: str) -> MachinePoolSpec:
    data = _flatten_manifest(_read_document(path))
    for old, new in _MACHINE_ALIASES.items():
        if old in data and new not in data:
            data[new] = data.pop(old)

    try:
        return MachinePoolSpec.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Invalid machine config {path}: {e}") from e


def load_inventory(path: str) -> Inventory:
    file_path = Path(path)
    if not file_path.exists():
        raise ValueError(f"Inventory file not found: {path}")

    try:
        return Inventory.model_validate_json(file_path.read_text())
    except ValidationError as e:
        raise ValueError(f"Invalid inventory {path}: {e}") from e


def write_inventory(inventory: Inventory, path: str) -> None:
    Path(path).write_text(inventory.to_json() + "\n")
    logger.info("Inventory written to %s", path)
