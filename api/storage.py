import json
from abc import ABC, abstractmethod
from functools import lru_cache
from pathlib import Path
from typing import Optional

from api.models import Inventory, MachinePoolSpec
from api.settings import get_settings


class InventoryStorage(ABC):

    @abstractmethod
    def save(self, cluster_name: str, inventory: Inventory) -> None:
        """Save a cluster inventory."""
        pass

    @abstractmethod
    def get(self, cluster_name: str) -> Optional[Inventory]:
        """Retrieve a cluster inventory."""
        pass

    @abstractmethod
    def delete(self, cluster_name: str) -> bool:
        """Delete a cluster inventory."""
        pass


class FileInventoryStorage(InventoryStorage):
    """Inventories as JSON files, one per cluster, in the same format the CLI writes."""

    def __init__(self, base_path: str = "state") -> None:
        self.base_path = Path(base_path) / "inventories"
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _get_path(self, cluster_name: str) -> Path:
        return self.base_path / f"{cluster_name}.json"

    def save(self, cluster_name: str, inventory: Inventory) -> None:
        self._get_path(cluster_name).write_text(inventory.to_json())

    def get(self, cluster_name: str) -> Optional[Inventory]:
        path = self._get_path(cluster_name)
        if not path.exists():
            return None
        return Inventory.model_validate_json(path.read_text())

    def delete(self, cluster_name: str) -> bool:
        path = self._get_path(cluster_name)
        if not path.exists():
            return False

        path.unlink()
        return True


class FileMachinePoolStorage:
    """Desired machine pool specs as JSON files under ``<cluster>/<pool>.json``."""

    def __init__(self, base_path: str = "state") -> None:
        self.base_path = Path(base_path) / "pools"
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _get_path(self, cluster_name: str, pool_name: str) -> Path:
        return self.base_path / cluster_name / f"{pool_name}.json"

    def save(self, cluster_name: str, spec: MachinePoolSpec) -> None:
        path = self._get_path(cluster_name, spec.name)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(spec.model_dump(mode="json", by_alias=True), indent=2))

    def get(self, cluster_name: str, pool_name: str) -> Optional[MachinePoolSpec]:
        path = self._get_path(cluster_name, pool_name)
        if not path.exists():
            return None
        return MachinePoolSpec.model_validate_json(path.read_text())

    def list_pools(self, cluster_name: str) -> list[MachinePoolSpec]:
        cluster_dir = self.base_path / cluster_name
        if not cluster_dir.is_dir():
            return []
        return [MachinePoolSpec.model_validate_json(p.read_text()) for p in sorted(cluster_dir.glob("*.json"))]


@lru_cache
def get_inventory_storage() -> InventoryStorage:
    return FileInventoryStorage(base_path=get_settings().storage_path)


@lru_cache
def get_pool_storage() -> FileMachinePoolStorage:
    return FileMachinePoolStorage(base_path=get_settings().storage_path)
