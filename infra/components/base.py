import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager

from botocore.exceptions import ClientError

from infra.clients import AwsClients
from infra.errors import ResourceNotFoundError, is_already_detached, is_not_found

logger = logging.getLogger(__name__)


class ResourceHandle(ABC):
    """One cloud object with a uniform create/describe/delete capability set.

    A handle carries its own input parameters and the provider-assigned id.
    An empty id means the object has not been created yet; once ``create``
    returns, the id is set and the handle is a rollback candidate.
    """

    kind = "resource"

    def __init__(self, clients: AwsClients, resource_id: str = ""):
        self.clients = clients
        self.id = resource_id

    @property
    def region(self) -> str:
        return self.clients.region

    @abstractmethod
    def create(self) -> str:
        """Create the object and return its provider id."""

    @abstractmethod
    def describe(self) -> str:
        """Return the current provider-side status of the object."""

    @abstractmethod
    def delete(self) -> None:
        """Delete the object."""

    def secrets(self) -> dict[str, str]:
        """Credentials generated as a side effect of ``create`` (never persisted)."""
        return {}

    @contextmanager
    def _not_found_as_error(self):
        """Translate provider "not found" errors into ResourceNotFoundError."""
        try:
            yield
        except ClientError as e:
            if is_not_found(e):
                raise ResourceNotFoundError(self.kind, self.id) from e
            raise

    @contextmanager
    def _detach_step(self, what: str):
        """Let a detach/remove call pass when there is nothing left to detach.

        Only the final delete of the object itself may report it as gone; a
        missing access key or membership must not skip that delete.
        """
        try:
            yield
        except ClientError as e:
            if not is_already_detached(e):
                raise
            logger.info("%s of %s %s already gone", what.capitalize(), self.kind, self.id)

    def _tag_specifications(self, resource_type: str, tags: dict[str, str]) -> list[dict]:
        if not tags:
            return []
        return [
            {
                "ResourceType": resource_type,
                "Tags": [{"Key": k, "Value": v} for k, v in tags.items()],
            }
        ]

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.id or '(not created)'} in {self.region}>"
