from botocore.exceptions import ClientError

from infra.clients import AwsClients
from infra.components.base import ResourceHandle
from infra.errors import ResourceNotFoundError

# S3 refuses LocationConstraint for the default region
DEFAULT_S3_REGION = "us-east-1"

# DeleteObjects accepts at most 1000 keys per request
DELETE_BATCH_SIZE = 1000


class Bucket(ResourceHandle):
    """Artifact bucket holding the kubeadm join command for worker nodes."""

    kind = "bucket"

    def __init__(self, clients: AwsClients, name: str = "", resource_id: str = ""):
        super().__init__(clients, resource_id)
        self.name = name or resource_id

    def create(self) -> str:
        params: dict = {"Bucket": self.name}
        if self.region != DEFAULT_S3_REGION:
            params["CreateBucketConfiguration"] = {"LocationConstraint": self.region}

        self.clients.s3.create_bucket(**params)
        self.id = self.name
        return self.id

    def describe(self) -> str:
        try:
            self.clients.s3.head_bucket(Bucket=self.id)
        except ClientError as e:
            if e.response["Error"]["Code"] in ("404", "NoSuchBucket"):
                raise ResourceNotFoundError(self.kind, self.id) from e
            raise
        return "available"

    def _empty(self) -> None:
        s3 = self.clients.s3
        paginator = s3.get_paginator("list_objects_v2")

        keys: list[dict] = []
        for page in paginator.paginate(Bucket=self.id):
            keys.extend({"Key": obj["Key"]} for obj in page.get("Contents", []))

        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            s3.delete_objects(
                Bucket=self.id,
                Delete={"Objects": keys[start : start + DELETE_BATCH_SIZE], "Quiet": True},
            )

    def delete(self) -> None:
        with self._not_found_as_error():
            self._empty()
            self.clients.s3.delete_bucket(Bucket=self.id)
