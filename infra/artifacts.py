import logging

from botocore.exceptions import ClientError

from infra.clients import AwsClients
from infra.errors import ArtifactNotFoundError, is_not_found

logger = logging.getLogger(__name__)

JOIN_KEY = "join"


class ArtifactStore:
    """Join-command exchange between the master and workers through the cluster bucket."""

    def __init__(self, clients: AwsClients, bucket: str, key: str = JOIN_KEY):
        self.clients = clients
        self.bucket = bucket
        self.key = key

    def deposit(self, body: str) -> None:
        self.clients.s3.put_object(Bucket=self.bucket, Key=self.key, Body=body.encode())
        logger.info("Deposited %s to s3://%s", self.key, self.bucket)

    def retrieve(self) -> str:
        try:
            reply = self.clients.s3.get_object(Bucket=self.bucket, Key=self.key)
        except ClientError as e:
            if is_not_found(e):
                raise ArtifactNotFoundError(
                    f"No {self.key} artifact in bucket {self.bucket}"
                ) from e
            raise

        body = reply["Body"].read().decode().strip()
        logger.debug("Retrieved %s from s3://%s", self.key, self.bucket)
        return body
