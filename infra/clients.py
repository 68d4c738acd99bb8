import logging
from typing import Optional

import boto3
from botocore.exceptions import ClientError, NoCredentialsError

logger = logging.getLogger(__name__)


class AwsClients:
    """Per-invocation factory for boto3 clients bound to one region.

    When a role ARN is given the clients use credentials from an assumed role,
    otherwise the default credential chain (env vars, instance profile, ...).
    """

    def __init__(
        self,
        region: str,
        role_arn: Optional[str] = None,
        external_id: Optional[str] = None,
        session_name: str = "bootctl",
    ):
        self.region = region
        self.role_arn = role_arn
        self.external_id = external_id
        self.session_name = session_name
        self._clients: dict = {}
        self._credentials: Optional[dict] = None

    def _assume_role(self) -> dict:
        if self._credentials is not None:
            return self._credentials

        params = {
            "RoleArn": self.role_arn,
            "RoleSessionName": self.session_name,
            "DurationSeconds": 3600,
        }
        if self.external_id:
            params["ExternalId"] = self.external_id

        try:
            sts = boto3.client("sts", region_name=self.region)
            assumed = sts.assume_role(**params)
        except NoCredentialsError as e:
            raise ValueError(
                f"Failed to locate AWS credentials: {e}. "
                "Use env vars, IAM role (EC2 instance profile), or other default provider chain."
            ) from e
        except ClientError as e:
            raise ValueError(f"Failed to assume role {self.role_arn}: {e}") from e

        logger.debug("Assumed role %s", self.role_arn)
        self._credentials = assumed["Credentials"]
        return self._credentials

    def get(self, service: str):
        """Get a (cached) boto3 client for the given service."""
        if service in self._clients:
            return self._clients[service]

        if self.role_arn:
            creds = self._assume_role()
            client = boto3.client(
                service,
                region_name=self.region,
                aws_access_key_id=creds["AccessKeyId"],
                aws_secret_access_key=creds["SecretAccessKey"],
                aws_session_token=creds["SessionToken"],
            )
        else:
            client = boto3.client(service, region_name=self.region)

        self._clients[service] = client
        return client

    @property
    def ec2(self):
        return self.get("ec2")

    @property
    def iam(self):
        return self.get("iam")

    @property
    def s3(self):
        return self.get("s3")
