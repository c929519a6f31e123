"""S3 buckets (object stores)."""

from __future__ import annotations

from typing import Any

from botocore.exceptions import ClientError

from nimbus.lib.aws import is_not_found, provider_error
from nimbus.lib.logging_config import get_logger
from nimbus.lib.naming import bucket_base_name, env_key
from nimbus.models.policy import PolicyStatement, allow
from nimbus.models.state import ResourceKind, utc_now
from nimbus.resources.base import Resource, ResourceContext

logger = get_logger(__name__)

OBJECT_ACTIONS = ["s3:GetObject", "s3:PutObject", "s3:DeleteObject", "s3:ListBucket"]


def unique_bucket_name(name: str) -> str:
    """Append a ``-YYYYMMDD-HHMMSS`` suffix to make a global bucket name."""
    return f"{name}-{utc_now().strftime('%Y%m%d-%H%M%S')}"


class StorageBucket(Resource):
    """Bucket named ``<name>-<timestamp>``.

    The suffixed bucket name is generated once; later deploys pass the name
    recorded in state so the same bucket is found again.
    """

    kind = ResourceKind.STORAGE
    stateful = True

    def __init__(
        self,
        name: str,
        context: ResourceContext,
        *,
        versioning: bool = False,
        bucket_name: str | None = None,
    ) -> None:
        super().__init__(name, context)
        self.versioning = versioning
        self.bucket_name = bucket_name or unique_bucket_name(name)

    def identifier(self) -> str:
        return f"arn:aws:s3:::{self.bucket_name}"

    def permission_grants(self) -> list[PolicyStatement]:
        bucket_arn = self.identifier()
        return [allow(OBJECT_ACTIONS, [bucket_arn, f"{bucket_arn}/*"])]

    def environment_bindings(self) -> dict[str, str]:
        base = bucket_base_name(self.bucket_name)
        return {
            env_key("STORAGE", base): self.bucket_name,
            env_key("STORAGE", base, "ARN"): self.identifier(),
        }

    def record_metadata(self) -> dict[str, Any]:
        return {"bucket": self.bucket_name, "versioning": self.versioning}

    def provision(self) -> None:
        client = self.context.client("s3")
        try:
            try:
                client.head_bucket(Bucket=self.bucket_name)
                logger.info(f"Bucket {self.bucket_name} already exists")
                return
            except ClientError as e:
                if not is_not_found(e):
                    raise

            logger.info(f"Creating bucket {self.bucket_name}")
            params: dict[str, Any] = {"Bucket": self.bucket_name}
            if self.region != "us-east-1":
                params["CreateBucketConfiguration"] = {
                    "LocationConstraint": self.region
                }
            client.create_bucket(**params)
            if self.versioning:
                client.put_bucket_versioning(
                    Bucket=self.bucket_name,
                    VersioningConfiguration={"Status": "Enabled"},
                )
        except ClientError as e:
            raise provider_error(f"bucket {self.bucket_name}", e) from e

    def _teardown(self) -> None:
        client = self.context.client("s3")
        try:
            self._empty(client)
            client.delete_bucket(Bucket=self.bucket_name)
        except ClientError as e:
            if is_not_found(e):
                logger.debug(f"Bucket {self.bucket_name} already deleted")
                return
            raise provider_error(f"bucket {self.bucket_name} delete", e) from e
        logger.info(f"Deleted bucket {self.bucket_name}")

    def _empty(self, client: Any) -> None:
        kwargs: dict[str, Any] = {"Bucket": self.bucket_name}
        while True:
            response = client.list_objects_v2(**kwargs)
            for obj in response.get("Contents", []):
                client.delete_object(Bucket=self.bucket_name, Key=obj["Key"])
            token = response.get("NextContinuationToken")
            if not token:
                return
            kwargs["ContinuationToken"] = token

    @classmethod
    def from_record(cls, record: Any, context: ResourceContext) -> StorageBucket:
        bucket = record.metadata.get("bucket")
        if not bucket and record.arn:
            bucket = record.arn.rsplit(":", 1)[-1]
        return cls(record.name, context, bucket_name=bucket)
