"""Aurora DSQL clusters (relational stores).

DSQL has no name index, so clusters are found again through their
``Name`` and ``ManagedBy`` tags.
"""

from __future__ import annotations

from typing import Any

from botocore.exceptions import ClientError

from nimbus.lib.aws import is_not_found, provider_error
from nimbus.lib.logging_config import get_logger
from nimbus.lib.naming import env_key
from nimbus.models.policy import PolicyStatement, allow
from nimbus.models.state import ResourceKind
from nimbus.resources.base import Resource, ResourceContext

logger = get_logger(__name__)

MANAGED_BY = "Nimbus"


class SqlCluster(Resource):
    """DSQL cluster reached by functions through IAM database auth."""

    kind = ResourceKind.SQL
    stateful = True

    def __init__(
        self,
        name: str,
        context: ResourceContext,
        *,
        schema: str | None = None,
        deletion_protection: bool = False,
    ) -> None:
        super().__init__(name, context)
        self.schema = schema or name
        self.db_role = f"lambda_{self.schema}"
        self.deletion_protection = deletion_protection
        self.cluster_id: str | None = None
        self._arn: str | None = None

    def identifier(self) -> str:
        return self._arn or self.context.arn("dsql", "cluster/*")

    @property
    def endpoint(self) -> str:
        """PostgreSQL endpoint of the cluster, empty until known."""
        if not self.cluster_id:
            return ""
        return f"{self.cluster_id}.dsql.{self.region}.on.aws"

    def permission_grants(self) -> list[PolicyStatement]:
        return [allow(["dsql:DbConnect"], self.identifier())]

    def environment_bindings(self) -> dict[str, str]:
        return {
            env_key("SQL", self.name, "IDENTIFIER"): self.cluster_id or "",
            env_key("SQL", self.name, "ENDPOINT"): self.endpoint,
            env_key("SQL", self.name, "ARN"): self._arn or "",
            env_key("SQL", self.name, "SCHEMA"): self.schema,
            env_key("SQL", self.name, "DB_ROLE"): self.db_role,
        }

    def record_metadata(self) -> dict[str, Any]:
        return {
            "identifier": self.cluster_id,
            "endpoint": self.endpoint,
            "schema": self.schema,
        }

    def provision(self) -> None:
        client = self.context.client("dsql")
        try:
            existing = self._find(client)
            if existing:
                self.cluster_id, self._arn = existing
                logger.info(f"Using existing DSQL cluster {self.cluster_id}")
                return

            logger.info(f"Creating DSQL cluster {self.name}")
            response = client.create_cluster(
                deletionProtectionEnabled=self.deletion_protection,
                tags={"Name": self.name, "ManagedBy": MANAGED_BY},
            )
        except ClientError as e:
            raise provider_error(f"cluster {self.name}", e) from e

        self.cluster_id = response["identifier"]
        self._arn = response["arn"]
        self.context.poll(
            lambda: self._active(client), "cluster_active", f"cluster {self.name}"
        )

    def _find(self, client: Any) -> tuple[str, str] | None:
        """Locate the cluster tagged with this resource's name."""
        kwargs: dict[str, Any] = {}
        while True:
            response = client.list_clusters(**kwargs)
            for cluster in response.get("clusters", []):
                details = client.get_cluster(identifier=cluster["identifier"])
                tags = details.get("tags") or {}
                if tags.get("Name") == self.name and tags.get("ManagedBy") == MANAGED_BY:
                    return cluster["identifier"], cluster["arn"]
            token = response.get("nextToken")
            if not token:
                return None
            kwargs["nextToken"] = token

    def _active(self, client: Any) -> bool | None:
        try:
            response = client.get_cluster(identifier=self.cluster_id)
        except ClientError as e:
            if is_not_found(e):
                return None
            raise provider_error(f"cluster {self.name}", e) from e
        return True if response.get("status") == "ACTIVE" else None

    def _teardown(self) -> None:
        client = self.context.client("dsql")
        try:
            if not self.cluster_id:
                existing = self._find(client)
                if not existing:
                    logger.debug(f"Cluster {self.name} already deleted")
                    return
                self.cluster_id, self._arn = existing
            client.delete_cluster(identifier=self.cluster_id)
        except ClientError as e:
            if is_not_found(e):
                logger.debug(f"Cluster {self.name} already deleted")
                return
            raise provider_error(f"cluster {self.name} delete", e) from e
        logger.info(f"Deleted DSQL cluster {self.name}")

    @classmethod
    def from_record(cls, record: Any, context: ResourceContext) -> SqlCluster:
        cluster = cls(
            record.name, context, schema=record.metadata.get("schema") or None
        )
        cluster.cluster_id = record.metadata.get("identifier")
        cluster._arn = record.arn
        return cluster
