"""DynamoDB tables (structured key-value stores)."""

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

TABLE_ACTIONS = [
    "dynamodb:PutItem",
    "dynamodb:GetItem",
    "dynamodb:DeleteItem",
    "dynamodb:UpdateItem",
    "dynamodb:Query",
    "dynamodb:Scan",
    "dynamodb:BatchGetItem",
    "dynamodb:BatchWriteItem",
]


class KvTable(Resource):
    """On-demand DynamoDB table with string keys."""

    kind = ResourceKind.KV
    stateful = True

    def __init__(
        self,
        name: str,
        context: ResourceContext,
        *,
        primary_key: str = "id",
        sort_key: str | None = None,
        encryption: bool = True,
        point_in_time_recovery: bool = False,
    ) -> None:
        super().__init__(name, context)
        self.primary_key = primary_key
        self.sort_key = sort_key
        self.encryption = encryption
        self.point_in_time_recovery = point_in_time_recovery
        self._arn: str | None = None

    def identifier(self) -> str:
        return self._arn or self.context.arn("dynamodb", f"table/{self.name}")

    def permission_grants(self) -> list[PolicyStatement]:
        table_arn = self.identifier()
        return [allow(TABLE_ACTIONS, [table_arn, f"{table_arn}/index/*"])]

    def environment_bindings(self) -> dict[str, str]:
        return {env_key("KV", self.name): self.name}

    def provision(self) -> None:
        client = self.context.client("dynamodb")
        try:
            try:
                response = client.describe_table(TableName=self.name)
                self._arn = response["Table"]["TableArn"]
                logger.info(f"Table {self.name} already exists")
            except ClientError as e:
                if not is_not_found(e):
                    raise
                self._create(client)
            if self.point_in_time_recovery:
                client.update_continuous_backups(
                    TableName=self.name,
                    PointInTimeRecoverySpecification={
                        "PointInTimeRecoveryEnabled": True
                    },
                )
        except ClientError as e:
            raise provider_error(f"table {self.name}", e) from e

    def _create(self, client: Any) -> None:
        key_schema = [{"AttributeName": self.primary_key, "KeyType": "HASH"}]
        attributes = [{"AttributeName": self.primary_key, "AttributeType": "S"}]
        if self.sort_key:
            key_schema.append({"AttributeName": self.sort_key, "KeyType": "RANGE"})
            attributes.append({"AttributeName": self.sort_key, "AttributeType": "S"})

        params: dict[str, Any] = {
            "TableName": self.name,
            "KeySchema": key_schema,
            "AttributeDefinitions": attributes,
            "BillingMode": "PAY_PER_REQUEST",
        }
        if self.encryption:
            params["SSESpecification"] = {
                "Enabled": True,
                "SSEType": "KMS",
                "KMSMasterKeyId": "alias/aws/dynamodb",
            }

        logger.info(f"Creating table {self.name}")
        response = client.create_table(**params)
        self._arn = response["TableDescription"]["TableArn"]
        self.context.poll(
            lambda: self._active(client), "table_active", f"table {self.name}"
        )

    def _active(self, client: Any) -> bool | None:
        response = client.describe_table(TableName=self.name)
        return True if response["Table"].get("TableStatus") == "ACTIVE" else None

    def _teardown(self) -> None:
        client = self.context.client("dynamodb")
        try:
            client.delete_table(TableName=self.name)
        except ClientError as e:
            if is_not_found(e):
                logger.debug(f"Table {self.name} already deleted")
                return
            raise provider_error(f"table {self.name} delete", e) from e
        logger.info(f"Deleted table {self.name}")

    @classmethod
    def from_record(cls, record: Any, context: ResourceContext) -> KvTable:
        table = cls(record.name, context)
        table._arn = record.arn
        return table
