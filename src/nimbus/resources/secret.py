"""Secrets Manager secrets."""

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

PLACEHOLDER_VALUE = "{}"


class Secret(Resource):
    """Secret created with an empty JSON placeholder.

    The value is set out of band; provisioning never overwrites an existing
    secret.
    """

    kind = ResourceKind.SECRET

    def __init__(
        self,
        name: str,
        context: ResourceContext,
        *,
        description: str | None = None,
        kms_key_id: str | None = None,
    ) -> None:
        super().__init__(name, context)
        self.description = description
        self.kms_key_id = kms_key_id
        self._arn: str | None = None

    def identifier(self) -> str:
        # Real secret ARNs carry a random suffix.
        return self._arn or self.context.arn("secretsmanager", f"secret:{self.name}-*")

    def permission_grants(self) -> list[PolicyStatement]:
        return [
            allow(
                ["secretsmanager:GetSecretValue", "secretsmanager:DescribeSecret"],
                self.identifier(),
            )
        ]

    def environment_bindings(self) -> dict[str, str]:
        return {
            env_key("SECRET", self.name, "ARN"): self.identifier(),
            env_key("SECRET", self.name, "NAME"): self.name,
        }

    def provision(self) -> None:
        client = self.context.client("secretsmanager")
        try:
            try:
                response = client.describe_secret(SecretId=self.name)
                self._arn = response["ARN"]
                logger.info(f"Secret {self.name} already exists")
                return
            except ClientError as e:
                if not is_not_found(e):
                    raise

            params: dict[str, Any] = {
                "Name": self.name,
                "SecretString": PLACEHOLDER_VALUE,
            }
            if self.description:
                params["Description"] = self.description
            if self.kms_key_id:
                params["KmsKeyId"] = self.kms_key_id
            logger.info(f"Creating secret {self.name}")
            response = client.create_secret(**params)
        except ClientError as e:
            raise provider_error(f"secret {self.name}", e) from e
        self._arn = response["ARN"]

    def _teardown(self) -> None:
        client = self.context.client("secretsmanager")
        try:
            client.delete_secret(SecretId=self.name, ForceDeleteWithoutRecovery=True)
        except ClientError as e:
            if is_not_found(e):
                logger.debug(f"Secret {self.name} already deleted")
                return
            raise provider_error(f"secret {self.name} delete", e) from e
        logger.info(f"Deleted secret {self.name}")

    @classmethod
    def from_record(cls, record: Any, context: ResourceContext) -> Secret:
        secret = cls(record.name, context)
        secret._arn = record.arn
        return secret
