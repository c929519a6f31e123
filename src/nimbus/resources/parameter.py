"""SSM parameters."""

from __future__ import annotations

from typing import Any

from botocore.exceptions import ClientError

from nimbus.lib.aws import is_not_found, provider_error
from nimbus.lib.logging_config import get_logger
from nimbus.lib.naming import parameter_env_key
from nimbus.models.policy import PolicyStatement, allow
from nimbus.models.project import ParameterType
from nimbus.models.state import ResourceKind
from nimbus.resources.base import Resource, ResourceContext

logger = get_logger(__name__)


class Parameter(Resource):
    """Parameter at a stage-namespaced path such as ``/dev/db/url``.

    An existing parameter keeps its value; only missing parameters are
    written.
    """

    kind = ResourceKind.PARAMETER

    def __init__(
        self,
        name: str,
        context: ResourceContext,
        *,
        value: str = "",
        type: ParameterType | str = ParameterType.STRING,
        description: str | None = None,
        key_id: str | None = None,
        tier: str = "Standard",
    ) -> None:
        super().__init__(name, context)
        self.value = value
        self.type = ParameterType(type)
        self.description = description
        self.key_id = key_id
        self.tier = tier

    def identifier(self) -> str:
        return self.context.arn("ssm", f"parameter{self.name}")

    def permission_grants(self) -> list[PolicyStatement]:
        actions = ["ssm:GetParameter", "ssm:GetParameters"]
        if self.type is ParameterType.SECURE_STRING:
            actions.append("kms:Decrypt")
        return [allow(actions, self.identifier())]

    def environment_bindings(self) -> dict[str, str]:
        return {parameter_env_key(self.name): self.name}

    def record_metadata(self) -> dict[str, Any]:
        return {"type": self.type.value}

    def provision(self) -> None:
        client = self.context.client("ssm")
        try:
            try:
                client.get_parameter(Name=self.name)
                logger.info(f"Parameter {self.name} already exists")
                return
            except ClientError as e:
                if not is_not_found(e):
                    raise

            params: dict[str, Any] = {
                "Name": self.name,
                "Value": self.value,
                "Type": self.type.value,
                "Tier": self.tier,
            }
            if self.description:
                params["Description"] = self.description
            if self.key_id:
                params["KeyId"] = self.key_id
            logger.info(f"Creating parameter {self.name}")
            client.put_parameter(**params)
        except ClientError as e:
            raise provider_error(f"parameter {self.name}", e) from e

    def _teardown(self) -> None:
        client = self.context.client("ssm")
        try:
            client.delete_parameter(Name=self.name)
        except ClientError as e:
            if is_not_found(e):
                logger.debug(f"Parameter {self.name} already deleted")
                return
            raise provider_error(f"parameter {self.name} delete", e) from e
        logger.info(f"Deleted parameter {self.name}")

    @classmethod
    def from_record(cls, record: Any, context: ResourceContext) -> Parameter:
        return cls(
            record.name,
            context,
            type=record.metadata.get("type") or ParameterType.STRING,
        )
