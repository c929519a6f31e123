"""Shared IAM execution role for every function of a deployment."""

from __future__ import annotations

import json
from typing import Any
from urllib.parse import unquote

from botocore.exceptions import ClientError

from nimbus.lib.aws import is_not_found, provider_error
from nimbus.lib.logging_config import get_logger
from nimbus.models.policy import PolicyDocument, PolicyStatement, allow
from nimbus.models.state import ResourceKind
from nimbus.resources.base import Resource, ResourceContext

logger = get_logger(__name__)

LAMBDA_PRINCIPAL = "lambda.amazonaws.com"
BASIC_EXECUTION_POLICY = (
    "arn:aws:iam::aws:policy/service-role/AWSLambdaBasicExecutionRole"
)

TRUST_POLICY = {
    "Version": "2012-10-17",
    "Statement": [
        {
            "Effect": "Allow",
            "Principal": {"Service": LAMBDA_PRINCIPAL},
            "Action": "sts:AssumeRole",
        }
    ],
}

LOGS_STATEMENT = allow(
    ["logs:CreateLogGroup", "logs:CreateLogStream", "logs:PutLogEvents"],
    "arn:aws:logs:*:*:*",
)
XRAY_STATEMENT = allow(["xray:PutTraceSegments", "xray:PutTelemetryRecords"], "*")


class Role(Resource):
    """One role whose inline policy is the union of every attached grant.

    The policy is replaced on each provision, so a grant dropped from the
    project is revoked on the next deploy.
    """

    kind = ResourceKind.ROLE

    def __init__(self, name: str, context: ResourceContext) -> None:
        super().__init__(name, context)
        self._resources: list[Resource] = []
        self._statements: list[PolicyStatement] = []
        self._tracing = False
        self._arn: str | None = None

    @property
    def policy_name(self) -> str:
        """Name of the inline policy holding the aggregated grants."""
        return f"{self.name}-policy"

    def identifier(self) -> str:
        # IAM ARNs have no region component.
        return self._arn or f"arn:aws:iam::{self.context.account_id}:role/{self.name}"

    def add_resource(self, resource: Resource) -> None:
        """Attach a resource's grants. The same resource is attached once."""
        if any(existing is resource for existing in self._resources):
            return
        self._resources.append(resource)

    def add_statements(self, statements: list[PolicyStatement]) -> None:
        """Append custom statements after all resource grants."""
        self._statements.extend(statements)

    def enable_tracing(self) -> None:
        """Allow functions to publish X-Ray segments."""
        if not self._tracing:
            self._tracing = True
            self._statements.append(XRAY_STATEMENT)

    def policy_document(self) -> PolicyDocument:
        """Logs statement, then resource grants in attachment order, then custom."""
        statements = [LOGS_STATEMENT]
        for resource in self._resources:
            statements.extend(resource.permission_grants())
        statements.extend(self._statements)
        return PolicyDocument(statements=statements)

    def provision(self) -> None:
        """Replace the inline policy, creating the role first if needed."""
        client = self.context.client("iam")
        try:
            try:
                response = client.get_role(RoleName=self.name)
            except ClientError as e:
                if not is_not_found(e):
                    raise
                self._create(client)
                return

            self._arn = response["Role"]["Arn"]
            logger.info(f"Role {self.name} exists, replacing policy")
            self._put_policy(client)
        except ClientError as e:
            raise provider_error(f"role {self.name}", e) from e

    def _create(self, client: Any) -> None:
        logger.info(f"Creating role {self.name}")
        response = client.create_role(
            RoleName=self.name,
            AssumeRolePolicyDocument=json.dumps(TRUST_POLICY),
            Description=f"Managed by Nimbus for {self.name}",
        )
        self._arn = response["Role"]["Arn"]
        client.attach_role_policy(RoleName=self.name, PolicyArn=BASIC_EXECUTION_POLICY)
        self._put_policy(client)
        logger.info(f"Waiting for role {self.name} to propagate")
        self.context.poll(
            lambda: self._trust_visible(client),
            "role_propagation",
            f"role {self.name} propagation",
        )

    def _put_policy(self, client: Any) -> None:
        client.put_role_policy(
            RoleName=self.name,
            PolicyName=self.policy_name,
            PolicyDocument=self.policy_document().to_json(),
        )

    def _trust_visible(self, client: Any) -> bool | None:
        """True once the role reads back with the Lambda trust principal."""
        try:
            response = client.get_role(RoleName=self.name)
        except ClientError as e:
            logger.debug(f"Role {self.name} not readable yet: {e}")
            return None

        document = response.get("Role", {}).get("AssumeRolePolicyDocument")
        if isinstance(document, str):
            document = json.loads(unquote(document))
        for statement in (document or {}).get("Statement", []):
            if statement.get("Principal", {}).get("Service") == LAMBDA_PRINCIPAL:
                return True
        return None

    def _teardown(self) -> None:
        client = self.context.client("iam")
        try:
            attached = client.list_attached_role_policies(RoleName=self.name)
            for policy in attached.get("AttachedPolicies", []):
                client.detach_role_policy(
                    RoleName=self.name, PolicyArn=policy["PolicyArn"]
                )
            inline = client.list_role_policies(RoleName=self.name)
            for policy_name in inline.get("PolicyNames", []):
                client.delete_role_policy(RoleName=self.name, PolicyName=policy_name)
            client.delete_role(RoleName=self.name)
        except ClientError as e:
            if is_not_found(e):
                logger.debug(f"Role {self.name} already deleted")
                return
            raise provider_error(f"role {self.name} delete", e) from e
        logger.info(f"Deleted role {self.name}")

    @classmethod
    def from_record(cls, record: Any, context: ResourceContext) -> Role:
        role = cls(record.name, context)
        role._arn = record.arn
        return role
