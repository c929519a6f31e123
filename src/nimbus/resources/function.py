"""Lambda compute functions."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import TYPE_CHECKING, Any

from botocore.exceptions import ClientError

from nimbus.config.defaults import DEFAULT_MEMORY_MB, DEFAULT_RUNTIME, DEFAULT_TIMEOUT_S
from nimbus.lib.aws import is_conflict, is_not_found, provider_error
from nimbus.lib.bundler import CodeBundler, ZipBundler
from nimbus.lib.errors import DeploymentError, ValidationError
from nimbus.lib.logging_config import get_logger
from nimbus.models.policy import PolicyStatement
from nimbus.models.project import HANDLER_PATTERN
from nimbus.models.state import ResourceKind
from nimbus.resources.base import Resource, ResourceContext

if TYPE_CHECKING:
    from nimbus.resources.role import Role

logger = get_logger(__name__)


class Function(Resource):
    """A Lambda function bound to the shared role.

    Resources passed to ``use()`` contribute their environment bindings to
    the function and their grants to the role it is attached to.
    """

    kind = ResourceKind.FUNCTION

    def __init__(
        self,
        name: str,
        context: ResourceContext,
        *,
        handler: str | None = None,
        code: str | Path | None = None,
        bundler: CodeBundler | None = None,
        memory: int = DEFAULT_MEMORY_MB,
        timeout: int = DEFAULT_TIMEOUT_S,
        runtime: str = DEFAULT_RUNTIME,
        environment: dict[str, str] | None = None,
        description: str | None = None,
        permissions: list[PolicyStatement] | None = None,
        tracing: bool = False,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Declare a function.

        Args:
            name: Function name (already stage-namespaced)
            context: Shared per-run collaborators
            handler: Entry point in ``module.function`` form. Only optional
                for functions rebuilt from state for teardown.
            code: Source file or directory to package
            bundler: Archive builder (zips ``code`` by default)
            memory: Memory size in MB
            timeout: Timeout in seconds
            runtime: Lambda runtime identifier
            environment: Explicit environment, wins over resource bindings
            description: Function description
            permissions: Extra grants added to the shared role
            tracing: Enable active X-Ray tracing
            metadata: Extra fields persisted with the state record

        Raises:
            ValidationError: If the handler is malformed
        """
        super().__init__(name, context)
        if handler is not None and not HANDLER_PATTERN.match(handler):
            raise ValidationError(
                field=f"{name}.handler",
                message="Handler must name a module and a function",
                expected="'module.function'",
                actual=handler,
            )
        self.handler = handler
        self.code = Path(code) if code is not None else Path(".")
        self.bundler: CodeBundler = bundler or ZipBundler()
        self.memory = memory
        self.timeout = timeout
        self.runtime = runtime
        self.environment = dict(environment or {})
        self.description = description
        self.permissions = list(permissions or [])
        self.tracing = tracing
        self.metadata = dict(metadata or {})
        self.role: Role | None = None
        self._resources: list[Resource] = []
        self._arn: str | None = None

    def identifier(self) -> str:
        """Function ARN, synthesized until the function exists."""
        return self._arn or self.context.arn("lambda", f"function:{self.name}")

    @property
    def resources(self) -> list[Resource]:
        """Resources this function uses, in attachment order."""
        return list(self._resources)

    def use(self, resource: Resource) -> None:
        """Depend on a resource. Attaching the same resource twice is a no-op."""
        if any(existing is resource for existing in self._resources):
            return
        self._resources.append(resource)
        if self.role is not None:
            self.role.add_resource(resource)

    def set_role(self, role: Role) -> None:
        """Attach the function to a role and register its grants there."""
        self.role = role
        for resource in self._resources:
            role.add_resource(resource)
        if self.permissions:
            role.add_statements(self.permissions)

    def build_environment(self) -> dict[str, str]:
        """Bindings of every used resource, overlaid with explicit values."""
        variables: dict[str, str] = {}
        for resource in self._resources:
            variables.update(resource.environment_bindings())
        variables.update(self.environment)
        return variables

    def record_metadata(self) -> dict[str, Any]:
        return dict(self.metadata)

    def provision(self) -> None:
        """Create the function, or update its code and then its configuration."""
        if self.role is None:
            raise DeploymentError(
                operation="function",
                message=f"Function {self.name} has no role; call set_role() first",
            )
        if self.handler is None:
            raise ValidationError(
                field=f"{self.name}.handler",
                message="A handler is required to provision a function",
                expected="'module.function'",
                actual="None",
            )

        client = self.context.client("lambda")
        archive = self.bundler.bundle(self.code)
        settings: dict[str, Any] = {
            "Role": self.role.identifier(),
            "Handler": self.handler,
            "Runtime": self.runtime,
            "MemorySize": self.memory,
            "Timeout": self.timeout,
            "Environment": {"Variables": self.build_environment()},
            "TracingConfig": {"Mode": "Active" if self.tracing else "PassThrough"},
        }
        if self.description:
            settings["Description"] = self.description

        try:
            if self._exists(client):
                logger.info(f"Updating function {self.name}")
                client.update_function_code(FunctionName=self.name, ZipFile=archive)
                self._wait_until_ready(client)
                response = client.update_function_configuration(
                    FunctionName=self.name, **settings
                )
            else:
                logger.info(f"Creating function {self.name}")
                response = client.create_function(
                    FunctionName=self.name, Code={"ZipFile": archive}, **settings
                )
        except ClientError as e:
            raise provider_error(f"function {self.name}", e) from e

        self._arn = response.get("FunctionArn") or self._arn
        self._wait_until_ready(client)

    def _exists(self, client: Any) -> bool:
        try:
            response = client.get_function(FunctionName=self.name)
        except ClientError as e:
            if is_not_found(e):
                return False
            raise
        self._arn = response.get("Configuration", {}).get("FunctionArn")
        return True

    def _wait_until_ready(self, client: Any) -> None:
        """Wait for State=Active and no update in progress."""

        def check() -> bool | None:
            try:
                config = client.get_function_configuration(FunctionName=self.name)
            except ClientError as e:
                if is_not_found(e):
                    return None
                raise provider_error(f"function {self.name}", e) from e

            state = config.get("State")
            update = config.get("LastUpdateStatus")
            if state == "Failed" or update == "Failed":
                reason = config.get("LastUpdateStatusReason") or config.get(
                    "StateReason"
                )
                raise DeploymentError(
                    operation=f"function {self.name}",
                    message=f"Function update failed: {reason}",
                )
            if state == "Active" and update in (None, "Successful"):
                return True
            return None

        self.context.poll(check, "function_update", f"function {self.name} update")

    def add_invoke_permission(
        self, statement_id: str, principal: str, source_arn: str
    ) -> None:
        """Allow a service principal to invoke this function.

        An existing statement with the same id counts as success.
        """
        client = self.context.client("lambda")
        try:
            client.add_permission(
                FunctionName=self.name,
                StatementId=statement_id,
                Action="lambda:InvokeFunction",
                Principal=principal,
                SourceArn=source_arn,
            )
        except ClientError as e:
            if is_conflict(e):
                logger.debug(f"Permission {statement_id} already on {self.name}")
                return
            raise provider_error(f"function {self.name} permission", e) from e

    def _teardown(self) -> None:
        client = self.context.client("lambda")
        try:
            client.delete_function(FunctionName=self.name)
        except ClientError as e:
            if is_not_found(e):
                logger.debug(f"Function {self.name} already deleted")
                return
            raise provider_error(f"function {self.name} delete", e) from e
        logger.info(f"Deleted function {self.name}")

    @classmethod
    def from_record(cls, record: Any, context: ResourceContext) -> Function:
        function = cls(record.name, context, metadata=record.metadata)
        function._arn = record.arn
        return function


def statement_id(prefix: str, *parts: str) -> str:
    """Deterministic permission statement id (letters, digits, '-' and '_')."""
    digest = hashlib.sha1("|".join(parts).encode("utf-8")).hexdigest()[:16]
    return f"{prefix}-{digest}"
