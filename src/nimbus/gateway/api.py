"""REST APIs backed by Lambda functions."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from botocore.exceptions import ClientError

from nimbus.config.defaults import (
    AUTHORIZER_IDENTITY_SOURCE,
    AUTHORIZER_TTL_S,
    DEFAULT_MEMORY_MB,
    DEFAULT_STAGE,
    DEFAULT_TIMEOUT_S,
)
from nimbus.gateway.domain import (
    CertificateSaga,
    CustomDomain,
    DomainTarget,
    ValidationRecord,
    remove_api_mappings,
)
from nimbus.gateway.routes import RouteTree
from nimbus.lib.aws import is_conflict, is_not_found, provider_error
from nimbus.lib.bundler import CodeBundler
from nimbus.lib.errors import DeploymentError, ValidationError
from nimbus.lib.logging_config import get_logger
from nimbus.lib.naming import (
    authorizer_function_name,
    normalize_path,
    route_function_name,
)
from nimbus.models.policy import PolicyStatement
from nimbus.models.project import AuthorizerType, HttpMethod
from nimbus.models.state import ResourceKind
from nimbus.resources.base import Resource, ResourceContext
from nimbus.resources.function import Function, statement_id

logger = get_logger(__name__)

GATEWAY_PRINCIPAL = "apigateway.amazonaws.com"
CORS_HEADERS = {
    "method.response.header.Access-Control-Allow-Headers": "'Content-Type,Authorization'",
    "method.response.header.Access-Control-Allow-Methods": "'*'",
    "method.response.header.Access-Control-Allow-Origin": "'*'",
}


@dataclass
class Route:
    """An endpoint and the function serving it."""

    method: HttpMethod
    path: str
    function: Function
    cors: bool = False
    authorizer: str | None = None


@dataclass
class Authorizer:
    """A Lambda authorizer registered on the API."""

    name: str
    function: Function
    type: AuthorizerType = AuthorizerType.TOKEN
    identity_source: str = AUTHORIZER_IDENTITY_SOURCE
    ttl: int = AUTHORIZER_TTL_S
    id: str | None = field(default=None, compare=False)


def integration_uri(region: str, function_arn: str) -> str:
    """Lambda proxy invocation URI used by integrations and authorizers."""
    return (
        f"arn:aws:apigateway:{region}:lambda:path/2015-03-31/functions/"
        f"{function_arn}/invocations"
    )


class Api(Resource):
    """Regional REST API.

    Routes and authorizers each get their own function. Those functions are
    provisioned by the deploy engine together with every other function, so
    ``provision()`` expects them to exist already.
    """

    kind = ResourceKind.API

    def __init__(
        self,
        name: str,
        context: ResourceContext,
        *,
        stage: str = DEFAULT_STAGE,
        description: str | None = None,
        custom_domain: str | None = None,
        tracing: bool = False,
        bundler: CodeBundler | None = None,
        display: Callable[[list[ValidationRecord]], None] | None = None,
        confirm: Callable[[list[ValidationRecord]], None] | None = None,
    ) -> None:
        super().__init__(name, context)
        self.stage = stage
        self.description = description
        self.custom_domain = custom_domain
        self.tracing = tracing
        self.bundler = bundler
        self.display = display
        self.confirm = confirm
        self.routes: list[Route] = []
        self.authorizers: dict[str, Authorizer] = {}
        self.api_id: str | None = None
        self.route_tree: RouteTree | None = None
        self.domain_target: DomainTarget | None = None
        self._function_names: list[str] = []
        self._functions: dict[str, Function] = {}

    def identifier(self) -> str:
        return f"arn:aws:apigateway:{self.region}::/restapis/{self.api_id or self.name}"

    @property
    def default_url(self) -> str | None:
        """Invoke URL of the stage, None until the API exists."""
        if not self.api_id:
            return None
        return f"https://{self.api_id}.execute-api.{self.region}.amazonaws.com/{self.stage}"

    @property
    def url(self) -> str | None:
        """Custom domain URL when one is configured, else the default URL."""
        if self.custom_domain:
            return f"https://{self.custom_domain}"
        return self.default_url

    def functions(self) -> list[Function]:
        """Route functions, then authorizer functions, without duplicates."""
        seen: list[Function] = []
        candidates = [route.function for route in self.routes] + [
            authorizer.function for authorizer in self.authorizers.values()
        ]
        for function in candidates:
            if not any(existing is function for existing in seen):
                seen.append(function)
        return seen

    def route(
        self,
        method: str | HttpMethod,
        path: str,
        handler: str,
        *,
        code: str | Path = ".",
        cors: bool = False,
        authorizer: str | None = None,
        permissions: list[PolicyStatement] | None = None,
        memory: int = DEFAULT_MEMORY_MB,
        timeout: int = DEFAULT_TIMEOUT_S,
        environment: dict[str, str] | None = None,
    ) -> Function:
        """Declare an endpoint and the function serving it.

        Args:
            method: HTTP method, case-insensitive
            path: Path with ``{param}`` or ``:param`` placeholders
            handler: Function entry point
            code: Source file or directory for the function
            cors: Add an ``OPTIONS`` method answering preflight requests
            authorizer: Name of an authorizer declared on this API
            permissions: Extra grants for the function

        Returns:
            The route's function, so callers can ``use()`` resources with it

        Raises:
            ValidationError: If the method or path is malformed
        """
        try:
            http_method = HttpMethod(method.upper())
        except ValueError:
            raise ValidationError(
                field=f"{self.name}.route.method",
                message=f"Unsupported HTTP method {method}",
                expected=", ".join(m.value for m in HttpMethod),
                actual=str(method),
            ) from None
        if not path.startswith("/"):
            raise ValidationError(
                field=f"{self.name}.route.path",
                message="Route paths must be absolute",
                expected="path starting with '/'",
                actual=path,
            )

        normalized = normalize_path(path)
        for existing in self.routes:
            if existing.method is http_method and existing.path == normalized:
                return existing.function

        # Paths that sanitize to the same name share the first declared function.
        function_name = route_function_name(self.name, http_method.value, path)
        function = self._functions.get(function_name)
        if function is None:
            function = Function(
                function_name,
                self.context,
                handler=handler,
                code=code,
                bundler=self.bundler,
                memory=memory,
                timeout=timeout,
                environment=environment,
                permissions=permissions,
                tracing=self.tracing,
                description=f"{http_method.value} {path} on {self.name}",
            )
            self._functions[function_name] = function
        self.routes.append(
            Route(
                method=http_method,
                path=normalized,
                function=function,
                cors=cors,
                authorizer=authorizer,
            )
        )
        return function

    def authorizer(
        self,
        name: str,
        handler: str,
        *,
        code: str | Path = ".",
        type: AuthorizerType | str = AuthorizerType.TOKEN,
        identity_source: str = AUTHORIZER_IDENTITY_SOURCE,
        ttl: int = AUTHORIZER_TTL_S,
    ) -> Function:
        """Declare a Lambda authorizer routes can reference by name."""
        function_name = authorizer_function_name(self.name, name)
        function = self._functions.get(function_name)
        if function is None:
            function = Function(
                function_name,
                self.context,
                handler=handler,
                code=code,
                bundler=self.bundler,
                tracing=self.tracing,
                description=f"Authorizer {name} on {self.name}",
            )
            self._functions[function_name] = function
        self.authorizers[name] = Authorizer(
            name=name,
            function=function,
            type=AuthorizerType(type),
            identity_source=identity_source,
            ttl=ttl,
        )
        return function

    def record_metadata(self) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "apiId": self.api_id,
            "stage": self.stage,
            "url": self.url,
            "functions": [function.name for function in self.functions()]
            or self._function_names,
        }
        if self.custom_domain:
            metadata["customDomain"] = self.custom_domain
        return metadata

    def validate_routes(self) -> None:
        """Check that every route references a declared authorizer.

        Raises:
            ValidationError: If a route names an unknown authorizer
        """
        for route in self.routes:
            if route.authorizer and route.authorizer not in self.authorizers:
                raise ValidationError(
                    field=f"{self.name}.route.authorizer",
                    message=f"Route {route.method.value} {route.path} references an unknown authorizer",
                    expected=", ".join(self.authorizers) or "a declared authorizer",
                    actual=route.authorizer,
                )

    def provision(self) -> None:
        """Create or update the API, its routes and its stage deployment."""
        self.validate_routes()
        client = self.context.client("apigateway")
        try:
            self.api_id = self._find(client)
            if self.api_id:
                logger.info(f"API {self.name} exists ({self.api_id}), updating")
            else:
                logger.info(f"Creating API {self.name}")
                response = client.create_rest_api(
                    name=self.name,
                    description=self.description or "API managed by Nimbus",
                    endpointConfiguration={"types": ["REGIONAL"]},
                )
                self.api_id = response["id"]

            self._provision_authorizers(client)
            tree = self._load_tree(client)
            self.route_tree = tree
            for route in self.routes:
                self._provision_route(client, tree, route)

            client.create_deployment(
                restApiId=self.api_id,
                stageName=self.stage,
                description=f"Deployed by Nimbus for {self.name}",
            )
            if self.tracing:
                client.update_stage(
                    restApiId=self.api_id,
                    stageName=self.stage,
                    patchOperations=[
                        {
                            "op": "replace",
                            "path": "/tracingEnabled",
                            "value": "true",
                        }
                    ],
                )
        except ClientError as e:
            raise provider_error(f"api {self.name}", e) from e

        if self.custom_domain:
            saga = CertificateSaga(
                self.custom_domain,
                self.context,
                display=self.display,
                confirm_callback=self.confirm,
            )
            domain = CustomDomain(self.custom_domain, self.context, saga)
            self.domain_target = domain.bind(self.api_id, self.stage)
        logger.info(f"API {self.name} available at {self.url}")

    def _find(self, client: Any) -> str | None:
        kwargs: dict[str, Any] = {"limit": 500}
        while True:
            response = client.get_rest_apis(**kwargs)
            for item in response.get("items", []):
                if item.get("name") == self.name:
                    return item["id"]
            position = response.get("position")
            if not position:
                return None
            kwargs["position"] = position

    def _load_tree(self, client: Any) -> RouteTree:
        existing: dict[str, str] = {}
        kwargs: dict[str, Any] = {"restApiId": self.api_id, "limit": 500}
        while True:
            response = client.get_resources(**kwargs)
            for item in response.get("items", []):
                existing[item["path"]] = item["id"]
            position = response.get("position")
            if not position:
                break
            kwargs["position"] = position

        root_id = existing.get("/")
        if root_id is None:
            raise DeploymentError(
                operation=f"api {self.name}", message="Root resource not found"
            )

        def create(parent_id: str, path_part: str) -> str:
            response = client.create_resource(
                restApiId=self.api_id, parentId=parent_id, pathPart=path_part
            )
            return response["id"]

        return RouteTree(root_id, create, existing)

    def _provision_authorizers(self, client: Any) -> None:
        if not self.authorizers:
            return
        existing = {
            item["name"]: item["id"]
            for item in client.get_authorizers(restApiId=self.api_id).get("items", [])
        }
        for authorizer in self.authorizers.values():
            if authorizer.name in existing:
                authorizer.id = existing[authorizer.name]
                logger.info(f"Authorizer {authorizer.name} already exists")
                continue
            response = client.create_authorizer(
                restApiId=self.api_id,
                name=authorizer.name,
                type=authorizer.type.value,
                authorizerUri=integration_uri(
                    self.region, authorizer.function.identifier()
                ),
                authorizerResultTtlInSeconds=authorizer.ttl,
                identitySource=authorizer.identity_source,
            )
            authorizer.id = response["id"]
            authorizer.function.add_invoke_permission(
                statement_id("apigateway-auth", self.api_id, authorizer.name),
                GATEWAY_PRINCIPAL,
                self.context.arn("execute-api", f"{self.api_id}/authorizers/*"),
            )
            logger.info(f"Created authorizer {authorizer.name}")

    def _provision_route(self, client: Any, tree: RouteTree, route: Route) -> None:
        resource_id = tree.resolve(route.path)
        method = route.method.value
        logger.info(f"{method} {route.path} -> {route.function.name}")

        authorizer_id = None
        if route.authorizer:
            authorizer_id = self.authorizers[route.authorizer].id
        self._ensure_method(
            client,
            resource_id,
            method,
            "CUSTOM" if authorizer_id else "NONE",
            authorizer_id,
        )
        self._tolerate_conflict(
            client.put_method_response,
            restApiId=self.api_id,
            resourceId=resource_id,
            httpMethod=method,
            statusCode="200",
            responseParameters={
                "method.response.header.Access-Control-Allow-Origin": False
            },
        )
        client.put_integration(
            restApiId=self.api_id,
            resourceId=resource_id,
            httpMethod=method,
            type="AWS_PROXY",
            integrationHttpMethod="POST",
            uri=integration_uri(self.region, route.function.identifier()),
        )
        self._tolerate_conflict(
            client.put_integration_response,
            restApiId=self.api_id,
            resourceId=resource_id,
            httpMethod=method,
            statusCode="200",
            responseParameters={
                "method.response.header.Access-Control-Allow-Origin": "'*'"
            },
        )

        # Scoped to this method and path only.
        source_arn = self.context.arn(
            "execute-api", f"{self.api_id}/*/{method}{route.path}"
        )
        route.function.add_invoke_permission(
            statement_id("apigateway", self.api_id, method, route.path),
            GATEWAY_PRINCIPAL,
            source_arn,
        )

        if route.cors:
            self._enable_cors(client, resource_id)

    def _ensure_method(
        self,
        client: Any,
        resource_id: str,
        method: str,
        authorization: str,
        authorizer_id: str | None = None,
    ) -> None:
        try:
            client.get_method(
                restApiId=self.api_id, resourceId=resource_id, httpMethod=method
            )
            return
        except ClientError as e:
            if not is_not_found(e):
                raise
        params: dict[str, Any] = {
            "restApiId": self.api_id,
            "resourceId": resource_id,
            "httpMethod": method,
            "authorizationType": authorization,
            "apiKeyRequired": False,
        }
        if authorizer_id:
            params["authorizerId"] = authorizer_id
        client.put_method(**params)

    def _enable_cors(self, client: Any, resource_id: str) -> None:
        self._ensure_method(client, resource_id, "OPTIONS", "NONE")
        client.put_integration(
            restApiId=self.api_id,
            resourceId=resource_id,
            httpMethod="OPTIONS",
            type="MOCK",
            requestTemplates={"application/json": '{"statusCode": 200}'},
        )
        self._tolerate_conflict(
            client.put_method_response,
            restApiId=self.api_id,
            resourceId=resource_id,
            httpMethod="OPTIONS",
            statusCode="200",
            responseParameters={key: False for key in CORS_HEADERS},
        )
        self._tolerate_conflict(
            client.put_integration_response,
            restApiId=self.api_id,
            resourceId=resource_id,
            httpMethod="OPTIONS",
            statusCode="200",
            responseParameters=CORS_HEADERS,
        )

    @staticmethod
    def _tolerate_conflict(call: Callable[..., Any], **kwargs: Any) -> None:
        try:
            call(**kwargs)
        except ClientError as e:
            if not is_conflict(e):
                raise

    def _teardown(self) -> None:
        for function in self.functions():
            function.destroy()
        for name in self._function_names:
            Function(name, self.context).destroy()

        client = self.context.client("apigateway")
        if not self.api_id:
            try:
                self.api_id = self._find(client)
            except ClientError as e:
                raise provider_error(f"api {self.name}", e) from e
            if not self.api_id:
                logger.debug(f"API {self.name} already deleted")
                return

        remove_api_mappings(client, self.api_id)
        try:
            client.delete_rest_api(restApiId=self.api_id)
        except ClientError as e:
            if is_not_found(e):
                logger.debug(f"API {self.name} already deleted")
                return
            raise provider_error(f"api {self.name} delete", e) from e
        logger.info(f"Deleted API {self.name}")

    @classmethod
    def from_record(cls, record: Any, context: ResourceContext) -> Api:
        api = cls(
            record.name,
            context,
            stage=record.metadata.get("stage") or DEFAULT_STAGE,
            custom_domain=record.metadata.get("customDomain"),
        )
        api.api_id = record.metadata.get("apiId")
        api._function_names = list(record.metadata.get("functions") or [])
        return api
