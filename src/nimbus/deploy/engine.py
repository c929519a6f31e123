"""Declaration API and deploy orchestration.

A ``Nimbus`` instance collects the resources of one project stage and
reconciles them against AWS in a fixed order: data-tier resources, the
shared role, every function (concurrently), event wiring, then APIs.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from botocore.exceptions import ClientError

from nimbus.config.backend import BackendProfile, load_backend_profile
from nimbus.config.defaults import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_MEMORY_MB,
    DEFAULT_REGION,
    DEFAULT_RUNTIME,
    DEFAULT_STAGE,
    DEFAULT_TIMEOUT_S,
    DEFAULT_VISIBILITY_TIMEOUT_S,
    DLQ_MAX_RECEIVES,
    TIMER_WORKER_TIMEOUT_S,
    WORKER_MEMORY_MB,
)
from nimbus.deploy.destroy import destroy_deployment
from nimbus.deploy.state import S3StateBackend, StateManager
from nimbus.gateway.api import Api
from nimbus.gateway.domain import ValidationRecord
from nimbus.lib.aws import ClientFactory, provider_error
from nimbus.lib.bundler import CodeBundler
from nimbus.lib.errors import DeploymentError, ValidationError
from nimbus.lib.logging_config import get_logger
from nimbus.lib.naming import (
    parameter_name,
    queue_worker_name,
    role_name,
    stage_name,
    timer_worker_name,
)
from nimbus.models.policy import PolicyStatement
from nimbus.models.project import ParameterType, PollingConfig, ProjectConfig
from nimbus.models.result import DeploymentResult, DestroyResult, ProvisionedResource
from nimbus.models.state import ResourceKind
from nimbus.resources import (
    Function,
    KvTable,
    Parameter,
    Queue,
    Role,
    Secret,
    SqlCluster,
    StorageBucket,
    Timer,
)
from nimbus.resources.base import Resource, ResourceContext

logger = get_logger(__name__)

ConfirmCallback = Callable[[list[ValidationRecord]], None]


def summarize(resource: Resource) -> ProvisionedResource:
    """Summary line for a provisioned resource."""
    details = {
        key: str(value)
        for key, value in resource.record_metadata().items()
        if isinstance(value, (str, int, float)) and value != ""
    }
    return ProvisionedResource(
        kind=resource.kind,
        name=resource.name,
        arn=resource.identifier(),
        url=getattr(resource, "url", None),
        details=details,
    )


class Nimbus:
    """Resources of one project stage and the runs that reconcile them.

    Every declared name is namespaced with the stage (``users`` becomes
    ``dev-users``) at declaration time.

    Example:
        >>> app = Nimbus("shop", stage="dev", region="us-east-1")
        >>> users = app.kv("users")
        >>> api = app.api("shop")
        >>> api.route("GET", "/users/{id}", "users.get", code="src").use(users)
        >>> result = app.deploy()
    """

    def __init__(
        self,
        project: str,
        *,
        stage: str = DEFAULT_STAGE,
        region: str = DEFAULT_REGION,
        account_id: str | None = None,
        tracing: bool = False,
        polling: PollingConfig | None = None,
        clients: ClientFactory | None = None,
        state: StateManager | None = None,
        backend: BackendProfile | None = None,
        bundler: CodeBundler | None = None,
        sleep: Callable[[float], None] = time.sleep,
        display: ConfirmCallback | None = None,
        confirm: ConfirmCallback | None = None,
    ) -> None:
        """Create an empty project.

        Args:
            project: Project name, used for state keys and worker names
            stage: Stage prefixed to every resource name
            region: Region resources are provisioned in
            account_id: AWS account id, resolved through STS when omitted
            tracing: Enable X-Ray on functions and API stages
            polling: Poll policy overrides
            clients: Client factory shared by every resource
            state: State manager; built from the backend profile when omitted
            backend: Backend profile; read from ``~/.nimbusrc`` when omitted
            bundler: Code archive builder for every function
            sleep: Sleep function used by poll loops
            display: Shows certificate validation records
            confirm: Blocks until validation records are published
        """
        self.project = project
        self.stage = stage
        self.region = region
        self.tracing = tracing
        self.bundler = bundler
        self.display = display
        self.confirm = confirm
        self.polling = polling or PollingConfig()
        self.clients = clients or ClientFactory()
        self.context = ResourceContext(
            clients=self.clients,
            region=region,
            account_id=account_id or "",
            polling=self.polling,
            sleep=sleep,
        )
        self._state = state
        self._backend = backend
        self._sleep = sleep

        self.apis: list[Api] = []
        self.functions: list[Function] = []
        self.kv_tables: list[KvTable] = []
        self.sql_clusters: list[SqlCluster] = []
        self.buckets: list[StorageBucket] = []
        self.queues: list[Queue] = []
        self.timers: list[Timer] = []
        self.secrets: list[Secret] = []
        self.parameters: list[Parameter] = []
        self._role: Role | None = None

    # Declarations

    def api(
        self,
        name: str,
        *,
        stage: str | None = None,
        description: str | None = None,
        custom_domain: str | None = None,
    ) -> Api:
        """Declare a REST API; add endpoints with ``Api.route()``."""
        api = Api(
            stage_name(self.stage, name),
            self.context,
            stage=stage or self.stage,
            description=description,
            custom_domain=custom_domain,
            tracing=self.tracing,
            bundler=self.bundler,
            display=self.display,
            confirm=self.confirm,
        )
        self.apis.append(api)
        return api

    def function(
        self,
        name: str,
        handler: str,
        *,
        code: str | Path = ".",
        memory: int = DEFAULT_MEMORY_MB,
        timeout: int = DEFAULT_TIMEOUT_S,
        runtime: str = DEFAULT_RUNTIME,
        environment: dict[str, str] | None = None,
        description: str | None = None,
        permissions: list[PolicyStatement] | None = None,
    ) -> Function:
        """Declare a standalone function."""
        function = Function(
            stage_name(self.stage, name),
            self.context,
            handler=handler,
            code=code,
            bundler=self.bundler,
            memory=memory,
            timeout=timeout,
            runtime=runtime,
            environment=environment,
            description=description,
            permissions=permissions,
            tracing=self.tracing,
        )
        self.functions.append(function)
        return function

    def kv(
        self,
        name: str,
        *,
        primary_key: str = "id",
        sort_key: str | None = None,
        encryption: bool = True,
        point_in_time_recovery: bool = False,
    ) -> KvTable:
        """Declare a DynamoDB table."""
        table = KvTable(
            stage_name(self.stage, name),
            self.context,
            primary_key=primary_key,
            sort_key=sort_key,
            encryption=encryption,
            point_in_time_recovery=point_in_time_recovery,
        )
        self.kv_tables.append(table)
        return table

    nosql = kv

    def sql(
        self,
        name: str,
        *,
        schema: str | None = None,
        deletion_protection: bool = False,
    ) -> SqlCluster:
        """Declare an Aurora DSQL cluster."""
        cluster = SqlCluster(
            stage_name(self.stage, name),
            self.context,
            schema=schema or name,
            deletion_protection=deletion_protection,
        )
        self.sql_clusters.append(cluster)
        return cluster

    def storage(self, name: str, *, versioning: bool = False) -> StorageBucket:
        """Declare an S3 bucket."""
        bucket = StorageBucket(
            stage_name(self.stage, name), self.context, versioning=versioning
        )
        self.buckets.append(bucket)
        return bucket

    def queue(
        self,
        name: str,
        *,
        worker: str | None = None,
        worker_code: str | Path = ".",
        batch_size: int = DEFAULT_BATCH_SIZE,
        visibility_timeout: int = DEFAULT_VISIBILITY_TIMEOUT_S,
        dead_letter: bool = False,
        max_receives: int = DLQ_MAX_RECEIVES,
    ) -> Queue:
        """Declare an SQS queue, optionally consumed by a worker handler."""
        queue = Queue(
            stage_name(self.stage, name),
            self.context,
            batch_size=batch_size,
            visibility_timeout=visibility_timeout,
            dead_letter=dead_letter,
            max_receives=max_receives,
        )
        if worker:
            queue.attach_worker(
                Function(
                    queue_worker_name(self.project, queue.name),
                    self.context,
                    handler=worker,
                    code=worker_code,
                    bundler=self.bundler,
                    memory=WORKER_MEMORY_MB,
                    # A worker must finish before its messages become visible again.
                    timeout=max(visibility_timeout, 1),
                    description=f"Queue worker for {queue.name}",
                    tracing=self.tracing,
                )
            )
        self.queues.append(queue)
        return queue

    def timer(
        self,
        name: str,
        schedule: str,
        *,
        worker: str | None = None,
        worker_code: str | Path = ".",
        enabled: bool = True,
        description: str | None = None,
    ) -> Timer:
        """Declare a scheduled rule.

        Raises:
            ValidationError: If the schedule is not a rate or cron expression
        """
        timer = Timer(
            stage_name(self.stage, name),
            self.context,
            schedule=schedule,
            enabled=enabled,
            description=description,
        )
        if worker:
            timer.attach_worker(
                Function(
                    timer_worker_name(self.project, timer.name),
                    self.context,
                    handler=worker,
                    code=worker_code,
                    bundler=self.bundler,
                    memory=WORKER_MEMORY_MB,
                    timeout=TIMER_WORKER_TIMEOUT_S,
                    description=f"Timer worker for {timer.name}",
                    tracing=self.tracing,
                )
            )
        self.timers.append(timer)
        return timer

    def secret(
        self,
        name: str,
        *,
        description: str | None = None,
        kms_key_id: str | None = None,
    ) -> Secret:
        """Declare a Secrets Manager secret."""
        secret = Secret(
            stage_name(self.stage, name),
            self.context,
            description=description,
            kms_key_id=kms_key_id,
        )
        self.secrets.append(secret)
        return secret

    def parameter(
        self,
        name: str,
        *,
        value: str = "",
        type: ParameterType | str = ParameterType.STRING,
        description: str | None = None,
        key_id: str | None = None,
        tier: str = "Standard",
    ) -> Parameter:
        """Declare an SSM parameter under ``/<stage>/``."""
        parameter = Parameter(
            parameter_name(self.stage, name),
            self.context,
            value=value,
            type=type,
            description=description,
            key_id=key_id,
            tier=tier,
        )
        self.parameters.append(parameter)
        return parameter

    def role(self) -> Role:
        """The role shared by every function of this stage."""
        if self._role is None:
            self._role = Role(role_name(self.stage, self.project), self.context)
        return self._role

    @classmethod
    def from_config(
        cls, config: ProjectConfig, base_dir: Path | None = None, **kwargs: Any
    ) -> Nimbus:
        """Build the declarations described by a project file.

        Args:
            config: Validated project file
            base_dir: Directory ``code`` paths are relative to
            **kwargs: Extra constructor arguments (clients, state, ...)
        """
        root = base_dir or Path.cwd()
        app = cls(
            config.project,
            stage=config.stage,
            region=config.region,
            account_id=config.account_id,
            tracing=config.tracing,
            polling=config.polling,
            **kwargs,
        )

        for table in config.kv:
            app.kv(
                table.name,
                primary_key=table.primary_key,
                sort_key=table.sort_key,
                encryption=table.encryption,
                point_in_time_recovery=table.point_in_time_recovery,
            )
        for cluster in config.sql:
            app.sql(
                cluster.name,
                schema=cluster.schema_name,
                deletion_protection=cluster.deletion_protection,
            )
        for bucket in config.storage:
            app.storage(bucket.name, versioning=bucket.versioning)
        for queue in config.queues:
            dlq = queue.dead_letter_queue
            app.queue(
                queue.name,
                worker=queue.worker.handler if queue.worker else None,
                worker_code=root / queue.worker.code if queue.worker else root,
                batch_size=queue.batch_size,
                visibility_timeout=queue.visibility_timeout,
                dead_letter=dlq.enabled,
                max_receives=dlq.max_retries,
            )
        for timer in config.timers:
            app.timer(
                timer.name,
                timer.schedule,
                worker=timer.worker.handler if timer.worker else None,
                worker_code=root / timer.worker.code if timer.worker else root,
                enabled=timer.enabled,
                description=timer.description,
            )
        for secret in config.secrets:
            app.secret(
                secret.name,
                description=secret.description,
                kms_key_id=secret.kms_key_id,
            )
        for parameter in config.parameters:
            app.parameter(
                parameter.name,
                value=parameter.value,
                type=parameter.type,
                description=parameter.description,
                key_id=parameter.key_id,
                tier=parameter.tier,
            )
        for function in config.functions:
            app.function(
                function.name,
                function.handler,
                code=root / function.code,
                memory=function.memory,
                timeout=function.timeout,
                runtime=function.runtime,
                environment=function.environment,
                description=function.description,
                permissions=function.permissions,
            )
        for api_config in config.apis:
            api = app.api(
                api_config.name,
                stage=api_config.stage,
                description=api_config.description,
                custom_domain=api_config.custom_domain,
            )
            for authorizer in api_config.authorizers:
                api.authorizer(
                    authorizer.name,
                    authorizer.handler,
                    code=root / authorizer.code,
                    type=authorizer.type,
                    identity_source=authorizer.identity_source,
                    ttl=authorizer.ttl,
                )
            for route in api_config.routes:
                api.route(
                    route.method,
                    route.path,
                    route.handler,
                    code=root / route.code,
                    cors=route.cors,
                    authorizer=route.authorizer,
                    permissions=route.permissions,
                )
        return app

    # Collections

    def data_resources(self) -> list[Resource]:
        """Data and messaging tier, in provisioning order."""
        return [
            *self.kv_tables,
            *self.sql_clusters,
            *self.buckets,
            *self.queues,
            *self.timers,
            *self.secrets,
            *self.parameters,
        ]

    def all_functions(self) -> list[Function]:
        """Standalone, API, queue worker and timer worker functions, deduplicated.

        Raises:
            ValidationError: If distinct functions share a name
        """
        candidates: list[Function] = list(self.functions)
        for api in self.apis:
            candidates.extend(api.functions())
        for queue in self.queues:
            if queue.worker is not None:
                candidates.append(queue.worker)
        for timer in self.timers:
            if timer.worker is not None:
                candidates.append(timer.worker)

        unique: dict[str, Function] = {}
        for function in candidates:
            existing = unique.get(function.name)
            if existing is None:
                unique[function.name] = function
            elif existing is not function:
                raise ValidationError(
                    field=function.name,
                    message="Two declarations share one function name",
                    expected="unique function names",
                    actual=function.name,
                )
        return list(unique.values())

    def validate(self) -> None:
        """Check declarations for errors that need no remote call.

        Raises:
            ValidationError: If a route names an unknown authorizer or two
                functions share a name
        """
        for api in self.apis:
            api.validate_routes()
        self.all_functions()

    # Runs

    def state_manager(self) -> StateManager:
        """State manager for this project stage, created on first use."""
        if self._state is None:
            profile = self._backend or load_backend_profile()
            self._state = StateManager(
                S3StateBackend(profile, self.project, self.clients),
                self.project,
                self.stage,
                self.region,
                lock_policy=self.polling.state_lock,
                sleep=self._sleep,
            )
        return self._state

    def resolve_account(self) -> str:
        """Return the account id, asking STS if it was not supplied."""
        if not self.context.account_id:
            try:
                identity = self.context.client("sts").get_caller_identity()
            except ClientError as e:
                raise provider_error("caller identity", e) from e
            self.context.account_id = identity["Account"]
        return self.context.account_id

    def deploy(self) -> DeploymentResult:
        """Reconcile every declared resource and record it in state.

        The state lock is held for the whole run and released on every
        exit path. Resources recorded before a failure stay recorded; the
        next deploy finds them and moves on.

        Returns:
            Summary of everything provisioned

        Raises:
            LockAcquisitionError: If another run holds the lock
            DeploymentError: If the provider rejects a call
            PollTimeoutError: If a readiness wait exceeds its ceiling
            ValidationError: If declarations are inconsistent, before any remote call
        """
        self.validate()
        state = self.state_manager()
        state.acquire_lock()
        try:
            result = self._deploy(state)
        except BaseException:
            # The deploy error wins over a failed unlock.
            try:
                state.release_lock()
            except DeploymentError as e:
                logger.error(f"Could not release lock {state.backend.lock_key}: {e}")
            raise
        state.release_lock()
        return result

    def _deploy(self, state: StateManager) -> DeploymentResult:
        account_id = self.resolve_account()
        logger.info(
            f"Deploying {self.project} ({self.stage}) to {self.region} in account {account_id}"
        )
        deployment = state.initialize(account_id)
        state.save()
        self._reuse_bucket_names(deployment.of_kind(ResourceKind.STORAGE))

        result = DeploymentResult(
            project=self.project,
            stage=self.stage,
            region=self.region,
            account_id=account_id,
        )

        data = self.data_resources()
        for resource in data:
            resource.provision()
            state.add(resource.to_record())

        functions = self.all_functions()
        role = self.role()
        if self.tracing:
            role.enable_tracing()
        for function in functions:
            function.set_role(role)
            for resource in data:
                function.use(resource)

        if functions:
            role.provision()
            state.add(role.to_record())
            self._provision_functions(functions, state)

        for queue in self.queues:
            queue.connect_worker()
        for timer in self.timers:
            timer.attach_target()

        for api in self.apis:
            api.provision()
            state.add(api.to_record())

        for resource in [*data, *([role] if functions else []), *functions, *self.apis]:
            result.add(summarize(resource))
        logger.info(f"Deployed {len(result.resources)} resources for {self.project}")
        return result

    def _reuse_bucket_names(self, records: list[Any]) -> None:
        recorded = {r.name: r.metadata.get("bucket") for r in records}
        for bucket in self.buckets:
            if recorded.get(bucket.name):
                bucket.bucket_name = recorded[bucket.name]

    def _provision_functions(
        self, functions: list[Function], state: StateManager
    ) -> None:
        """Provision functions concurrently, recording each one that succeeds.

        Raises:
            The first error raised by any function, after every function
            finished
        """

        async def provision_all() -> list[BaseException | None]:
            return await asyncio.gather(
                *(asyncio.to_thread(function.provision) for function in functions),
                return_exceptions=True,
            )

        outcomes = asyncio.run(provision_all())
        errors: list[BaseException] = []
        for function, outcome in zip(functions, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Function {function.name} failed: {outcome}")
                errors.append(outcome)
                continue
            state.add(function.to_record())
        if errors:
            raise errors[0]

    def destroy(self, force: bool = False) -> DestroyResult:
        """Tear down everything recorded for this project stage."""
        state = self.state_manager()
        return destroy_deployment(
            state,
            self.context,
            project=self.project,
            force=force,
            resolve_account=self.resolve_account,
        )
