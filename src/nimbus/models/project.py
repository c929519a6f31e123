"""Pydantic models for the declarative project file (``nimbus.yaml``).

The project file describes every resource of one application. Names are
given without the stage prefix; the declaration layer namespaces them.
"""

import re
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from nimbus.config.defaults import (
    AUTHORIZER_IDENTITY_SOURCE,
    AUTHORIZER_TTL_S,
    DEFAULT_BATCH_SIZE,
    DEFAULT_MEMORY_MB,
    DEFAULT_POLL_POLICIES,
    DEFAULT_PROJECT_NAME,
    DEFAULT_REGION,
    DEFAULT_RUNTIME,
    DEFAULT_STAGE,
    DEFAULT_TIMEOUT_S,
    DEFAULT_VISIBILITY_TIMEOUT_S,
    DLQ_MAX_RECEIVES,
)
from nimbus.lib.polling import PollPolicy
from nimbus.models.policy import PolicyStatement

SCHEDULE_PATTERN = re.compile(r"^(rate|cron)\(.+\)$")
HANDLER_PATTERN = re.compile(r"^[A-Za-z_][\w.]*\.[A-Za-z_]\w*$")
NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")


class HttpMethod(str, Enum):
    """HTTP methods a route may bind."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"
    ANY = "ANY"


class AuthorizerType(str, Enum):
    """API Gateway Lambda authorizer types."""

    TOKEN = "TOKEN"
    REQUEST = "REQUEST"


class ParameterType(str, Enum):
    """SSM parameter types."""

    STRING = "String"
    STRING_LIST = "StringList"
    SECURE_STRING = "SecureString"


def validate_schedule(schedule: str) -> bool:
    """True if schedule is a ``rate(...)`` or ``cron(...)`` expression."""
    return bool(SCHEDULE_PATTERN.match(schedule))


class _Named(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, description="Declared name (no stage prefix)")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Names become part of provider identifiers."""
        if not NAME_PATTERN.match(v):
            raise ValueError(
                f"Invalid name: {v}. Use letters, numbers, '-' and '_' only"
            )
        return v


class CodeConfig(BaseModel):
    """Handler entry point and the code it lives in.

    Attributes:
        handler: Python entry point in ``module.function`` form
        code: File or directory packaged as the function archive, relative
            to the project file
    """

    model_config = ConfigDict(extra="forbid")

    handler: str = Field(..., description="Entry point, e.g. 'app.users.get'")
    code: str = Field(default=".", description="Source file or directory")

    @field_validator("handler")
    @classmethod
    def validate_handler(cls, v: str) -> str:
        """Handler must be ``module.function``."""
        if not HANDLER_PATTERN.match(v):
            raise ValueError(f"Invalid handler: {v}. Expected 'module.function'")
        return v


class FunctionConfig(_Named, CodeConfig):
    """Standalone compute function."""

    memory: int = Field(default=DEFAULT_MEMORY_MB, ge=128, le=10240)
    timeout: int = Field(default=DEFAULT_TIMEOUT_S, ge=1, le=900)
    runtime: str = Field(default=DEFAULT_RUNTIME)
    description: str | None = None
    environment: dict[str, str] = Field(default_factory=dict)
    permissions: list[PolicyStatement] = Field(default_factory=list)


class RouteConfig(CodeConfig):
    """One HTTP route bound to a function."""

    method: HttpMethod
    path: str = Field(..., description="Path, e.g. '/users/{id}' or '/users/:id'")
    cors: bool = False
    authorizer: str | None = Field(
        default=None, description="Name of an authorizer declared on the API"
    )
    permissions: list[PolicyStatement] = Field(default_factory=list)

    @field_validator("method", mode="before")
    @classmethod
    def upper_method(cls, v: object) -> object:
        """Accept lowercase methods."""
        return v.upper() if isinstance(v, str) else v

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Paths are absolute."""
        if not v.startswith("/"):
            raise ValueError(f"Route path must start with '/': {v}")
        return v


class AuthorizerConfig(_Named, CodeConfig):
    """Lambda authorizer attached to an API."""

    type: AuthorizerType = AuthorizerType.TOKEN
    identity_source: str = AUTHORIZER_IDENTITY_SOURCE
    ttl: int = Field(default=AUTHORIZER_TTL_S, ge=0, le=3600)


class ApiConfig(_Named):
    """REST API with routes and optional authorizers."""

    stage: str | None = Field(
        default=None, description="Gateway stage (defaults to the project stage)"
    )
    description: str | None = None
    custom_domain: str | None = None
    routes: list[RouteConfig] = Field(default_factory=list)
    authorizers: list[AuthorizerConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_authorizer_refs(self) -> "ApiConfig":
        """Routes may only reference authorizers declared on this API."""
        known = {a.name for a in self.authorizers}
        for route in self.routes:
            if route.authorizer and route.authorizer not in known:
                raise ValueError(
                    f"Route {route.method.value} {route.path} references "
                    f"unknown authorizer '{route.authorizer}'"
                )
        return self


class KvConfig(_Named):
    """DynamoDB table."""

    primary_key: str = "id"
    sort_key: str | None = None
    point_in_time_recovery: bool = False
    encryption: bool = True


class SqlConfig(_Named):
    """Aurora DSQL cluster."""

    schema_name: str | None = Field(
        default=None, alias="schema", description="Schema name (defaults to name)"
    )
    deletion_protection: bool = False

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class StorageConfig(_Named):
    """S3 bucket."""

    versioning: bool = False


class DeadLetterConfig(BaseModel):
    """Dead-letter queue settings."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    max_retries: int = Field(default=DLQ_MAX_RECEIVES, ge=1, le=1000)


class QueueConfig(_Named):
    """SQS queue with an optional worker."""

    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=1, le=10)
    visibility_timeout: int = Field(default=DEFAULT_VISIBILITY_TIMEOUT_S, ge=0)
    dead_letter_queue: DeadLetterConfig | bool = Field(
        default_factory=lambda: DeadLetterConfig(enabled=False)
    )
    worker: CodeConfig | None = None

    @field_validator("dead_letter_queue")
    @classmethod
    def expand_dead_letter(cls, v: DeadLetterConfig | bool) -> DeadLetterConfig:
        """``true``/``false`` shorthand."""
        if isinstance(v, bool):
            return DeadLetterConfig(enabled=v)
        return v


class TimerConfig(_Named):
    """EventBridge scheduled rule with an optional worker."""

    schedule: str = Field(..., description="rate(...) or cron(...) expression")
    enabled: bool = True
    description: str | None = None
    worker: CodeConfig | None = None

    @field_validator("schedule")
    @classmethod
    def check_schedule(cls, v: str) -> str:
        """Reject malformed schedule expressions before any remote call."""
        if not validate_schedule(v):
            raise ValueError(
                f"Invalid schedule expression: {v}. "
                "Use 'rate(...)' or 'cron(...)' format"
            )
        return v


class SecretConfig(_Named):
    """Secrets Manager secret."""

    description: str | None = None
    kms_key_id: str | None = None


class ParameterConfig(BaseModel):
    """SSM parameter. The name may contain '/' separators."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    value: str = ""
    type: ParameterType = ParameterType.STRING
    description: str | None = None
    key_id: str | None = None
    tier: Literal["Standard", "Advanced", "Intelligent-Tiering"] = "Standard"


class PollingConfig(BaseModel):
    """Overrides for the bounded poll loops."""

    model_config = ConfigDict(extra="forbid")

    role_propagation: PollPolicy = DEFAULT_POLL_POLICIES["role_propagation"]
    function_update: PollPolicy = DEFAULT_POLL_POLICIES["function_update"]
    table_active: PollPolicy = DEFAULT_POLL_POLICIES["table_active"]
    cluster_active: PollPolicy = DEFAULT_POLL_POLICIES["cluster_active"]
    validation_records: PollPolicy = DEFAULT_POLL_POLICIES["validation_records"]
    certificate_issued: PollPolicy = DEFAULT_POLL_POLICIES["certificate_issued"]
    state_lock: PollPolicy = DEFAULT_POLL_POLICIES["state_lock"]


class ProjectConfig(BaseModel):
    """Root of the project file.

    Attributes:
        project: Project name, used for state keys and worker names
        stage: Deployment stage (dev, staging, prod, ...)
        region: AWS region
        account_id: AWS account id (resolved through STS when omitted)
        tracing: Enable X-Ray on functions and API stages
    """

    model_config = ConfigDict(extra="forbid")

    project: str = Field(default=DEFAULT_PROJECT_NAME, min_length=1)
    stage: str = Field(default=DEFAULT_STAGE, min_length=1)
    region: str = Field(default=DEFAULT_REGION, min_length=1)
    account_id: str | None = None
    tracing: bool = False
    polling: PollingConfig = Field(default_factory=PollingConfig)

    functions: list[FunctionConfig] = Field(default_factory=list)
    apis: list[ApiConfig] = Field(default_factory=list)
    kv: list[KvConfig] = Field(default_factory=list)
    sql: list[SqlConfig] = Field(default_factory=list)
    storage: list[StorageConfig] = Field(default_factory=list)
    queues: list[QueueConfig] = Field(default_factory=list)
    timers: list[TimerConfig] = Field(default_factory=list)
    secrets: list[SecretConfig] = Field(default_factory=list)
    parameters: list[ParameterConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_names(self) -> "ProjectConfig":
        """Names must be unique within each resource section."""
        sections: dict[str, list[str]] = {
            "functions": [f.name for f in self.functions],
            "apis": [a.name for a in self.apis],
            "kv": [k.name for k in self.kv],
            "sql": [s.name for s in self.sql],
            "storage": [s.name for s in self.storage],
            "queues": [q.name for q in self.queues],
            "timers": [t.name for t in self.timers],
            "secrets": [s.name for s in self.secrets],
            "parameters": [p.name for p in self.parameters],
        }
        for section, names in sections.items():
            seen: set[str] = set()
            for name in names:
                if name in seen:
                    raise ValueError(f"Duplicate name '{name}' in {section}")
                seen.add(name)
        return self
