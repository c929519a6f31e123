"""Base interface shared by every provisionable resource."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, ClassVar, TypeVar

from nimbus.lib.aws import ClientFactory
from nimbus.lib.errors import ForceRequiredError, ValidationError
from nimbus.lib.polling import poll_until
from nimbus.models.policy import PolicyStatement
from nimbus.models.project import PollingConfig
from nimbus.models.state import ResourceKind, ResourceRecord

T = TypeVar("T")
R = TypeVar("R", bound="Resource")


@dataclass
class ResourceContext:
    """Per-invocation collaborators shared by every resource.

    One context lives for a single deploy or destroy run. The account id is
    filled in once the caller identity is resolved, so ARNs computed before
    that point are placeholders.

    Attributes:
        clients: Factory handing out cached boto3 clients
        region: Region resources are provisioned in
        account_id: AWS account id, empty until resolved
        polling: Poll policies for eventually-consistent waits
        sleep: Sleep function used by poll loops
    """

    clients: ClientFactory
    region: str
    account_id: str = ""
    polling: PollingConfig = field(default_factory=PollingConfig)
    sleep: Callable[[float], None] = time.sleep

    def client(self, service: str, region: str | None = None) -> Any:
        """Return a client for a service, defaulting to the context region."""
        return self.clients.client(service, region or self.region)

    def arn(self, service: str, resource: str) -> str:
        """Build a regional ARN in this account."""
        return f"arn:aws:{service}:{self.region}:{self.account_id}:{resource}"

    def poll(self, check: Callable[[], T | None], policy: str, operation: str) -> T:
        """Run a bounded poll loop using a named policy from ``polling``."""
        return poll_until(
            check, getattr(self.polling, policy), operation, sleep=self.sleep
        )


class Resource(ABC):
    """A provisionable entity.

    ``provision()`` checks remote existence first and then creates or
    updates, so calling it twice is safe. ``destroy()`` treats an already
    absent resource as success. Stateful kinds refuse to be destroyed unless
    ``force`` is passed; the refusal happens locally without a remote call.
    """

    kind: ClassVar[ResourceKind]
    stateful: ClassVar[bool] = False

    def __init__(self, name: str, context: ResourceContext) -> None:
        if not name or not name.strip():
            raise ValidationError(
                field="name",
                message=f"{self.kind.value} name must not be empty",
                expected="non-empty string",
                actual=repr(name),
            )
        self.name = name
        self.context = context

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"

    @property
    def region(self) -> str:
        """Region the resource lives in."""
        return self.context.region

    @abstractmethod
    def identifier(self) -> str:
        """Stable identifier (ARN, or synthetic ARN before provisioning)."""

    def permission_grants(self) -> list[PolicyStatement]:
        """Statements a function needs to use this resource."""
        return []

    def environment_bindings(self) -> dict[str, str]:
        """Environment variables exposed to functions using this resource."""
        return {}

    @abstractmethod
    def provision(self) -> None:
        """Create the resource or bring it up to date.

        Raises:
            DeploymentError: If the provider rejects a call
            PollTimeoutError: If a readiness wait exceeds its ceiling
        """

    def destroy(self, force: bool = False) -> None:
        """Tear the resource down.

        Args:
            force: Required for stateful resources

        Raises:
            ForceRequiredError: Stateful resource without force
            DeploymentError: If the provider rejects a call
        """
        if self.stateful and not force:
            raise ForceRequiredError(self.kind.value, self.name)
        self._teardown()

    @abstractmethod
    def _teardown(self) -> None:
        """Delete remote objects, tolerating absence."""

    def record_metadata(self) -> dict[str, Any]:
        """Extra fields persisted with the state record."""
        return {}

    def to_record(self) -> ResourceRecord:
        """State record describing this resource."""
        return ResourceRecord(
            id=self.identifier(),
            kind=self.kind,
            name=self.name,
            arn=self.identifier(),
            region=self.region,
            metadata=self.record_metadata(),
        )

    @classmethod
    def from_record(cls: type[R], record: ResourceRecord, context: ResourceContext) -> R:
        """Rebuild a resource from its state record for teardown."""
        return cls(record.name, context)  # type: ignore[call-arg]
