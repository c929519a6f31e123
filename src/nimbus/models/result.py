"""Deploy and destroy outcome models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from nimbus.models.state import ResourceKind


class ProvisionedResource(BaseModel):
    """Summary line for one provisioned resource."""

    model_config = ConfigDict(extra="forbid")

    kind: ResourceKind
    name: str
    arn: str | None = None
    url: str | None = None
    details: dict[str, str] = Field(default_factory=dict)


class DeploymentResult(BaseModel):
    """Everything a deploy run provisioned, in provisioning order."""

    model_config = ConfigDict(extra="forbid")

    project: str
    stage: str
    region: str
    account_id: str
    resources: list[ProvisionedResource] = Field(default_factory=list)

    def add(self, resource: ProvisionedResource) -> None:
        """Append a summary line."""
        self.resources.append(resource)

    def of_kind(self, kind: ResourceKind) -> list[ProvisionedResource]:
        """Summary lines for one kind."""
        return [r for r in self.resources if r.kind == kind]

    def grouped(self) -> dict[ResourceKind, list[ProvisionedResource]]:
        """Summary lines grouped by kind, keeping first-seen kind order."""
        groups: dict[ResourceKind, list[ProvisionedResource]] = {}
        for resource in self.resources:
            groups.setdefault(resource.kind, []).append(resource)
        return groups


class DestroyResult(BaseModel):
    """Outcome of a destroy run."""

    model_config = ConfigDict(extra="forbid")

    project: str
    stage: str
    region: str
    destroyed: list[ProvisionedResource] = Field(default_factory=list)
    skipped: list[ProvisionedResource] = Field(
        default_factory=list, description="Stateful resources kept without force"
    )
