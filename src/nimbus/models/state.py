"""Persisted state models.

The JSON layout (camelCase keys, ``type`` for the resource kind) is shared
with state documents written by earlier releases and must not change.
"""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

STATE_VERSION = "1.0.0"
LEGACY_STAGE = "dev"


class ResourceKind(str, Enum):
    """Closed set of resource kinds recorded in state."""

    API = "api"
    FUNCTION = "function"
    ROLE = "role"
    KV = "kv"
    SQL = "sql"
    STORAGE = "storage"
    QUEUE = "queue"
    TIMER = "timer"
    SECRET = "secret"
    PARAMETER = "parameter"


# Data-bearing kinds; destroying them requires force.
STATEFUL_KINDS = frozenset({ResourceKind.KV, ResourceKind.SQL, ResourceKind.STORAGE})


def utc_now() -> datetime:
    """Current time in UTC."""
    return datetime.now(timezone.utc)


def deployment_key(stage: str, region: str) -> str:
    """Composite key of a deployment inside the state document."""
    return f"{stage}-{region}"


class ResourceRecord(BaseModel):
    """One provisioned entity."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Unique within a deployment")
    kind: ResourceKind = Field(..., alias="type")
    name: str
    arn: str | None = Field(default=None, description="Provider identifier")
    region: str
    created_at: datetime = Field(default_factory=utc_now, alias="createdAt")
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("metadata", mode="before")
    @classmethod
    def default_metadata(cls, v: Any) -> Any:
        """Older documents may carry an explicit null."""
        return {} if v is None else v


class Deployment(BaseModel):
    """Resources provisioned for one (stage, region) pair."""

    model_config = ConfigDict(populate_by_name=True)

    stage: str
    region: str
    account_id: str = Field(default="", alias="accountId")
    resources: list[ResourceRecord] = Field(default_factory=list)
    last_deployed: datetime | None = Field(default=None, alias="lastDeployed")

    @field_validator("account_id", mode="before")
    @classmethod
    def default_account(cls, v: Any) -> Any:
        """Tolerate missing account ids from older documents."""
        return "" if v is None else v

    @property
    def key(self) -> str:
        """Composite key of this deployment."""
        return deployment_key(self.stage, self.region)

    def put(self, record: ResourceRecord) -> None:
        """Add a record, replacing any record with the same id."""
        self.resources = [r for r in self.resources if r.id != record.id]
        self.resources.append(record)
        self.last_deployed = utc_now()

    def remove(self, record_id: str) -> bool:
        """Remove a record by id. Returns True if one was removed."""
        remaining = [r for r in self.resources if r.id != record_id]
        removed = len(remaining) != len(self.resources)
        self.resources = remaining
        return removed

    def get(self, record_id: str) -> ResourceRecord | None:
        """Return the record with this id, if any."""
        return next((r for r in self.resources if r.id == record_id), None)

    def of_kind(self, kind: ResourceKind) -> list[ResourceRecord]:
        """Records of one kind, in insertion order."""
        return [r for r in self.resources if r.kind == kind]


class StateDocument(BaseModel):
    """Root object persisted as a single remote JSON document."""

    model_config = ConfigDict(populate_by_name=True)

    version: str = Field(default=STATE_VERSION)
    project_name: str = Field(..., alias="projectName")
    deployments: dict[str, Deployment] = Field(default_factory=dict)

    def to_json_dict(self) -> dict[str, Any]:
        """Serialize with the persisted key names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def is_legacy_state(data: dict[str, Any]) -> bool:
    """True for single-deployment documents written before multi-stage support."""
    return "resources" in data and "deployments" not in data


def migrate_legacy_state(data: dict[str, Any]) -> dict[str, Any]:
    """Lift a legacy document into the multi-deployment layout.

    The legacy resources become a single ``dev-<region>`` deployment.
    Documents already in the current layout are returned unchanged, so
    migrating twice yields the same result as migrating once. The input is
    never mutated.

    Args:
        data: Raw decoded state document

    Returns:
        A document with a ``deployments`` mapping
    """
    if not is_legacy_state(data):
        return copy.deepcopy(data)

    region = data.get("region")
    key = deployment_key(LEGACY_STAGE, str(region))
    return {
        "version": data.get("version") or STATE_VERSION,
        "projectName": data.get("projectName"),
        "deployments": {
            key: {
                "stage": LEGACY_STAGE,
                "region": region,
                "accountId": data.get("accountId"),
                "resources": copy.deepcopy(data.get("resources") or []),
                "lastDeployed": data.get("lastDeployed"),
            }
        },
    }
