"""IAM permission grant models."""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

POLICY_VERSION = "2012-10-17"


class Effect(str, Enum):
    """Statement effect."""

    ALLOW = "Allow"
    DENY = "Deny"


class PolicyStatement(BaseModel):
    """One permission grant.

    Grants are plain data. Combining them is concatenation; nothing here
    deduplicates or resolves contradicting effects.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    effect: Effect = Field(default=Effect.ALLOW, description="Allow or Deny")
    actions: list[str] = Field(..., min_length=1, description="IAM actions")
    resource: str | list[str] = Field(..., description="Target ARN(s)")

    @field_validator("effect", mode="before")
    @classmethod
    def normalize_effect(cls, v: Any) -> Any:
        """Accept lowercase effects in project files."""
        if isinstance(v, str):
            return v.capitalize()
        return v

    @field_validator("resource")
    @classmethod
    def validate_resource(cls, v: str | list[str]) -> str | list[str]:
        """Resource must not be empty."""
        if not v:
            raise ValueError("resource must not be empty")
        return v

    def to_iam(self) -> dict[str, Any]:
        """Render in IAM policy JSON shape."""
        return {
            "Effect": self.effect.value,
            "Action": list(self.actions),
            "Resource": self.resource,
        }


def allow(actions: list[str], resource: str | list[str]) -> PolicyStatement:
    """Shorthand for an Allow statement."""
    return PolicyStatement(effect=Effect.ALLOW, actions=actions, resource=resource)


class PolicyDocument(BaseModel):
    """Ordered list of statements attached to a role as one inline policy."""

    model_config = ConfigDict(extra="forbid")

    statements: list[PolicyStatement] = Field(default_factory=list)

    def to_iam(self) -> dict[str, Any]:
        """Render the full policy document."""
        return {
            "Version": POLICY_VERSION,
            "Statement": [statement.to_iam() for statement in self.statements],
        }

    def to_json(self) -> str:
        """Serialize for ``put_role_policy``."""
        return json.dumps(self.to_iam())
