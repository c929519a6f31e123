"""EventBridge schedule rules."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from botocore.exceptions import ClientError

from nimbus.lib.aws import is_not_found, provider_error
from nimbus.lib.errors import ValidationError
from nimbus.lib.logging_config import get_logger
from nimbus.lib.naming import env_key
from nimbus.models.project import SCHEDULE_PATTERN
from nimbus.models.state import ResourceKind
from nimbus.resources.base import Resource, ResourceContext
from nimbus.resources.function import statement_id

if TYPE_CHECKING:
    from nimbus.resources.function import Function

logger = get_logger(__name__)

EVENTS_PRINCIPAL = "events.amazonaws.com"


class Timer(Resource):
    """Rule firing a worker function on a ``rate(...)`` or ``cron(...)`` schedule."""

    kind = ResourceKind.TIMER

    def __init__(
        self,
        name: str,
        context: ResourceContext,
        *,
        schedule: str = "",
        enabled: bool = True,
        description: str | None = None,
        validate: bool = True,
    ) -> None:
        super().__init__(name, context)
        if validate and not SCHEDULE_PATTERN.match(schedule):
            raise ValidationError(
                field=f"{name}.schedule",
                message="Schedule must be a rate or cron expression",
                expected="'rate(...)' or 'cron(...)'",
                actual=schedule,
            )
        self.schedule = schedule
        self.enabled = enabled
        self.description = description
        self.worker: Function | None = None
        self._arn: str | None = None

    def identifier(self) -> str:
        return self._arn or self.context.arn("events", f"rule/{self.name}")

    def environment_bindings(self) -> dict[str, str]:
        return {
            env_key("TIMER", self.name, "NAME"): self.name,
            env_key("TIMER", self.name, "ARN"): self.identifier(),
        }

    def record_metadata(self) -> dict[str, Any]:
        return {
            "schedule": self.schedule,
            "worker": self.worker.name if self.worker else None,
        }

    def attach_worker(self, function: Function) -> None:
        """Set the function the rule triggers."""
        self.worker = function

    def provision(self) -> None:
        client = self.context.client("events")
        try:
            try:
                response = client.describe_rule(Name=self.name)
                self._arn = response.get("Arn")
                logger.info(f"Rule {self.name} already exists")
                return
            except ClientError as e:
                if not is_not_found(e):
                    raise

            logger.info(f"Creating rule {self.name} ({self.schedule})")
            response = client.put_rule(
                Name=self.name,
                Description=self.description or f"Timer managed by Nimbus: {self.name}",
                ScheduleExpression=self.schedule,
                State="ENABLED" if self.enabled else "DISABLED",
            )
        except ClientError as e:
            raise provider_error(f"rule {self.name}", e) from e
        self._arn = response.get("RuleArn")

    def attach_target(self) -> None:
        """Point the rule at its worker and let EventBridge invoke it."""
        if self.worker is None:
            return
        client = self.context.client("events")
        try:
            client.put_targets(
                Rule=self.name,
                Targets=[{"Id": "1", "Arn": self.worker.identifier()}],
            )
        except ClientError as e:
            raise provider_error(f"rule {self.name} target", e) from e

        self.worker.add_invoke_permission(
            statement_id("eventbridge", self.name),
            EVENTS_PRINCIPAL,
            self.identifier(),
        )
        logger.info(f"Rule {self.name} now triggers {self.worker.name}")

    def _teardown(self) -> None:
        client = self.context.client("events")
        try:
            targets = client.list_targets_by_rule(Rule=self.name).get("Targets", [])
            if targets:
                client.remove_targets(
                    Rule=self.name, Ids=[target["Id"] for target in targets]
                )
            client.delete_rule(Name=self.name)
        except ClientError as e:
            if is_not_found(e):
                logger.debug(f"Rule {self.name} already deleted")
                return
            raise provider_error(f"rule {self.name} delete", e) from e
        logger.info(f"Deleted rule {self.name}")

    @classmethod
    def from_record(cls, record: Any, context: ResourceContext) -> Timer:
        timer = cls(
            record.name,
            context,
            schedule=record.metadata.get("schedule") or "",
            validate=False,
        )
        timer._arn = record.arn
        return timer
