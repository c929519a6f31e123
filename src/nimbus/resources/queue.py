"""SQS queues with optional dead-letter queue and worker function."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from botocore.exceptions import ClientError

from nimbus.config.defaults import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_VISIBILITY_TIMEOUT_S,
    DLQ_MAX_RECEIVES,
    DLQ_RETENTION_S,
    QUEUE_RETENTION_S,
)
from nimbus.lib.aws import is_not_found, provider_error
from nimbus.lib.logging_config import get_logger
from nimbus.lib.naming import env_key
from nimbus.models.policy import PolicyStatement, allow
from nimbus.models.state import ResourceKind
from nimbus.resources.base import Resource, ResourceContext

if TYPE_CHECKING:
    from nimbus.resources.function import Function

logger = get_logger(__name__)

QUEUE_ACTIONS = [
    "sqs:SendMessage",
    "sqs:ReceiveMessage",
    "sqs:DeleteMessage",
    "sqs:GetQueueAttributes",
    "sqs:GetQueueUrl",
]


class Queue(Resource):
    """Standard SQS queue.

    When a worker function is attached, ``connect_worker()`` wires it to the
    queue with an event source mapping once the function exists.
    """

    kind = ResourceKind.QUEUE

    def __init__(
        self,
        name: str,
        context: ResourceContext,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        visibility_timeout: int = DEFAULT_VISIBILITY_TIMEOUT_S,
        dead_letter: bool = False,
        max_receives: int = DLQ_MAX_RECEIVES,
    ) -> None:
        super().__init__(name, context)
        self.batch_size = batch_size
        self.visibility_timeout = visibility_timeout
        self.dead_letter = dead_letter
        self.max_receives = max_receives
        self.worker: Function | None = None
        self.url: str | None = None
        self.dlq_url: str | None = None
        self.dlq_arn: str | None = None
        self._arn: str | None = None

    @property
    def dlq_name(self) -> str:
        """Name of the dead-letter queue."""
        return f"{self.name}-dlq"

    def identifier(self) -> str:
        return self._arn or self.context.arn("sqs", self.name)

    def permission_grants(self) -> list[PolicyStatement]:
        grants = [allow(QUEUE_ACTIONS, self.identifier())]
        if self.dead_letter and self.dlq_arn:
            grants.append(allow(QUEUE_ACTIONS, self.dlq_arn))
        return grants

    def environment_bindings(self) -> dict[str, str]:
        return {
            env_key("QUEUE", self.name, "URL"): self.url or "",
            env_key("QUEUE", self.name, "ARN"): self.identifier(),
        }

    def record_metadata(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "deadLetter": self.dead_letter,
            "worker": self.worker.name if self.worker else None,
        }

    def attach_worker(self, function: Function) -> None:
        """Set the function consuming this queue."""
        self.worker = function

    def provision(self) -> None:
        client = self.context.client("sqs")
        try:
            if self.dead_letter:
                self.dlq_url, self.dlq_arn = self._ensure(
                    client,
                    self.dlq_name,
                    {"MessageRetentionPeriod": str(DLQ_RETENTION_S)},
                )

            attributes = {
                "VisibilityTimeout": str(self.visibility_timeout),
                "MessageRetentionPeriod": str(QUEUE_RETENTION_S),
            }
            if self.dead_letter and self.dlq_arn:
                attributes["RedrivePolicy"] = json.dumps(
                    {
                        "deadLetterTargetArn": self.dlq_arn,
                        "maxReceiveCount": self.max_receives,
                    }
                )
            self.url, self._arn = self._ensure(client, self.name, attributes)
        except ClientError as e:
            raise provider_error(f"queue {self.name}", e) from e

    def _ensure(
        self, client: Any, name: str, attributes: dict[str, str]
    ) -> tuple[str, str]:
        """Find a queue by name or create it; return (url, arn)."""
        try:
            url = client.get_queue_url(QueueName=name)["QueueUrl"]
            logger.info(f"Queue {name} already exists")
        except ClientError as e:
            if not is_not_found(e):
                raise
            logger.info(f"Creating queue {name}")
            url = client.create_queue(QueueName=name, Attributes=attributes)[
                "QueueUrl"
            ]
        response = client.get_queue_attributes(
            QueueUrl=url, AttributeNames=["QueueArn"]
        )
        return url, response["Attributes"]["QueueArn"]

    def connect_worker(self) -> None:
        """Create the event source mapping feeding the worker, if missing."""
        if self.worker is None:
            return
        client = self.context.client("lambda")
        function_arn = self.worker.identifier()
        try:
            response = client.list_event_source_mappings(
                EventSourceArn=self.identifier(), FunctionName=function_arn
            )
            if response.get("EventSourceMappings"):
                logger.info(f"Event source mapping for {self.name} already exists")
                return
            client.create_event_source_mapping(
                EventSourceArn=self.identifier(),
                FunctionName=function_arn,
                BatchSize=self.batch_size,
                Enabled=True,
            )
        except ClientError as e:
            raise provider_error(f"queue {self.name} event source", e) from e
        logger.info(f"Connected {self.worker.name} to queue {self.name}")

    def _teardown(self) -> None:
        sqs = self.context.client("sqs")
        lam = self.context.client("lambda")
        try:
            mappings = lam.list_event_source_mappings(EventSourceArn=self.identifier())
            for mapping in mappings.get("EventSourceMappings", []):
                lam.delete_event_source_mapping(UUID=mapping["UUID"])
        except ClientError as e:
            if not is_not_found(e):
                raise provider_error(f"queue {self.name} event source", e) from e

        self._delete(sqs, self.name)
        if self.dead_letter:
            self._delete(sqs, self.dlq_name)

    def _delete(self, client: Any, name: str) -> None:
        try:
            url = client.get_queue_url(QueueName=name)["QueueUrl"]
            client.delete_queue(QueueUrl=url)
        except ClientError as e:
            if is_not_found(e):
                logger.debug(f"Queue {name} already deleted")
                return
            raise provider_error(f"queue {name} delete", e) from e
        logger.info(f"Deleted queue {name}")

    @classmethod
    def from_record(cls, record: Any, context: ResourceContext) -> Queue:
        queue = cls(
            record.name,
            context,
            dead_letter=bool(record.metadata.get("deadLetter", False)),
        )
        queue._arn = record.arn
        queue.url = record.metadata.get("url")
        return queue
