"""Remote state store with a lock marker.

Two S3 objects exist per project inside the backend bucket:
``<project>.state.json`` holds every deployment of the project and
``<project>.lock`` marks a run in progress.
"""

from __future__ import annotations

import getpass
import json
import socket
from collections.abc import Callable
from typing import Any

from botocore.exceptions import ClientError
from pydantic import ValidationError as PydanticValidationError

from nimbus.config.backend import BackendProfile
from nimbus.lib.aws import ClientFactory, is_not_found, is_precondition_failed, provider_error
from nimbus.lib.errors import LockAcquisitionError, PollTimeoutError, StateError
from nimbus.lib.logging_config import get_logger
from nimbus.lib.polling import PollPolicy, poll_until
from nimbus.models.state import (
    Deployment,
    ResourceRecord,
    StateDocument,
    deployment_key,
    migrate_legacy_state,
    utc_now,
)

logger = get_logger(__name__)


def default_owner() -> str:
    """Identify the lock holder as ``user@host``."""
    return f"{getpass.getuser()}@{socket.gethostname()}"


class S3StateBackend:
    """Reads and writes the state document and lock marker in S3."""

    def __init__(
        self, profile: BackendProfile, project: str, clients: ClientFactory
    ) -> None:
        self.bucket = profile.bucket
        self.region = profile.region
        self.state_key = f"{project}.state.json"
        self.lock_key = f"{project}.lock"
        self._clients = clients

    @property
    def client(self) -> Any:
        return self._clients.client("s3", self.region)

    def read(self) -> dict[str, Any]:
        """Return the decoded state document, or ``{}`` if none exists.

        Raises:
            StateError: If the stored document is not valid JSON
        """
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=self.state_key)
        except ClientError as e:
            if is_not_found(e):
                return {}
            raise provider_error("state read", e) from e

        body = response["Body"].read()
        if not body:
            return {}
        try:
            data = json.loads(body)
        except json.JSONDecodeError as e:
            raise StateError(f"State document {self.state_key} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise StateError(f"State document {self.state_key} must be a JSON object")
        return data

    def write(self, data: dict[str, Any]) -> None:
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=self.state_key,
                Body=json.dumps(data, indent=2).encode("utf-8"),
                ContentType="application/json",
            )
        except ClientError as e:
            raise provider_error("state write", e) from e

    def try_lock(self, body: dict[str, Any]) -> bool:
        """Create the lock marker if absent. Returns False if it already exists."""
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=self.lock_key,
                Body=json.dumps(body).encode("utf-8"),
                IfNoneMatch="*",
            )
        except ClientError as e:
            if is_precondition_failed(e):
                return False
            raise provider_error("state lock", e) from e
        return True

    def read_lock(self) -> dict[str, Any] | None:
        """Return the lock marker body, or None when unlocked."""
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=self.lock_key)
        except ClientError as e:
            if is_not_found(e):
                return None
            raise provider_error("state lock read", e) from e
        try:
            return json.loads(response["Body"].read() or b"{}")
        except json.JSONDecodeError:
            # Markers written by older releases hold a plain string.
            return {}

    def delete_lock(self) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=self.lock_key)
        except ClientError as e:
            raise provider_error("state unlock", e) from e


class StateManager:
    """Deployment-scoped view of the state document.

    Every mutation is written back immediately so that an interrupted run
    leaves a state document describing everything created so far.
    """

    def __init__(
        self,
        backend: S3StateBackend,
        project: str,
        stage: str,
        region: str,
        *,
        lock_policy: PollPolicy | None = None,
        sleep: Callable[[float], None] | None = None,
        owner: str | None = None,
    ) -> None:
        self.backend = backend
        self.project = project
        self.stage = stage
        self.region = region
        self.lock_policy = lock_policy or PollPolicy(interval=1.0, max_attempts=30)
        self._sleep = sleep
        self.owner = owner or default_owner()
        self.document: StateDocument | None = None
        self._locked = False

    @property
    def key(self) -> str:
        """Composite key of the deployment this manager works on."""
        return deployment_key(self.stage, self.region)

    @property
    def locked(self) -> bool:
        """True while this manager holds the lock."""
        return self._locked

    def acquire_lock(self) -> None:
        """Create the lock marker, retrying while another run holds it.

        Raises:
            LockAcquisitionError: If the marker is still present after every
                attempt of the lock poll policy
        """
        body = {"owner": self.owner, "acquiredAt": utc_now().isoformat()}

        def attempt() -> bool | None:
            if self.backend.try_lock(body):
                return True
            logger.info(f"State for {self.project} is locked, waiting")
            return None

        kwargs: dict[str, Any] = {"wait_first": False}
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep
        try:
            poll_until(attempt, self.lock_policy, "state lock", **kwargs)
        except PollTimeoutError as e:
            raise LockAcquisitionError(self.backend.lock_key, e.attempts) from e
        self._locked = True
        logger.debug(f"Acquired lock {self.backend.lock_key}")

    def release_lock(self) -> None:
        """Delete the lock marker if this manager holds it."""
        if not self._locked:
            return
        self.backend.delete_lock()
        self._locked = False
        logger.debug(f"Released lock {self.backend.lock_key}")

    def force_unlock(self) -> dict[str, Any] | None:
        """Clear a lock left behind by a crashed run.

        Returns:
            The removed marker body, or None if there was no lock
        """
        marker = self.backend.read_lock()
        if marker is None:
            return None
        self.backend.delete_lock()
        self._locked = False
        logger.info(f"Removed lock {self.backend.lock_key} held by {marker.get('owner', 'unknown')}")
        return marker

    def read_full(self) -> StateDocument | None:
        """Read the whole document, migrating the legacy layout.

        Raises:
            StateError: If the document does not match the state schema
        """
        data = self.backend.read()
        if not data:
            return None
        data = migrate_legacy_state(data)
        data.setdefault("projectName", self.project)
        try:
            return StateDocument.model_validate(data)
        except PydanticValidationError as e:
            raise StateError(f"State document for {self.project} is invalid: {e}") from e

    def read(self) -> Deployment | None:
        """Read the deployment for this stage and region, if recorded."""
        self.document = self.read_full()
        if self.document is None:
            return None
        return self.document.deployments.get(self.key)

    def initialize(self, account_id: str) -> Deployment:
        """Load the document and make sure this deployment exists.

        Records already present are kept so that a re-deploy still knows
        about resources from earlier runs.
        """
        self.document = self.read_full() or StateDocument(project_name=self.project)
        deployment = self.document.deployments.get(self.key)
        if deployment is None:
            deployment = Deployment(stage=self.stage, region=self.region)
            self.document.deployments[self.key] = deployment
        deployment.account_id = account_id
        deployment.last_deployed = utc_now()
        return deployment

    @property
    def deployment(self) -> Deployment | None:
        if self.document is None:
            return None
        return self.document.deployments.get(self.key)

    def resources(self) -> list[ResourceRecord]:
        """Records of this deployment (empty before ``read``/``initialize``)."""
        deployment = self.deployment
        return list(deployment.resources) if deployment else []

    def add(self, record: ResourceRecord) -> None:
        """Record a resource, replacing any record with the same id, and save."""
        deployment = self.deployment
        if deployment is None:
            raise StateError("State not initialized; call initialize() first")
        deployment.put(record)
        self.save()

    def remove(self, record_id: str) -> None:
        """Forget a resource and save."""
        deployment = self.deployment
        if deployment is None or not deployment.remove(record_id):
            return
        self.save()

    def save(self) -> None:
        if self.document is None:
            raise StateError("State not initialized; call initialize() first")
        self.backend.write(self.document.to_json_dict())
