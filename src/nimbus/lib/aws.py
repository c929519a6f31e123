"""AWS client handles and provider error classification."""

from __future__ import annotations

import threading
from typing import Any

import boto3
from botocore.exceptions import ClientError

from nimbus.lib.errors import DeploymentError

# Error codes that mean "the thing is not there". Expected on create paths
# and treated as success on destroy paths.
NOT_FOUND_CODES = frozenset(
    {
        "404",
        "NotFound",
        "NotFoundException",
        "NoSuchKey",
        "NoSuchBucket",
        "NoSuchEntity",
        "NoSuchEntityException",
        "ResourceNotFoundException",
        "ParameterNotFound",
        "QueueDoesNotExist",
        "AWS.SimpleQueueService.NonExistentQueue",
    }
)

# Error codes that mean "already there". Treated as idempotent success.
CONFLICT_CODES = frozenset(
    {
        "ConflictException",
        "ResourceConflictException",
        "EntityAlreadyExists",
        "BucketAlreadyOwnedByYou",
    }
)

# Conditional-write rejections from S3 (If-None-Match on an existing key).
PRECONDITION_CODES = frozenset(
    {"PreconditionFailed", "412", "ConditionalRequestConflict"}
)


def error_code(exc: BaseException) -> str | None:
    """Return the provider error code carried by a botocore ClientError."""
    if not isinstance(exc, ClientError):
        return None
    return str(exc.response.get("Error", {}).get("Code", "")) or None


def is_not_found(exc: BaseException) -> bool:
    """True if exc is a provider error meaning the resource is absent."""
    code = error_code(exc)
    if code in NOT_FOUND_CODES:
        return True
    if isinstance(exc, ClientError):
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        return status == 404
    return False


def is_conflict(exc: BaseException) -> bool:
    """True if exc is a provider error meaning the resource already exists."""
    return error_code(exc) in CONFLICT_CODES


def is_precondition_failed(exc: BaseException) -> bool:
    """True if exc is a rejected conditional write."""
    return error_code(exc) in PRECONDITION_CODES


def provider_error(operation: str, exc: ClientError) -> DeploymentError:
    """Wrap a ClientError into a DeploymentError keeping the provider code."""
    error = exc.response.get("Error", {})
    return DeploymentError(
        operation=operation,
        message=error.get("Message") or str(exc),
        code=error.get("Code"),
    )


class ClientFactory:
    """Creates and caches boto3 clients for one deploy/destroy invocation.

    Clients are cached per (service, region). Every resource receives the
    factory in its constructor instead of reaching for module-level clients.
    """

    def __init__(self, session: boto3.session.Session | None = None) -> None:
        """Initialize the factory.

        Args:
            session: boto3 session to create clients from. A default session
                is created when omitted.
        """
        self._session = session or boto3.session.Session()
        self._clients: dict[tuple[str, str | None], Any] = {}
        self._lock = threading.Lock()

    def client(self, service: str, region: str | None = None) -> Any:
        """Return a cached client for a service in a region."""
        key = (service, region)
        with self._lock:
            if key not in self._clients:
                self._clients[key] = self._session.client(service, region_name=region)
            return self._clients[key]

    def close(self) -> None:
        """Close every client created by this factory."""
        with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            close = getattr(client, "close", None)
            if callable(close):
                close()
