"""Naming conventions shared by every resource kind.

These transforms must stay stable across releases: environment binding keys
and provider-side names are looked up again by later deploy and destroy runs.
"""

from __future__ import annotations

import re

_BUCKET_SUFFIX = re.compile(r"-\d{8}-\d{6}$")
_BRACE_PARAM = re.compile(r"\{([^}]+)\}")
_COLON_PARAM = re.compile(r":([^/]+)")


def stage_name(stage: str, name: str) -> str:
    """Namespace a declared name with its stage (``dev-users``)."""
    return f"{stage}-{name}"


def parameter_name(stage: str, name: str) -> str:
    """Namespace a parameter path with its stage.

    ``db/url`` becomes ``/dev/db/url`` and ``/db/url`` becomes ``/dev/db/url``.
    """
    if name.startswith("/"):
        return f"/{stage}{name}"
    return f"/{stage}/{name}"


def role_name(stage: str, project: str) -> str:
    """Name of the shared function role for a deployment."""
    return f"{stage}-{project}-lambda-role"


def env_token(name: str) -> str:
    """Upper-snake form of a resource name used inside binding keys."""
    return name.upper().replace("-", "_")


def env_key(prefix: str, name: str, suffix: str | None = None) -> str:
    """Build an environment binding key.

    Args:
        prefix: Kind prefix (``KV``, ``QUEUE``, ...)
        name: Resource name, already stage-namespaced
        suffix: Optional facet (``ARN``, ``URL``, ...)

    Returns:
        Key such as ``QUEUE_DEV_ORDERS_URL``
    """
    key = f"{prefix}_{env_token(name)}"
    if suffix:
        key = f"{key}_{suffix}"
    return key


def parameter_env_key(parameter: str) -> str:
    """Binding key for a parameter path (``/dev/db/url`` -> ``PARAM_DEV_DB_URL``)."""
    token = parameter.lstrip("/").replace("/", "_").replace("-", "_").upper()
    return f"PARAM_{token}"


def bucket_base_name(bucket: str) -> str:
    """Strip the ``-YYYYMMDD-HHMMSS`` uniqueness suffix from a bucket name."""
    return _BUCKET_SUFFIX.sub("", bucket)


def normalize_path(path: str) -> str:
    """Rewrite ``:param`` segments into the gateway's ``{param}`` syntax."""
    segments = [segment for segment in path.split("/") if segment]
    normalized = [
        f"{{{segment[1:]}}}" if segment.startswith(":") else segment
        for segment in segments
    ]
    return "/" + "/".join(normalized)


def route_function_name(api: str, method: str, path: str) -> str:
    """Name of the function serving one route.

    ``GET /users/{id}`` on ``dev-shop`` becomes ``dev-shop-get-users-id``.
    """
    sanitized = path[1:] if path.startswith("/") else path
    sanitized = sanitized.replace("/", "-")
    sanitized = _BRACE_PARAM.sub(r"\1", sanitized)
    sanitized = _COLON_PARAM.sub(r"\1", sanitized)
    sanitized = sanitized.lower()
    return f"{api}-{method.lower()}-{sanitized or 'root'}"


def authorizer_function_name(api: str, authorizer: str) -> str:
    """Name of the function backing an API authorizer."""
    return f"{api}-authorizer-{authorizer}"


def queue_worker_name(project: str, queue: str) -> str:
    """Name of the worker function consuming a queue."""
    return f"{project}-queue-{queue}-worker"


def timer_worker_name(project: str, timer: str) -> str:
    """Name of the worker function triggered by a timer."""
    return f"{project}-timer-{timer}"
