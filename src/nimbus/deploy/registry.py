"""Map recorded resource kinds back to resource classes."""

from __future__ import annotations

from nimbus.gateway.api import Api
from nimbus.lib.errors import StateError
from nimbus.models.state import ResourceKind, ResourceRecord
from nimbus.resources import (
    Function,
    KvTable,
    Parameter,
    Queue,
    Role,
    Secret,
    SqlCluster,
    StorageBucket,
    Timer,
)
from nimbus.resources.base import Resource, ResourceContext

RESOURCE_TYPES: dict[ResourceKind, type[Resource]] = {
    ResourceKind.API: Api,
    ResourceKind.FUNCTION: Function,
    ResourceKind.ROLE: Role,
    ResourceKind.KV: KvTable,
    ResourceKind.SQL: SqlCluster,
    ResourceKind.STORAGE: StorageBucket,
    ResourceKind.QUEUE: Queue,
    ResourceKind.TIMER: Timer,
    ResourceKind.SECRET: Secret,
    ResourceKind.PARAMETER: Parameter,
}


def resource_from_record(record: ResourceRecord, context: ResourceContext) -> Resource:
    """Rebuild the resource a state record describes.

    Raises:
        StateError: If the record's kind has no resource class
    """
    resource_type = RESOURCE_TYPES.get(record.kind)
    if resource_type is None:
        raise StateError(f"No resource type for kind {record.kind!r}")
    return resource_type.from_record(record, context)
