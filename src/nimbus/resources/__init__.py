"""Provisionable resource kinds."""

from nimbus.resources.base import Resource, ResourceContext
from nimbus.resources.function import Function
from nimbus.resources.kv import KvTable
from nimbus.resources.parameter import Parameter
from nimbus.resources.queue import Queue
from nimbus.resources.role import Role
from nimbus.resources.secret import Secret
from nimbus.resources.sql import SqlCluster
from nimbus.resources.storage import StorageBucket
from nimbus.resources.timer import Timer

__all__ = [
    "Function",
    "KvTable",
    "Parameter",
    "Queue",
    "Resource",
    "ResourceContext",
    "Role",
    "Secret",
    "SqlCluster",
    "StorageBucket",
    "Timer",
]
