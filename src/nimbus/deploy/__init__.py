"""Nimbus deployment engine.

This package reconciles declared resources against AWS, records them in the
remote state document and tears them down again.
"""

from nimbus.deploy.destroy import DESTROY_ORDER, destroy_deployment
from nimbus.deploy.engine import Nimbus
from nimbus.deploy.registry import RESOURCE_TYPES, resource_from_record
from nimbus.deploy.state import S3StateBackend, StateManager

__all__ = [
    "DESTROY_ORDER",
    "Nimbus",
    "RESOURCE_TYPES",
    "S3StateBackend",
    "StateManager",
    "destroy_deployment",
    "resource_from_record",
]
