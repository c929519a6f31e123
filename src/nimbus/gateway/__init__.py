"""REST gateway provisioning: APIs, route trees and custom domains."""

from nimbus.gateway.api import Api, Authorizer, Route
from nimbus.gateway.domain import (
    CertificateSaga,
    CustomDomain,
    DomainTarget,
    SagaState,
    ValidationRecord,
)
from nimbus.gateway.routes import RouteTree

__all__ = [
    "Api",
    "Authorizer",
    "CertificateSaga",
    "CustomDomain",
    "DomainTarget",
    "Route",
    "RouteTree",
    "SagaState",
    "ValidationRecord",
]
