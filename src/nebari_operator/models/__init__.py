"""
Models package - Pydantic models for type-safe resource handling.

Defines data models for:
- NebariApp specifications and status
- Keycloak Admin API client payloads
"""

from .keycloak_api import ClientRepresentation, CredentialRepresentation
from .nebariapp import (
    AuthConfig,
    Condition,
    GatewayReference,
    NebariApp,
    NebariAppSpec,
    NebariAppStatus,
    ResourceReference,
    RouteMatch,
    RoutingConfig,
    ServiceReference,
    TLSConfig,
)

__all__ = [
    "AuthConfig",
    "ClientRepresentation",
    "Condition",
    "CredentialRepresentation",
    "GatewayReference",
    "NebariApp",
    "NebariAppSpec",
    "NebariAppStatus",
    "ResourceReference",
    "RouteMatch",
    "RoutingConfig",
    "ServiceReference",
    "TLSConfig",
]
