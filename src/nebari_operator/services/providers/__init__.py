"""
OIDC provider strategies.

The registry is built once at startup: ``generic-oidc`` is always available,
``keycloak`` only when KEYCLOAK_ENABLED is set.
"""

import logging

import httpx
from kubernetes import client

from nebari_operator.settings import Settings

from .base import OIDCProvider
from .generic_oidc import GenericOIDCProvider
from .keycloak import KeycloakProvider

logger = logging.getLogger(__name__)


def build_providers(
    settings: Settings,
    core_api: client.CoreV1Api,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, OIDCProvider]:
    """Create the provider registry keyed by ``spec.auth.provider`` value."""
    providers: dict[str, OIDCProvider] = {
        GenericOIDCProvider.name: GenericOIDCProvider(),
    }
    if settings.keycloak_enabled:
        providers[KeycloakProvider.name] = KeycloakProvider(
            settings, core_api, transport=transport
        )
    logger.info(f"Registered OIDC providers: {', '.join(sorted(providers))}")
    return providers


__all__ = [
    "GenericOIDCProvider",
    "KeycloakProvider",
    "OIDCProvider",
    "build_providers",
]
