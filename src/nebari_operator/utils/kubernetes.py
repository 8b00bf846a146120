"""
Kubernetes utilities for the Nebari operator.

This module provides helper functions for interacting with the Kubernetes API:

- Kubernetes client management and configuration
- Thin wrappers over the typed and custom-object APIs used by reconcilers
- Owner references, standard labels and secret encoding for derived objects
"""

import asyncio
import base64
import functools
import logging
from typing import Any

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from nebari_operator import constants
from nebari_operator.errors import KubernetesAPIError

logger = logging.getLogger(__name__)


def get_kubernetes_client() -> client.ApiClient:
    """
    Get configured Kubernetes API client.

    Tries in-cluster configuration first and falls back to the local
    kubeconfig for development.

    Returns:
        Configured Kubernetes API client
    """
    try:
        config.load_incluster_config()
        logger.debug("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        try:
            config.load_kube_config()
            logger.debug("Loaded kubeconfig from local environment")
        except config.ConfigException as e:
            logger.error(f"Failed to load Kubernetes configuration: {e}")
            raise

    return client.ApiClient()


async def call_api(func, *args, **kwargs) -> Any:
    """Run a blocking Kubernetes client call off the event loop."""
    return await asyncio.to_thread(functools.partial(func, *args, **kwargs))


def is_not_found(error: Exception) -> bool:
    return isinstance(error, ApiException) and error.status == 404


def is_conflict(error: Exception) -> bool:
    return isinstance(error, ApiException) and error.status == 409


def wrap_api_exception(message: str, error: ApiException) -> KubernetesAPIError:
    """Convert an ApiException into a KubernetesAPIError, 5xx being retryable."""
    http_status = getattr(error, "status", None)
    return KubernetesAPIError(
        message=message,
        reason=getattr(error, "reason", None),
        status=http_status,
        retryable=http_status is None or http_status >= 500,
    )


def owner_reference(owner: dict[str, Any]) -> dict[str, Any]:
    """
    Build a controller owner reference pointing at a NebariApp.

    Args:
        owner: NebariApp body with apiVersion, kind and metadata

    Returns:
        Owner reference dict for ``metadata.ownerReferences``
    """
    metadata = owner["metadata"]
    return {
        "apiVersion": owner.get(
            "apiVersion",
            f"{constants.NEBARIAPP_GROUP}/{constants.NEBARIAPP_VERSION}",
        ),
        "kind": owner.get("kind", constants.NEBARIAPP_KIND),
        "name": metadata["name"],
        "uid": metadata.get("uid"),
        "controller": True,
        "blockOwnerDeletion": True,
    }


def standard_labels(app_name: str) -> dict[str, str]:
    """Labels stamped on every object derived from a NebariApp."""
    return {
        constants.LABEL_NAME: constants.LABEL_NAME_VALUE,
        constants.LABEL_INSTANCE: app_name,
        constants.LABEL_MANAGED_BY: constants.LABEL_MANAGED_BY_VALUE,
    }


def encode_secret_value(value: str) -> str:
    return base64.b64encode(value.encode()).decode()


def decode_secret_value(value: str) -> str:
    return base64.b64decode(value).decode()


class CustomObjectRef:
    """Group/version/plural coordinates of a namespaced custom resource."""

    def __init__(self, group: str, version: str, plural: str, kind: str | None = None):
        self.group = group
        self.version = version
        self.plural = plural
        self.kind = kind

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"

    def coordinates(self) -> dict[str, str]:
        return {"group": self.group, "version": self.version, "plural": self.plural}


NEBARIAPP = CustomObjectRef(
    constants.NEBARIAPP_GROUP,
    constants.NEBARIAPP_VERSION,
    constants.NEBARIAPP_PLURAL,
    constants.NEBARIAPP_KIND,
)
GATEWAY = CustomObjectRef(
    constants.GATEWAY_API_GROUP,
    constants.GATEWAY_API_VERSION,
    constants.GATEWAY_PLURAL,
    "Gateway",
)
HTTPROUTE = CustomObjectRef(
    constants.GATEWAY_API_GROUP,
    constants.GATEWAY_API_VERSION,
    constants.HTTPROUTE_PLURAL,
    constants.HTTPROUTE_KIND,
)
SECURITY_POLICY = CustomObjectRef(
    constants.ENVOY_GATEWAY_GROUP,
    constants.ENVOY_GATEWAY_VERSION,
    constants.SECURITY_POLICY_PLURAL,
    constants.SECURITY_POLICY_KIND,
)
