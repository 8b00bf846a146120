"""
Base reconciler class providing common patterns for NebariApp phases.

This module defines the BaseReconciler class that owns Kubernetes API access,
structured logging and the get/create/replace/delete discipline shared by the
routing and auth phases for their derived custom objects.
"""

from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..models.nebariapp import NebariApp
from ..observability.logging import OperatorLogger
from ..settings import Settings
from ..settings import settings as default_settings
from ..utils import conditions
from ..utils.kubernetes import (
    CustomObjectRef,
    call_api,
    is_not_found,
    wrap_api_exception,
)


class BaseReconciler:
    """
    Base class for NebariApp reconcilers.

    Provides common patterns for:
    - Kubernetes client management
    - Reading, creating, replacing and deleting derived custom objects
    - Structured logging
    """

    def __init__(
        self,
        k8s_client: client.ApiClient | None = None,
        settings: Settings | None = None,
    ):
        """
        Initialize base reconciler.

        Args:
            k8s_client: Kubernetes API client, will be created if not provided
            settings: Operator settings, defaults to the process-wide instance
        """
        self.k8s_client = k8s_client
        self.settings = settings or default_settings
        self.logger = OperatorLogger(self.__class__.__name__)
        self._core_api: client.CoreV1Api | None = None
        self._custom_api: client.CustomObjectsApi | None = None

    @property
    def kubernetes_client(self) -> client.ApiClient:
        """Get or create Kubernetes API client."""
        if self.k8s_client is None:
            from ..utils.kubernetes import get_kubernetes_client

            self.k8s_client = get_kubernetes_client()
        return self.k8s_client

    @property
    def core_api(self) -> client.CoreV1Api:
        if self._core_api is None:
            self._core_api = client.CoreV1Api(self.kubernetes_client)
        return self._core_api

    @property
    def custom_api(self) -> client.CustomObjectsApi:
        if self._custom_api is None:
            self._custom_api = client.CustomObjectsApi(self.kubernetes_client)
        return self._custom_api

    async def get_custom_object(
        self, ref: CustomObjectRef, namespace: str, name: str
    ) -> dict[str, Any] | None:
        """
        Read a namespaced custom object.

        Returns:
            The object, or None when it does not exist

        Raises:
            KubernetesAPIError: Any error other than 404
        """
        try:
            return await call_api(
                self.custom_api.get_namespaced_custom_object,
                namespace=namespace,
                name=name,
                **ref.coordinates(),
            )
        except ApiException as e:
            if is_not_found(e):
                return None
            raise wrap_api_exception(f"Failed to get {ref.kind} {name}", e) from e

    async def create_custom_object(
        self, ref: CustomObjectRef, namespace: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        return await call_api(
            self.custom_api.create_namespaced_custom_object,
            namespace=namespace,
            body=body,
            **ref.coordinates(),
        )

    async def replace_custom_object(
        self, ref: CustomObjectRef, namespace: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        """Replace an object; ``body`` carries the resourceVersion that was read."""
        return await call_api(
            self.custom_api.replace_namespaced_custom_object,
            namespace=namespace,
            name=body["metadata"]["name"],
            body=body,
            **ref.coordinates(),
        )

    async def delete_custom_object(
        self, ref: CustomObjectRef, namespace: str, name: str
    ) -> bool:
        """
        Delete a namespaced custom object.

        Returns:
            True if an object was deleted, False if it was already gone

        Raises:
            KubernetesAPIError: Any error other than 404
        """
        try:
            await call_api(
                self.custom_api.delete_namespaced_custom_object,
                namespace=namespace,
                name=name,
                **ref.coordinates(),
            )
        except ApiException as e:
            if is_not_found(e):
                return False
            raise wrap_api_exception(f"Failed to delete {ref.kind} {name}", e) from e
        return True

    @staticmethod
    def merge_desired(
        existing: dict[str, Any], desired: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Overlay the desired spec and managed metadata onto an existing object.

        The full spec is overwritten; labels and annotations are merged so keys
        added by other controllers survive.
        """
        updated = dict(existing)
        metadata = dict(existing.get("metadata") or {})
        desired_metadata = desired["metadata"]
        for key in ("labels", "annotations"):
            if key in desired_metadata:
                metadata[key] = {
                    **(metadata.get(key) or {}),
                    **desired_metadata[key],
                }
        if "ownerReferences" in desired_metadata:
            metadata["ownerReferences"] = desired_metadata["ownerReferences"]
        updated["metadata"] = metadata
        updated["spec"] = desired["spec"]
        return updated

    @staticmethod
    def set_condition(
        app: NebariApp, condition_type: str, status: str, reason: str, message: str
    ) -> None:
        """Record a condition on the in-memory NebariApp status."""
        app.status.conditions = conditions.set_condition(
            app.status.conditions,
            condition_type,
            status,
            reason,
            message,
            observed_generation=app.generation,
        )
