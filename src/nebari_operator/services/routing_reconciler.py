"""
Routing reconciler for NebariApp resources.

Compiles the NebariApp routing configuration into a Gateway API HTTPRoute
attached to one of the shared gateways and keeps it in sync.
"""

from typing import Any

from kubernetes.client.rest import ApiException

from .. import constants
from ..errors import DependencyNotReadyError
from ..models.nebariapp import GatewayReference, NebariApp
from ..utils import events, naming
from ..utils.kubernetes import (
    GATEWAY,
    HTTPROUTE,
    is_conflict,
    owner_reference,
    standard_labels,
    wrap_api_exception,
)
from .base_reconciler import BaseReconciler


class RoutingReconciler(BaseReconciler):
    """Creates, updates and deletes the HTTPRoute of a NebariApp."""

    async def reconcile_routing(self, app: NebariApp) -> GatewayReference:
        """
        Ensure the HTTPRoute for ``app`` matches its spec.

        Sets the RoutingReady condition on ``app``.

        Returns:
            The gateway the route is attached to

        Raises:
            DependencyNotReadyError: Selected gateway does not exist
            KubernetesAPIError: HTTPRoute could not be created or updated
        """
        gateway_name = self.settings.gateway_name_for(app.spec.gateway)
        gateway_namespace = self.settings.gateway_namespace
        self.logger.info(
            f"Reconciling routing for {app.namespace}/{app.name}",
            gateway=gateway_name,
            resource_name=app.name,
            namespace=app.namespace,
        )

        gateway = await self.get_custom_object(GATEWAY, gateway_namespace, gateway_name)
        if gateway is None:
            message = constants.ERROR_GATEWAY_NOT_FOUND.format(
                gateway_name, gateway_namespace
            )
            events.warning(
                app.reference_body(), constants.EVENT_REASON_GATEWAY_NOT_FOUND, message
            )
            self.set_condition(
                app,
                constants.CONDITION_ROUTING_READY,
                constants.CONDITION_FALSE,
                constants.REASON_GATEWAY_NOT_FOUND,
                message,
            )
            raise DependencyNotReadyError(
                message, user_action=f"Create Gateway {gateway_namespace}/{gateway_name}"
            )

        desired = self.build_httproute(app, gateway_name)
        route_name = desired["metadata"]["name"]
        existing = await self.get_custom_object(HTTPROUTE, app.namespace, route_name)

        if existing is None:
            try:
                await self.create_custom_object(HTTPROUTE, app.namespace, desired)
            except ApiException as e:
                if is_conflict(e):
                    # Created concurrently, the next pass updates it
                    self.logger.debug(f"HTTPRoute {route_name} already exists")
                    self._mark_ready(app, "HTTPRoute already exists")
                    return GatewayReference(name=gateway_name, namespace=gateway_namespace)
                error = wrap_api_exception(f"Failed to create HTTPRoute {route_name}", e)
                self.set_condition(
                    app,
                    constants.CONDITION_ROUTING_READY,
                    constants.CONDITION_FALSE,
                    constants.REASON_CREATION_FAILED,
                    error.message,
                )
                raise error from e

            self.logger.info(f"Created HTTPRoute {app.namespace}/{route_name}")
            events.normal(
                app.reference_body(),
                constants.EVENT_REASON_HTTPROUTE_CREATED,
                f"Created HTTPRoute {route_name}",
            )
            self._mark_ready(app, "HTTPRoute created successfully")
            return GatewayReference(name=gateway_name, namespace=gateway_namespace)

        spec_changed = existing.get("spec") != desired["spec"]
        try:
            await self.replace_custom_object(
                HTTPROUTE, app.namespace, self.merge_desired(existing, desired)
            )
        except ApiException as e:
            if is_conflict(e):
                # Changed concurrently, redelivery retries with a fresh read
                self.logger.debug(f"HTTPRoute {route_name} update conflict")
                self._mark_ready(app, "HTTPRoute is configured and ready")
                return GatewayReference(name=gateway_name, namespace=gateway_namespace)
            error = wrap_api_exception(f"Failed to update HTTPRoute {route_name}", e)
            self.set_condition(
                app,
                constants.CONDITION_ROUTING_READY,
                constants.CONDITION_FALSE,
                constants.REASON_UPDATE_FAILED,
                error.message,
            )
            raise error from e

        if spec_changed:
            self.logger.info(f"Updated HTTPRoute {app.namespace}/{route_name}")
            events.normal(
                app.reference_body(),
                constants.EVENT_REASON_HTTPROUTE_UPDATED,
                f"Updated HTTPRoute {route_name}",
            )
        self._mark_ready(app, "HTTPRoute is configured and ready")
        return GatewayReference(name=gateway_name, namespace=gateway_namespace)

    def _mark_ready(self, app: NebariApp, message: str) -> None:
        self.set_condition(
            app,
            constants.CONDITION_ROUTING_READY,
            constants.CONDITION_TRUE,
            constants.REASON_HTTPROUTE_READY,
            message,
        )

    async def cleanup_httproute(self, app: NebariApp) -> None:
        """Delete the HTTPRoute of ``app``; an absent route is not an error."""
        route_name = naming.httproute_name(app.name)
        if await self.delete_custom_object(HTTPROUTE, app.namespace, route_name):
            self.logger.info(f"Deleted HTTPRoute {app.namespace}/{route_name}")
            events.normal(
                app.reference_body(),
                constants.EVENT_REASON_HTTPROUTE_DELETED,
                f"Deleted HTTPRoute {route_name}",
            )

    def build_httproute(self, app: NebariApp, gateway_name: str) -> dict[str, Any]:
        """
        Build the desired HTTPRoute for ``app``.

        The result only depends on the NebariApp and the gateway name, so
        repeated builds of an unchanged NebariApp are identical.
        """
        routing = app.spec.routing
        tls_enabled = routing.tls_enabled if routing else True
        section_name = constants.LISTENER_HTTPS if tls_enabled else constants.LISTENER_HTTP

        return {
            "apiVersion": HTTPROUTE.api_version,
            "kind": HTTPROUTE.kind,
            "metadata": {
                "name": naming.httproute_name(app.name),
                "namespace": app.namespace,
                "labels": standard_labels(app.name),
                "annotations": {
                    constants.TLS_ENABLED_ANNOTATION: "true" if tls_enabled else "false",
                },
                "ownerReferences": [owner_reference(app.reference_body())],
            },
            "spec": {
                "parentRefs": [
                    {
                        "name": gateway_name,
                        "namespace": self.settings.gateway_namespace,
                        "sectionName": section_name,
                    }
                ],
                "hostnames": [app.spec.hostname],
                "rules": [
                    {
                        "matches": self._build_matches(app),
                        "backendRefs": [
                            {
                                "name": app.spec.service.name,
                                "port": app.spec.service.port,
                            }
                        ],
                    }
                ],
            },
        }

    @staticmethod
    def _build_matches(app: NebariApp) -> list[dict[str, Any]]:
        # No routes means no matches; the gateway then matches every path
        routes = app.spec.routing.routes if app.spec.routing else []
        return [
            {"path": {"type": route.path_type, "value": route.path_prefix}}
            for route in routes
        ]
