"""
Environment validation for NebariApp resources.

These checks run before any derived object is written: the namespace has to
opt in to Nebari management and the backend Service has to expose the
declared port.
"""

import logging

from kubernetes import client
from kubernetes.client.rest import ApiException

from nebari_operator import constants
from nebari_operator.errors import ValidationError
from nebari_operator.utils.kubernetes import call_api, is_not_found, wrap_api_exception

logger = logging.getLogger(__name__)


async def validate_namespace_opt_in(core_api: client.CoreV1Api, namespace: str) -> None:
    """
    Require the ``nebari.dev/managed=true`` label on the namespace.

    Raises:
        ValidationError: Label absent or set to anything but "true"
        KubernetesAPIError: Namespace could not be read
    """
    try:
        ns = await call_api(core_api.read_namespace, name=namespace)
    except ApiException as e:
        if is_not_found(e):
            raise ValidationError(
                f"namespace {namespace} not found",
                reason=constants.REASON_NAMESPACE_NOT_OPTED_IN,
            ) from e
        raise wrap_api_exception(f"Failed to get namespace {namespace}", e) from e

    labels = (ns.metadata.labels if ns.metadata else None) or {}
    if labels.get(constants.MANAGED_NAMESPACE_LABEL) != "true":
        raise ValidationError(
            constants.ERROR_NAMESPACE_NOT_OPTED_IN.format(
                namespace, constants.MANAGED_NAMESPACE_LABEL
            ),
            reason=constants.REASON_NAMESPACE_NOT_OPTED_IN,
            user_action=(
                f"Label the namespace with {constants.MANAGED_NAMESPACE_LABEL}=true"
            ),
        )


async def validate_service(
    core_api: client.CoreV1Api, namespace: str, service_name: str, port: int
) -> None:
    """
    Require the backend Service to exist and expose ``port`` exactly.

    Raises:
        ValidationError: Service missing or port not exposed
        KubernetesAPIError: Service could not be read
    """
    try:
        service = await call_api(
            core_api.read_namespaced_service, name=service_name, namespace=namespace
        )
    except ApiException as e:
        if is_not_found(e):
            raise ValidationError(
                constants.ERROR_SERVICE_NOT_FOUND.format(service_name, namespace),
                reason=constants.REASON_SERVICE_NOT_FOUND,
                user_action="Create the Service or fix spec.service.name",
            ) from e
        raise wrap_api_exception(f"Failed to get service {service_name}", e) from e

    ports = (service.spec.ports if service.spec else None) or []
    if not any(p.port == port for p in ports):
        raise ValidationError(
            constants.ERROR_SERVICE_PORT_MISMATCH.format(service_name, port),
            reason=constants.REASON_SERVICE_NOT_FOUND,
            user_action="Fix spec.service.port to match a port exposed by the Service",
        )

    logger.debug(f"Service {namespace}/{service_name} exposes port {port}")
