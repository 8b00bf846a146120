"""
Auth reconciler for NebariApp resources.

Selects the OIDC provider, optionally provisions the client, checks that the
client secret exists and materializes an Envoy Gateway SecurityPolicy that
enforces OIDC on the NebariApp's HTTPRoute.
"""

from typing import Any

from kubernetes.client.rest import ApiException

from .. import constants
from ..errors import ConfigurationError, DependencyNotReadyError, OperatorError
from ..models.nebariapp import NebariApp, ResourceReference
from ..utils import conditions, events, naming
from ..utils.kubernetes import (
    HTTPROUTE,
    SECURITY_POLICY,
    call_api,
    is_conflict,
    is_not_found,
    owner_reference,
    standard_labels,
    wrap_api_exception,
)
from .base_reconciler import BaseReconciler
from .providers import OIDCProvider


class AuthReconciler(BaseReconciler):
    """Reconciles the authentication side of a NebariApp."""

    def __init__(self, providers: dict[str, OIDCProvider], **kwargs):
        super().__init__(**kwargs)
        self.providers = providers

    async def reconcile_auth(self, app: NebariApp) -> ResourceReference | None:
        """
        Configure OIDC authentication for ``app``.

        Sets the AuthReady condition on ``app``. Disabled auth is a valid
        terminal state and is not reported as an error.

        Returns:
            Reference to the client secret, or None when auth is disabled

        Raises:
            OperatorError: Any auth step failed
        """
        auth = app.spec.auth
        if auth is None or not auth.enabled:
            self.set_condition(
                app,
                constants.CONDITION_AUTH_READY,
                constants.CONDITION_FALSE,
                constants.REASON_AUTH_DISABLED,
                "Authentication is not enabled for this app",
            )
            return None

        self.logger.info(
            f"Reconciling auth for {app.namespace}/{app.name}",
            provider=auth.provider,
            resource_name=app.name,
            namespace=app.namespace,
        )

        provider = self.providers.get(auth.provider)
        if provider is None:
            error = ConfigurationError(
                f"unsupported OIDC provider: {auth.provider}",
                user_action="Set spec.auth.provider to one of: "
                + ", ".join(sorted(self.providers)),
            )
            self._fail(app, constants.REASON_INVALID_PROVIDER, "Invalid OIDC provider", error)
            raise error

        if auth.provision_client:
            if provider.supports_provisioning():
                await self._provision(app, provider)
            else:
                self.logger.warning(
                    f"Provider {provider.name} does not support client provisioning, "
                    "expecting an existing client secret",
                    provider=provider.name,
                )

        secret_name = naming.client_secret_name(app.name, auth.client_secret_ref)
        try:
            await self.validate_client_secret(app.namespace, secret_name)
        except OperatorError as error:
            self._fail(
                app,
                constants.REASON_VALIDATION_FAILED,
                "Auth configuration validation failed",
                error,
            )
            raise

        try:
            created = await self._upsert_security_policy(app, provider, secret_name)
        except OperatorError as error:
            self._fail(
                app,
                constants.REASON_SECURITY_POLICY_FAILED,
                "Failed to reconcile SecurityPolicy",
                error,
            )
            raise

        policy_name = naming.security_policy_name(app.name)
        if created:
            events.normal(
                app.reference_body(),
                constants.EVENT_REASON_SECURITY_POLICY_CREATED,
                f"Created SecurityPolicy {policy_name}",
            )

        if not self._auth_ready(app):
            events.normal(
                app.reference_body(),
                constants.EVENT_REASON_AUTH_CONFIGURED,
                f"Authentication configured with provider {provider.name}",
            )
        self.set_condition(
            app,
            constants.CONDITION_AUTH_READY,
            constants.CONDITION_TRUE,
            constants.REASON_AUTH_CONFIGURED,
            f"Authentication configured with provider {provider.name}",
        )
        return ResourceReference(name=secret_name, namespace=app.namespace)

    async def cleanup_auth(self, app: NebariApp) -> None:
        """
        Deprovision the OIDC client of ``app`` if the operator provisioned it.

        The SecurityPolicy and client secret are owned by the NebariApp and go
        away with it.

        Raises:
            OperatorError: Deprovisioning failed
        """
        auth = app.spec.auth
        if auth is None or not auth.enabled or not auth.provision_client:
            return

        provider = self.providers.get(auth.provider)
        if provider is None:
            self.logger.warning(
                f"Provider {auth.provider} not registered, skipping client cleanup",
                provider=auth.provider,
            )
            return
        if not provider.supports_provisioning():
            return

        client_id = provider.get_client_id(app)
        self.logger.info(
            f"Deleting OIDC client {client_id}", client_id=client_id, provider=provider.name
        )
        await provider.delete_client(app)
        events.normal(
            app.reference_body(),
            constants.EVENT_REASON_CLIENT_DELETED,
            f"Deleted OIDC client {client_id}",
        )

    async def reject_without_routing(self, app: NebariApp) -> None:
        """
        Refuse to enforce auth for an app that has no HTTPRoute.

        The SecurityPolicy targets the HTTPRoute, so one left from an earlier
        pass is deleted and no client is provisioned.

        Raises:
            ConfigurationError: Always, once AuthReady is set False
            KubernetesAPIError: The stale SecurityPolicy could not be deleted
        """
        policy_name = naming.security_policy_name(app.name)
        if await self.delete_custom_object(SECURITY_POLICY, app.namespace, policy_name):
            self.logger.info(f"Deleted SecurityPolicy {app.namespace}/{policy_name}")

        error = ConfigurationError(
            "auth requires spec.routing, the SecurityPolicy targets the HTTPRoute",
            user_action="Add spec.routing or disable spec.auth",
        )
        self._fail(app, constants.REASON_ROUTING_REQUIRED, "Auth not configured", error)
        raise error

    async def validate_client_secret(self, namespace: str, secret_name: str) -> None:
        """
        Require the client secret to exist and carry the ``client-secret`` key.

        Raises:
            DependencyNotReadyError: Secret or key missing
            KubernetesAPIError: Secret could not be read
        """
        try:
            secret = await call_api(
                self.core_api.read_namespaced_secret, name=secret_name, namespace=namespace
            )
        except ApiException as e:
            if is_not_found(e):
                raise DependencyNotReadyError(
                    constants.ERROR_MISSING_CLIENT_SECRET.format(secret_name, namespace),
                    user_action=f"Create Secret {namespace}/{secret_name} with key "
                    f"'{constants.CLIENT_SECRET_KEY}' or enable spec.auth.provisionClient",
                ) from e
            raise wrap_api_exception(f"Failed to get OIDC client secret {secret_name}", e) from e

        if constants.CLIENT_SECRET_KEY not in (secret.data or {}):
            raise DependencyNotReadyError(
                constants.ERROR_CLIENT_SECRET_MISSING_KEY.format(
                    secret_name, constants.CLIENT_SECRET_KEY
                )
            )

    async def build_security_policy(
        self, app: NebariApp, provider: OIDCProvider, secret_name: str
    ) -> dict[str, Any]:
        """
        Build the desired SecurityPolicy for ``app``.

        Raises:
            ConfigurationError: The provider cannot resolve an issuer URL
        """
        auth = app.spec.auth
        issuer_url = await provider.get_issuer_url(app)
        redirect_url = f"https://{app.spec.hostname}{auth.redirect_path}"

        return {
            "apiVersion": SECURITY_POLICY.api_version,
            "kind": SECURITY_POLICY.kind,
            "metadata": {
                "name": naming.security_policy_name(app.name),
                "namespace": app.namespace,
                "labels": standard_labels(app.name),
                "ownerReferences": [owner_reference(app.reference_body())],
            },
            "spec": {
                "targetRefs": [
                    {
                        "group": HTTPROUTE.group,
                        "kind": HTTPROUTE.kind,
                        "name": naming.httproute_name(app.name),
                    }
                ],
                "oidc": {
                    "provider": {"issuer": issuer_url},
                    "clientID": provider.get_client_id(app),
                    "clientSecret": {
                        "group": "",
                        "kind": "Secret",
                        "name": secret_name,
                        "namespace": app.namespace,
                    },
                    "redirectURL": redirect_url,
                    "logoutPath": constants.DEFAULT_LOGOUT_PATH,
                    "scopes": auth.effective_scopes,
                },
            },
        }

    async def _provision(self, app: NebariApp, provider: OIDCProvider) -> None:
        client_id = provider.get_client_id(app)
        try:
            await provider.provision_client(app)
        except OperatorError as error:
            events.warning(
                app.reference_body(),
                constants.EVENT_REASON_CLIENT_PROVISION_FAILED,
                error.message,
            )
            self._fail(
                app,
                constants.REASON_PROVISIONING_FAILED,
                "Failed to provision OIDC client",
                error,
            )
            raise

        events.normal(
            app.reference_body(),
            constants.EVENT_REASON_CLIENT_PROVISIONED,
            f"OIDC client {client_id} provisioned",
        )

    async def _upsert_security_policy(
        self, app: NebariApp, provider: OIDCProvider, secret_name: str
    ) -> bool:
        """Create or update the SecurityPolicy, returning True when created."""
        desired = await self.build_security_policy(app, provider, secret_name)
        policy_name = desired["metadata"]["name"]
        existing = await self.get_custom_object(SECURITY_POLICY, app.namespace, policy_name)

        try:
            if existing is None:
                await self.create_custom_object(SECURITY_POLICY, app.namespace, desired)
                self.logger.info(f"Created SecurityPolicy {app.namespace}/{policy_name}")
                return True

            spec_changed = existing.get("spec") != desired["spec"]
            await self.replace_custom_object(
                SECURITY_POLICY, app.namespace, self.merge_desired(existing, desired)
            )
        except ApiException as e:
            if is_conflict(e):
                self.logger.debug(f"SecurityPolicy {policy_name} write conflict")
                return False
            raise wrap_api_exception(
                f"Failed to write SecurityPolicy {policy_name}", e
            ) from e

        if spec_changed:
            self.logger.info(f"Updated SecurityPolicy {app.namespace}/{policy_name}")
            events.normal(
                app.reference_body(),
                constants.EVENT_REASON_SECURITY_POLICY_UPDATED,
                f"Updated SecurityPolicy {policy_name}",
            )
        return False

    @staticmethod
    def _auth_ready(app: NebariApp) -> bool:
        return conditions.is_condition_true(
            app.status.conditions, constants.CONDITION_AUTH_READY
        )

    def _fail(
        self, app: NebariApp, reason: str, prefix: str, error: OperatorError
    ) -> None:
        message = f"{prefix}: {error.message}"
        events.warning(app.reference_body(), constants.EVENT_REASON_AUTH_FAILED, message)
        self.set_condition(
            app,
            constants.CONDITION_AUTH_READY,
            constants.CONDITION_FALSE,
            reason,
            message,
        )
