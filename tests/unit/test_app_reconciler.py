"""Unit tests for the NebariApp reconcile orchestrator."""

import asyncio
from unittest.mock import patch

import pytest

from nebari_operator import constants
from nebari_operator.errors import (
    CleanupError,
    ConfigurationError,
    DependencyNotReadyError,
    ValidationError,
)
from nebari_operator.utils.kubernetes import encode_secret_value

APP_KEY = (constants.NEBARIAPP_PLURAL, "apps", "myapp")
ROUTE_KEY = (constants.HTTPROUTE_PLURAL, "apps", "myapp-route")
POLICY_KEY = (constants.SECURITY_POLICY_PLURAL, "apps", "myapp-security")
FULL_SPEC = {
    "routing": {"routes": [{"pathPrefix": "/"}]},
    "auth": {"enabled": True, "provider": "keycloak"},
}


def written_status(custom_api) -> dict:
    return custom_api.status_patches[-1]["status"]


def status_condition(status: dict, condition_type: str) -> dict | None:
    for condition in status.get("conditions", []):
        if condition["type"] == condition_type:
            return condition
    return None


class TestReconcileSuccess:
    """Passes where every phase succeeds."""

    @pytest.mark.asyncio
    async def test_scenario_without_routing_or_auth(
        self, app_reconciler, custom_api, managed_namespace, store_app
    ):
        """Without routing and auth the app is Ready and routing is not configured."""
        store_app(spec={"hostname": "a.example.com"})

        result = await app_reconciler.reconcile("myapp", "apps")

        assert result.error is None
        assert result.requeue_after == 60
        status = written_status(custom_api)
        ready = status_condition(status, constants.CONDITION_READY)
        assert ready["status"] == "True"
        assert ready["reason"] == constants.REASON_RECONCILE_SUCCESS
        routing = status_condition(status, constants.CONDITION_ROUTING_READY)
        assert routing["status"] == "False"
        assert routing["reason"] == constants.REASON_ROUTING_NOT_CONFIGURED
        auth = status_condition(status, constants.CONDITION_AUTH_READY)
        assert auth["reason"] == constants.REASON_AUTH_DISABLED
        assert status["hostname"] == "a.example.com"
        assert status["observedGeneration"] == 1
        assert status["gatewayRef"] is None
        assert custom_api.find(*ROUTE_KEY) is None

    @pytest.mark.asyncio
    async def test_full_pass(
        self,
        app_reconciler,
        custom_api,
        keycloak,
        managed_namespace,
        public_gateway,
        admin_secret,
        store_app,
    ):
        """Routing and auth objects are written and referenced in status."""
        store_app(spec=FULL_SPEC)

        result = await app_reconciler.reconcile("myapp", "apps")

        assert result.error is None
        assert custom_api.find(*ROUTE_KEY) is not None
        assert custom_api.find(*POLICY_KEY) is not None
        assert keycloak.find("myapp-apps-client") is not None
        status = written_status(custom_api)
        assert status["gatewayRef"] == {
            "name": "nebari-gateway",
            "namespace": "envoy-gateway-system",
        }
        assert status["clientSecretRef"] == {
            "name": "myapp-oidc-client",
            "namespace": "apps",
        }
        for condition_type in (
            constants.CONDITION_READY,
            constants.CONDITION_ROUTING_READY,
            constants.CONDITION_AUTH_READY,
        ):
            assert status_condition(status, condition_type)["status"] == "True"

    @pytest.mark.asyncio
    async def test_finalizer_added(
        self, app_reconciler, custom_api, managed_namespace, store_app
    ):
        """The cleanup finalizer is added on the first pass."""
        store_app()

        await app_reconciler.reconcile("myapp", "apps")

        finalizers = custom_api.find(*APP_KEY)["metadata"]["finalizers"]
        assert finalizers == [constants.NEBARIAPP_FINALIZER]

    @pytest.mark.asyncio
    async def test_status_written_once_per_pass(
        self, app_reconciler, custom_api, managed_namespace, store_app
    ):
        """Each pass issues exactly one status update."""
        store_app()

        await app_reconciler.reconcile("myapp", "apps")
        await app_reconciler.reconcile("myapp", "apps")

        assert len(custom_api.status_patches) == 2

    @pytest.mark.asyncio
    async def test_repeated_pass_keeps_transition_times(
        self, app_reconciler, custom_api, managed_namespace, store_app
    ):
        """A second pass with nothing changed keeps every lastTransitionTime."""
        store_app()
        await app_reconciler.reconcile("myapp", "apps")
        first = {
            c["type"]: c["lastTransitionTime"]
            for c in written_status(custom_api)["conditions"]
        }

        await app_reconciler.reconcile("myapp", "apps")

        second = {
            c["type"]: c["lastTransitionTime"]
            for c in written_status(custom_api)["conditions"]
        }
        assert second[constants.CONDITION_ROUTING_READY] == (
            first[constants.CONDITION_ROUTING_READY]
        )
        assert second[constants.CONDITION_AUTH_READY] == (
            first[constants.CONDITION_AUTH_READY]
        )

    @pytest.mark.asyncio
    async def test_removed_routing_deletes_route(
        self, app_reconciler, custom_api, managed_namespace, public_gateway, store_app
    ):
        """Dropping routing from the spec removes the stale HTTPRoute."""
        store_app(spec={"routing": {}})
        await app_reconciler.reconcile("myapp", "apps")
        assert custom_api.find(*ROUTE_KEY) is not None
        del custom_api.find(*APP_KEY)["spec"]["routing"]

        result = await app_reconciler.reconcile("myapp", "apps")

        assert result.error is None
        assert custom_api.find(*ROUTE_KEY) is None
        status = written_status(custom_api)
        assert status["gatewayRef"] is None
        assert (
            status_condition(status, constants.CONDITION_ROUTING_READY)["reason"]
            == constants.REASON_ROUTING_NOT_CONFIGURED
        )

    @pytest.mark.asyncio
    async def test_hostname_change_keeps_client_secret(
        self,
        app_reconciler,
        core_api,
        custom_api,
        keycloak,
        managed_namespace,
        public_gateway,
        admin_secret,
        store_app,
    ):
        """A changed hostname updates redirect URIs but not the client secret."""
        keycloak.add_client("myapp-apps-client", "S1")
        store_app(spec={**FULL_SPEC, "hostname": "new.example.com"})

        await app_reconciler.reconcile("myapp", "apps")

        client = keycloak.find("myapp-apps-client")
        assert client["secret"] == "S1"
        assert "https://new.example.com/oauth2/callback" in client["redirectUris"]
        stored = core_api.secrets[("apps", "myapp-oidc-client")]
        assert stored.data[constants.CLIENT_SECRET_KEY] == encode_secret_value("S1")

    @pytest.mark.asyncio
    async def test_same_name_in_two_namespaces(
        self,
        app_reconciler,
        core_api,
        keycloak,
        public_gateway,
        admin_secret,
        store_app,
    ):
        """Same-named apps in two namespaces get separate clients."""
        for namespace in ("ns1", "ns2"):
            core_api.add_namespace(namespace)
            core_api.add_service(namespace, "app-svc", 8080)
            store_app(name="app", namespace=namespace, spec=FULL_SPEC)

        await app_reconciler.reconcile("app", "ns1")
        await app_reconciler.reconcile("app", "ns2")

        assert keycloak.find("app-ns1-client") is not None
        assert keycloak.find("app-ns2-client") is not None
        assert len(keycloak.clients) == 2


class TestReconcileFailures:
    """Passes stopping at a failing phase."""

    @pytest.mark.asyncio
    async def test_missing_object_is_noop(self, app_reconciler, custom_api):
        """A NebariApp that no longer exists is ignored."""
        result = await app_reconciler.reconcile("ghost", "apps")

        assert result.error is None
        assert result.requeue_after is None
        assert custom_api.status_patches == []

    @pytest.mark.asyncio
    async def test_invalid_spec(
        self, app_reconciler, custom_api, store_app, event_reasons
    ):
        """A body that does not parse sets Ready False and waits for a fix."""
        store_app()
        del custom_api.find(*APP_KEY)["spec"]["service"]

        result = await app_reconciler.reconcile("myapp", "apps")

        assert isinstance(result.error, ConfigurationError)
        assert result.requeue_after == 300
        ready = status_condition(written_status(custom_api), constants.CONDITION_READY)
        assert ready["status"] == "False"
        assert ready["reason"] == constants.REASON_INVALID_SPEC
        assert "spec.service" in ready["message"]
        assert constants.REASON_INVALID_SPEC in event_reasons()
        assert custom_api.find(*APP_KEY)["metadata"].get("finalizers") is None

    @pytest.mark.asyncio
    async def test_auth_without_routing(
        self,
        app_reconciler,
        custom_api,
        keycloak,
        admin_secret,
        managed_namespace,
        store_app,
    ):
        """Auth with no routing writes no policy and removes a stale one."""
        store_app(spec={"auth": {"enabled": True, "provider": "keycloak"}})
        custom_api.put(
            constants.SECURITY_POLICY_PLURAL,
            {"metadata": {"name": "myapp-security", "namespace": "apps"}, "spec": {}},
        )

        result = await app_reconciler.reconcile("myapp", "apps")

        assert isinstance(result.error, ConfigurationError)
        assert result.requeue_after == 300
        assert result.failed_phase == "auth"
        assert custom_api.find(*POLICY_KEY) is None
        assert keycloak.find("myapp-apps-client") is None
        status = written_status(custom_api)
        auth = status_condition(status, constants.CONDITION_AUTH_READY)
        assert auth["status"] == "False"
        assert auth["reason"] == constants.REASON_ROUTING_REQUIRED
        ready = status_condition(status, constants.CONDITION_READY)
        assert ready["status"] == "False"
        assert ready["message"].startswith("Auth reconciliation failed:")

    @pytest.mark.asyncio
    async def test_namespace_not_opted_in(
        self, app_reconciler, core_api, custom_api, store_app, event_reasons
    ):
        """Validation failure sets Ready False and requeues on the long interval."""
        core_api.add_namespace("apps", managed=False)
        core_api.add_service("apps", "myapp-svc", 8080)
        store_app(spec={"routing": {}})

        result = await app_reconciler.reconcile("myapp", "apps")

        assert isinstance(result.error, ValidationError)
        assert result.requeue_after == 300
        assert result.failed_phase == "validation"
        ready = status_condition(written_status(custom_api), constants.CONDITION_READY)
        assert ready["status"] == "False"
        assert ready["reason"] == constants.REASON_NAMESPACE_NOT_OPTED_IN
        assert custom_api.find(*ROUTE_KEY) is None
        assert constants.EVENT_REASON_NAMESPACE_NOT_OPTED_IN in event_reasons()

    @pytest.mark.asyncio
    async def test_service_port_mismatch(
        self, app_reconciler, core_api, custom_api, store_app, event_reasons
    ):
        """A backend without the declared port fails with ServiceNotFound."""
        core_api.add_namespace("apps")
        core_api.add_service("apps", "myapp-svc", 9090)
        store_app()

        result = await app_reconciler.reconcile("myapp", "apps")

        assert isinstance(result.error, ValidationError)
        ready = status_condition(written_status(custom_api), constants.CONDITION_READY)
        assert ready["reason"] == constants.REASON_SERVICE_NOT_FOUND
        assert constants.EVENT_REASON_SERVICE_NOT_FOUND in event_reasons()

    @pytest.mark.asyncio
    async def test_gateway_missing_stops_before_auth(
        self, app_reconciler, custom_api, keycloak, managed_namespace, store_app
    ):
        """A routing failure stops the pass before auth runs."""
        store_app(spec=FULL_SPEC)

        result = await app_reconciler.reconcile("myapp", "apps")

        assert isinstance(result.error, DependencyNotReadyError)
        assert result.requeue_after == 30
        assert result.failed_phase == "routing"
        status = written_status(custom_api)
        ready = status_condition(status, constants.CONDITION_READY)
        assert ready["reason"] == constants.REASON_FAILED
        assert ready["message"].startswith("Routing reconciliation failed:")
        assert (
            status_condition(status, constants.CONDITION_ROUTING_READY)["reason"]
            == constants.REASON_GATEWAY_NOT_FOUND
        )
        assert status_condition(status, constants.CONDITION_AUTH_READY) is None
        assert keycloak.requests == []

    @pytest.mark.asyncio
    async def test_missing_client_secret(
        self, app_reconciler, custom_api, managed_namespace, public_gateway, store_app
    ):
        """Auth without provisioning and without a secret fails validation."""
        store_app(
            spec={
                "routing": {},
                "auth": {"enabled": True, "provisionClient": False},
            }
        )

        result = await app_reconciler.reconcile("myapp", "apps")

        assert isinstance(result.error, DependencyNotReadyError)
        assert result.failed_phase == "auth"
        status = written_status(custom_api)
        auth = status_condition(status, constants.CONDITION_AUTH_READY)
        assert auth["status"] == "False"
        assert auth["reason"] == constants.REASON_VALIDATION_FAILED
        assert "myapp-oidc-client" in auth["message"]
        ready = status_condition(status, constants.CONDITION_READY)
        assert ready["message"].startswith("Auth reconciliation failed:")
        assert custom_api.find(*POLICY_KEY) is None

    @pytest.mark.asyncio
    async def test_generic_oidc_without_issuer(
        self,
        app_reconciler,
        core_api,
        custom_api,
        managed_namespace,
        public_gateway,
        store_app,
    ):
        """generic-oidc without issuerURL surfaces an error and AuthReady False."""
        core_api.add_secret(
            "apps",
            "myapp-oidc-client",
            {constants.CLIENT_SECRET_KEY: encode_secret_value("x")},
        )
        store_app(
            spec={
                "routing": {},
                "auth": {
                    "enabled": True,
                    "provider": "generic-oidc",
                    "issuerURL": "",
                    "provisionClient": False,
                },
            }
        )

        result = await app_reconciler.reconcile("myapp", "apps")

        assert isinstance(result.error, ConfigurationError)
        assert result.requeue_after == 300
        status = written_status(custom_api)
        auth = status_condition(status, constants.CONDITION_AUTH_READY)
        assert auth["status"] == "False"

    @pytest.mark.asyncio
    async def test_timeout(self, app_reconciler, settings):
        """A pass exceeding the timeout is reported as a retryable error."""
        app_reconciler.settings = settings.model_copy(
            update={"reconcile_timeout_seconds": 0.01}
        )

        async def hang(name, namespace):
            await asyncio.sleep(5)

        with patch.object(app_reconciler, "_reconcile", hang):
            result = await app_reconciler.reconcile("myapp", "apps")

        assert result.error is not None
        assert result.error.retryable
        assert result.requeue_after == 30


class TestDeletion:
    """Cleanup and finalizer release."""

    def _deleting(self, store_app, spec=None):
        return store_app(
            spec=spec or FULL_SPEC,
            finalizers=[constants.NEBARIAPP_FINALIZER],
            deletionTimestamp="2024-01-01T00:00:00Z",
        )

    @pytest.mark.asyncio
    async def test_cleanup_then_release(
        self, app_reconciler, custom_api, keycloak, admin_secret, store_app
    ):
        """Route and client are removed before the finalizer is released."""
        self._deleting(store_app)
        custom_api.put(
            constants.HTTPROUTE_PLURAL,
            {"metadata": {"name": "myapp-route", "namespace": "apps"}, "spec": {}},
        )
        keycloak.add_client("myapp-apps-client", "S1")

        result = await app_reconciler.reconcile("myapp", "apps")

        assert result.error is None
        assert result.requeue_after is None
        assert custom_api.find(*ROUTE_KEY) is None
        assert keycloak.find("myapp-apps-client") is None
        assert custom_api.find(*APP_KEY)["metadata"]["finalizers"] == []
        assert custom_api.status_patches == []

    @pytest.mark.asyncio
    async def test_failed_deprovision_keeps_finalizer(
        self, app_reconciler, custom_api, keycloak, admin_secret, store_app
    ):
        """If the client cannot be deleted the finalizer stays."""
        self._deleting(store_app)
        keycloak.add_client("myapp-apps-client", "S1")
        keycloak.delete_status = 500

        result = await app_reconciler.reconcile("myapp", "apps")

        assert isinstance(result.error, CleanupError)
        assert result.requeue_after == 30
        assert custom_api.find(*APP_KEY)["metadata"]["finalizers"] == [
            constants.NEBARIAPP_FINALIZER
        ]

    @pytest.mark.asyncio
    async def test_without_auth_only_route_removed(
        self, app_reconciler, custom_api, keycloak, store_app
    ):
        """Apps without auth never contact the identity provider on delete."""
        self._deleting(store_app, spec={"routing": {}})

        result = await app_reconciler.reconcile("myapp", "apps")

        assert result.error is None
        assert keycloak.requests == []
        assert custom_api.find(*APP_KEY)["metadata"]["finalizers"] == []

    @pytest.mark.asyncio
    async def test_invalid_spec_still_released(
        self, app_reconciler, custom_api, keycloak, admin_secret, store_app
    ):
        """A spec that no longer parses does not block deletion."""
        self._deleting(store_app)
        del custom_api.find(*APP_KEY)["spec"]["service"]
        custom_api.put(
            constants.HTTPROUTE_PLURAL,
            {"metadata": {"name": "myapp-route", "namespace": "apps"}, "spec": {}},
        )
        keycloak.add_client("myapp-apps-client", "S1")

        result = await app_reconciler.reconcile("myapp", "apps")

        assert result.error is None
        assert result.requeue_after is None
        assert custom_api.find(*ROUTE_KEY) is None
        assert keycloak.find("myapp-apps-client") is None
        assert custom_api.find(*APP_KEY)["metadata"]["finalizers"] == []

    @pytest.mark.asyncio
    async def test_invalid_auth_skips_deprovisioning(
        self, app_reconciler, custom_api, keycloak, store_app
    ):
        """An unparseable auth block leaves the client but releases the app."""
        self._deleting(
            store_app, spec={"routing": {}, "auth": {"enabled": "sometimes"}}
        )
        custom_api.put(
            constants.HTTPROUTE_PLURAL,
            {"metadata": {"name": "myapp-route", "namespace": "apps"}, "spec": {}},
        )

        result = await app_reconciler.reconcile("myapp", "apps")

        assert result.error is None
        assert keycloak.requests == []
        assert custom_api.find(*ROUTE_KEY) is None
        assert custom_api.find(*APP_KEY)["metadata"]["finalizers"] == []

    @pytest.mark.asyncio
    async def test_without_finalizer_is_noop(
        self, app_reconciler, custom_api, store_app
    ):
        """Deletion without the operator finalizer needs no cleanup."""
        store_app(deletionTimestamp="2024-01-01T00:00:00Z")

        result = await app_reconciler.reconcile("myapp", "apps")

        assert result.error is None
        custom_api.delete_namespaced_custom_object.assert_not_called()


class TestRequeueDelays:
    """Delay selection per error kind."""

    def test_retryable_short_terminal_long(self, app_reconciler):
        """Retryable errors get the short delay, terminal ones the long one."""
        assert app_reconciler.delay_for(DependencyNotReadyError("x")) == 30
        assert app_reconciler.delay_for(ConfigurationError("x")) == 300
