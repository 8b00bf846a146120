"""Shared pytest fixtures for NebariApp reconciler tests.

The Kubernetes APIs are replaced by small in-memory fakes that keep objects in
dicts and raise ``ApiException`` the way the API server does (404 on missing
objects, 409 on create of an existing name). The Keycloak admin API is faked
behind ``httpx.MockTransport``.
"""

import copy
import json
import uuid
from types import SimpleNamespace
from typing import Any
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs

import httpx
import pytest
from kubernetes.client.rest import ApiException

from nebari_operator import constants
from nebari_operator.models.nebariapp import NebariApp
from nebari_operator.services import (
    AuthReconciler,
    NebariAppReconciler,
    RoutingReconciler,
)
from nebari_operator.services.providers import GenericOIDCProvider, KeycloakProvider
from nebari_operator.settings import Settings
from nebari_operator.utils.kubernetes import encode_secret_value


def not_found() -> ApiException:
    return ApiException(status=404, reason="Not Found")


def conflict() -> ApiException:
    return ApiException(status=409, reason="Conflict")


class FakeCustomObjectsApi:
    """In-memory stand-in for ``kubernetes.client.CustomObjectsApi``."""

    def __init__(self):
        self.objects: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.status_patches: list[dict[str, Any]] = []
        self.get_namespaced_custom_object = MagicMock(side_effect=self._get)
        self.create_namespaced_custom_object = MagicMock(side_effect=self._create)
        self.replace_namespaced_custom_object = MagicMock(side_effect=self._replace)
        self.delete_namespaced_custom_object = MagicMock(side_effect=self._delete)
        self.patch_namespaced_custom_object = MagicMock(side_effect=self._patch)
        self.patch_namespaced_custom_object_status = MagicMock(
            side_effect=self._patch_status
        )

    def put(self, plural: str, body: dict[str, Any]) -> None:
        metadata = body["metadata"]
        self.objects[(plural, metadata["namespace"], metadata["name"])] = copy.deepcopy(
            body
        )

    def find(self, plural: str, namespace: str, name: str) -> dict[str, Any] | None:
        return self.objects.get((plural, namespace, name))

    def _get(self, group, version, namespace, plural, name):
        key = (plural, namespace, name)
        if key not in self.objects:
            raise not_found()
        return copy.deepcopy(self.objects[key])

    def _create(self, group, version, namespace, plural, body):
        key = (plural, namespace, body["metadata"]["name"])
        if key in self.objects:
            raise conflict()
        self.objects[key] = copy.deepcopy(body)
        return body

    def _replace(self, group, version, namespace, plural, name, body):
        key = (plural, namespace, name)
        if key not in self.objects:
            raise not_found()
        self.objects[key] = copy.deepcopy(body)
        return body

    def _delete(self, group, version, namespace, plural, name):
        key = (plural, namespace, name)
        if key not in self.objects:
            raise not_found()
        del self.objects[key]
        return {}

    def _patch(self, group, version, namespace, plural, name, body):
        key = (plural, namespace, name)
        if key not in self.objects:
            raise not_found()
        obj = self.objects[key]
        obj["metadata"].update(copy.deepcopy(body.get("metadata", {})))
        return copy.deepcopy(obj)

    def _patch_status(self, group, version, namespace, plural, name, body):
        key = (plural, namespace, name)
        if key not in self.objects:
            raise not_found()
        self.status_patches.append(copy.deepcopy(body))
        self.objects[key]["status"] = copy.deepcopy(body["status"])
        return copy.deepcopy(self.objects[key])


class FakeCoreV1Api:
    """In-memory stand-in for the parts of ``CoreV1Api`` the operator uses."""

    def __init__(self):
        self.namespaces: dict[str, dict[str, str]] = {}
        self.services: dict[tuple[str, str], list[int]] = {}
        self.secrets: dict[tuple[str, str], SimpleNamespace] = {}
        self.created_secrets: list[dict[str, Any]] = []
        self.read_namespace = MagicMock(side_effect=self._read_namespace)
        self.read_namespaced_service = MagicMock(side_effect=self._read_service)
        self.read_namespaced_secret = MagicMock(side_effect=self._read_secret)
        self.create_namespaced_secret = MagicMock(side_effect=self._create_secret)
        self.replace_namespaced_secret = MagicMock(side_effect=self._replace_secret)

    def add_namespace(self, name: str, managed: bool = True) -> None:
        labels = {constants.MANAGED_NAMESPACE_LABEL: "true"} if managed else {}
        self.namespaces[name] = labels

    def add_service(self, namespace: str, name: str, *ports: int) -> None:
        self.services[(namespace, name)] = list(ports)

    def add_secret(self, namespace: str, name: str, data: dict[str, str]) -> None:
        self.secrets[(namespace, name)] = SimpleNamespace(
            metadata=SimpleNamespace(name=name, namespace=namespace),
            data=dict(data),
        )

    def _read_namespace(self, name):
        if name not in self.namespaces:
            raise not_found()
        return SimpleNamespace(metadata=SimpleNamespace(labels=self.namespaces[name]))

    def _read_service(self, name, namespace):
        if (namespace, name) not in self.services:
            raise not_found()
        ports = [SimpleNamespace(port=p) for p in self.services[(namespace, name)]]
        return SimpleNamespace(spec=SimpleNamespace(ports=ports))

    def _read_secret(self, name, namespace):
        if (namespace, name) not in self.secrets:
            raise not_found()
        return self.secrets[(namespace, name)]

    def _create_secret(self, namespace, body):
        name = body["metadata"]["name"]
        if (namespace, name) in self.secrets:
            raise conflict()
        self.created_secrets.append(copy.deepcopy(body))
        self.add_secret(namespace, name, body["data"])
        return body

    def _replace_secret(self, name, namespace, body):
        if (namespace, name) not in self.secrets:
            raise not_found()
        self.secrets[(namespace, name)] = body
        return body


class FakeKeycloak:
    """Minimal Keycloak admin API served through ``httpx.MockTransport``."""

    def __init__(self, realm: str = constants.DEFAULT_KEYCLOAK_REALM):
        self.realm = realm
        self.username = "admin"
        self.password = "admin-password"
        self.clients: dict[str, dict[str, Any]] = {}
        self.requests: list[httpx.Request] = []
        self.fail_with: int | None = None
        self.delete_status: int | None = None

    def add_client(self, client_id: str, secret: str, **extra: Any) -> str:
        client_uuid = str(uuid.uuid4())
        self.clients[client_uuid] = {
            "id": client_uuid,
            "clientId": client_id,
            "secret": secret,
            **extra,
        }
        return client_uuid

    def find(self, client_id: str) -> dict[str, Any] | None:
        for client in self.clients.values():
            if client["clientId"] == client_id:
                return client
        return None

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path.endswith("/protocol/openid-connect/token"):
            form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
            if (
                form.get("username") == self.username
                and form.get("password") == self.password
            ):
                return httpx.Response(200, json={"access_token": "test-token"})
            return httpx.Response(401, json={"error": "invalid_grant"})

        if request.headers.get("Authorization") != "Bearer test-token":
            return httpx.Response(401)
        if self.fail_with is not None:
            return httpx.Response(self.fail_with, text="backend failure")

        prefix = f"/auth/admin/realms/{self.realm}/clients"
        if not path.startswith(prefix):
            return httpx.Response(404)
        rest = path[len(prefix) :].strip("/")

        if not rest:
            if request.method == "GET":
                wanted = request.url.params.get("clientId")
                matches = [
                    c
                    for c in self.clients.values()
                    if wanted is None or c["clientId"] == wanted
                ]
                return httpx.Response(200, json=matches)
            if request.method == "POST":
                body = json.loads(request.content)
                if self.find(body["clientId"]) is not None:
                    return httpx.Response(409, json={"errorMessage": "exists"})
                client_uuid = str(uuid.uuid4())
                self.clients[client_uuid] = {"id": client_uuid, **body}
                return httpx.Response(
                    201,
                    headers={
                        "Location": f"http://keycloak{prefix}/{client_uuid}",
                    },
                )

        parts = rest.split("/")
        client_uuid = parts[0]
        if len(parts) == 2 and parts[1] == "client-secret":
            if client_uuid not in self.clients:
                return httpx.Response(404)
            return httpx.Response(
                200,
                json={"type": "secret", "value": self.clients[client_uuid]["secret"]},
            )
        if request.method == "PUT":
            if client_uuid not in self.clients:
                return httpx.Response(404)
            self.clients[client_uuid] = json.loads(request.content)
            return httpx.Response(204)
        if request.method == "DELETE":
            if self.delete_status is not None:
                return httpx.Response(self.delete_status)
            if self.clients.pop(client_uuid, None) is None:
                return httpx.Response(404)
            return httpx.Response(204)
        return httpx.Response(405)


def make_nebariapp_body(
    name: str = "myapp",
    namespace: str = "apps",
    spec: dict[str, Any] | None = None,
    **metadata: Any,
) -> dict[str, Any]:
    """Build a NebariApp body with a minimal valid spec merged with ``spec``."""
    base_spec = {
        "hostname": f"{name}.nebari.example.com",
        "service": {"name": f"{name}-svc", "port": 8080},
    }
    base_spec.update(spec or {})
    return {
        "apiVersion": f"{constants.NEBARIAPP_GROUP}/{constants.NEBARIAPP_VERSION}",
        "kind": constants.NEBARIAPP_KIND,
        "metadata": {
            "name": name,
            "namespace": namespace,
            "uid": f"uid-{namespace}-{name}",
            "generation": 1,
            **metadata,
        },
        "spec": base_spec,
    }


def _wire(reconciler, core_api, custom_api):
    reconciler._core_api = core_api
    reconciler._custom_api = custom_api
    return reconciler


@pytest.fixture(autouse=True)
def mock_kopf_events():
    """Capture Events instead of posting them through kopf."""
    with patch("nebari_operator.utils.events.kopf") as mock_kopf:
        yield mock_kopf.event


@pytest.fixture
def settings() -> Settings:
    return Settings().model_copy(
        update={
            "keycloak_enabled": True,
            "keycloak_url": "http://keycloak-keycloakx-http.keycloak.svc.cluster.local/auth",
            "keycloak_realm": constants.DEFAULT_KEYCLOAK_REALM,
            "keycloak_admin_secret_name": constants.DEFAULT_KEYCLOAK_ADMIN_SECRET_NAME,
            "keycloak_admin_secret_namespace": constants.DEFAULT_KEYCLOAK_NAMESPACE,
            "keycloak_admin_username": "",
            "keycloak_admin_password": "",
            "public_gateway_name": constants.DEFAULT_PUBLIC_GATEWAY_NAME,
            "internal_gateway_name": constants.DEFAULT_INTERNAL_GATEWAY_NAME,
            "gateway_namespace": constants.DEFAULT_GATEWAY_NAMESPACE,
            "requeue_interval_seconds": 60,
            "requeue_config_error_seconds": 300,
            "requeue_transient_error_seconds": 30,
            "reconcile_timeout_seconds": 120.0,
        }
    )


@pytest.fixture
def core_api() -> FakeCoreV1Api:
    return FakeCoreV1Api()


@pytest.fixture
def custom_api() -> FakeCustomObjectsApi:
    return FakeCustomObjectsApi()


@pytest.fixture
def keycloak() -> FakeKeycloak:
    return FakeKeycloak()


@pytest.fixture
def admin_secret(core_api, keycloak):
    """Keycloak admin credentials secret with the primary key names."""
    core_api.add_secret(
        constants.DEFAULT_KEYCLOAK_NAMESPACE,
        constants.DEFAULT_KEYCLOAK_ADMIN_SECRET_NAME,
        {
            "username": encode_secret_value(keycloak.username),
            "password": encode_secret_value(keycloak.password),
        },
    )


@pytest.fixture
def public_gateway(custom_api):
    custom_api.put(
        constants.GATEWAY_PLURAL,
        {
            "apiVersion": "gateway.networking.k8s.io/v1",
            "kind": "Gateway",
            "metadata": {
                "name": constants.DEFAULT_PUBLIC_GATEWAY_NAME,
                "namespace": constants.DEFAULT_GATEWAY_NAMESPACE,
            },
            "spec": {},
        },
    )


@pytest.fixture
def event_reasons(mock_kopf_events):
    """Callable returning the reasons of the Events posted so far."""

    def reasons() -> list[str]:
        return [c.kwargs["reason"] for c in mock_kopf_events.call_args_list]

    return reasons


@pytest.fixture
def make_app():
    """Factory building a validated NebariApp, see ``make_nebariapp_body``."""

    def factory(**kwargs: Any) -> NebariApp:
        return NebariApp.model_validate(make_nebariapp_body(**kwargs))

    return factory


@pytest.fixture
def managed_namespace(core_api):
    """Opted-in ``apps`` namespace with the default backend service."""
    core_api.add_namespace("apps")
    core_api.add_service("apps", "myapp-svc", 8080)


@pytest.fixture
def providers(settings, core_api, keycloak):
    return {
        constants.PROVIDER_GENERIC_OIDC: GenericOIDCProvider(),
        constants.PROVIDER_KEYCLOAK: KeycloakProvider(
            settings, core_api, transport=keycloak.transport
        ),
    }


@pytest.fixture
def routing_reconciler(settings, core_api, custom_api):
    return _wire(
        RoutingReconciler(k8s_client=MagicMock(), settings=settings),
        core_api,
        custom_api,
    )


@pytest.fixture
def auth_reconciler(providers, settings, core_api, custom_api):
    return _wire(
        AuthReconciler(providers, k8s_client=MagicMock(), settings=settings),
        core_api,
        custom_api,
    )


@pytest.fixture
def app_reconciler(
    providers, routing_reconciler, auth_reconciler, settings, core_api, custom_api
):
    return _wire(
        NebariAppReconciler(
            providers,
            routing=routing_reconciler,
            auth=auth_reconciler,
            k8s_client=MagicMock(),
            settings=settings,
        ),
        core_api,
        custom_api,
    )


@pytest.fixture
def store_app(custom_api):
    """Factory storing a NebariApp body in the fake API and returning it."""

    def factory(**kwargs: Any) -> dict[str, Any]:
        body = make_nebariapp_body(**kwargs)
        custom_api.put(constants.NEBARIAPP_PLURAL, body)
        return body

    return factory
