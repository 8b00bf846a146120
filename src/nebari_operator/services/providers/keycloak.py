"""
Keycloak OIDC provider.

Provisions one confidential client per NebariApp in the configured realm and
keeps its shared secret in a Secret next to the NebariApp.
"""

import base64
import secrets

import httpx
from kubernetes import client
from kubernetes.client.rest import ApiException

from nebari_operator import constants
from nebari_operator.errors import (
    ConfigurationError,
    KeycloakAdminError,
    KubernetesAPIError,
    ProvisioningError,
)
from nebari_operator.models.keycloak_api import ClientRepresentation
from nebari_operator.models.nebariapp import NebariApp
from nebari_operator.observability.metrics import metrics_collector
from nebari_operator.settings import Settings
from nebari_operator.utils import naming
from nebari_operator.utils.keycloak_admin import KeycloakAdminClient
from nebari_operator.utils.kubernetes import (
    call_api,
    decode_secret_value,
    encode_secret_value,
    is_not_found,
    owner_reference,
    standard_labels,
    wrap_api_exception,
)

from .base import OIDCProvider

# Key pairs accepted in the admin credentials secret, first match wins
USERNAME_KEYS = ("username", "admin-username")
PASSWORD_KEYS = ("password", "admin-password")


def generate_client_secret(length: int = constants.CLIENT_SECRET_LENGTH) -> str:
    """URL-safe random secret: ``length`` random bytes, encoded, truncated."""
    return base64.urlsafe_b64encode(secrets.token_bytes(length)).decode()[:length]


class KeycloakProvider(OIDCProvider):
    """Provider backed by a Keycloak instance reachable through its admin API."""

    name = constants.PROVIDER_KEYCLOAK

    def __init__(
        self,
        settings: Settings,
        core_api: client.CoreV1Api,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the Keycloak provider.

        Args:
            settings: Operator settings holding the KEYCLOAK_* values
            core_api: Core API used for the admin and client secrets
            transport: Optional httpx transport for the admin client, used by tests
        """
        super().__init__()
        self.settings = settings
        self.core_api = core_api
        self.transport = transport
        self.realm = settings.keycloak_realm
        self._username: str | None = None
        self._password: str | None = None

    async def get_issuer_url(self, app: NebariApp) -> str:
        s = self.settings
        return (
            f"http://{s.keycloak_issuer_service_name}."
            f"{s.keycloak_issuer_service_namespace}.svc.cluster.local:"
            f"{s.keycloak_issuer_service_port}{s.keycloak_issuer_context_path}"
            f"/realms/{self.realm}"
        )

    def supports_provisioning(self) -> bool:
        return True

    async def provision_client(self, app: NebariApp) -> None:
        client_id = self.get_client_id(app)
        try:
            async with self._admin_client() as admin:
                await self._login(admin)
                existing = await self._find_client(admin, client_id)
                if existing is not None:
                    client_secret = await self._update_existing_client(
                        admin, existing, app
                    )
                    self.logger.info(
                        f"Updated existing Keycloak client {client_id}",
                        client_id=client_id,
                        provider=self.name,
                    )
                else:
                    client_secret = await self._create_new_client(admin, client_id, app)
                    self.logger.info(
                        f"Created Keycloak client {client_id}",
                        client_id=client_id,
                        provider=self.name,
                    )

            await self._store_client_secret(app, client_secret)
        except (KeycloakAdminError, KubernetesAPIError, ConfigurationError) as e:
            metrics_collector.record_client_operation(self.name, "provision", False)
            raise ProvisioningError(
                f"client {client_id}: {e.message}",
                provider=self.name,
                cause=e,
                retryable=not isinstance(e, ConfigurationError),
            ) from e

        metrics_collector.record_client_operation(self.name, "provision", True)

    async def delete_client(self, app: NebariApp) -> None:
        client_id = self.get_client_id(app)
        try:
            async with self._admin_client() as admin:
                await self._login(admin)
                existing = await self._find_client(admin, client_id)
                if existing is None or not existing.id:
                    self.logger.info(
                        f"Keycloak client {client_id} not found, nothing to delete",
                        client_id=client_id,
                    )
                    return
                try:
                    await admin.delete_client(self.realm, existing.id)
                except KeycloakAdminError as e:
                    if e.status_code != 404:
                        raise
        except (KeycloakAdminError, KubernetesAPIError, ConfigurationError) as e:
            metrics_collector.record_client_operation(self.name, "delete", False)
            raise ProvisioningError(
                f"deleting client {client_id}: {e.message}",
                provider=self.name,
                cause=e,
                retryable=not isinstance(e, ConfigurationError),
            ) from e

        metrics_collector.record_client_operation(self.name, "delete", True)
        self.logger.info(f"Deleted Keycloak client {client_id}", client_id=client_id)

    def _admin_client(self) -> KeycloakAdminClient:
        return KeycloakAdminClient(
            self.settings.keycloak_url,
            verify_ssl=self.settings.keycloak_verify_ssl,
            timeout=self.settings.keycloak_timeout_seconds,
            transport=self.transport,
        )

    async def _login(self, admin: KeycloakAdminClient) -> None:
        username, password = await self.load_credentials()
        try:
            await admin.login(username, password, realm=constants.KEYCLOAK_ADMIN_REALM)
        except KeycloakAdminError as e:
            if e.status_code == 401:
                # Re-read the secret next time, the password may have been rotated
                self._username = self._password = None
            raise

    async def load_credentials(self) -> tuple[str, str]:
        """
        Load admin credentials once, the secret taking priority over env values.

        Accepts ``username``/``password`` as well as
        ``admin-username``/``admin-password`` keys. When the secret cannot be
        read, ``KEYCLOAK_ADMIN_USERNAME``/``KEYCLOAK_ADMIN_PASSWORD`` are used.

        Raises:
            ConfigurationError: No usable credentials
            KubernetesAPIError: The secret could not be read
        """
        if self._username and self._password:
            return self._username, self._password

        s = self.settings
        username = s.keycloak_admin_username
        password = s.keycloak_admin_password

        if s.keycloak_admin_secret_name and s.keycloak_admin_secret_namespace:
            secret_ref = (
                f"{s.keycloak_admin_secret_namespace}/{s.keycloak_admin_secret_name}"
            )
            try:
                secret = await call_api(
                    self.core_api.read_namespaced_secret,
                    name=s.keycloak_admin_secret_name,
                    namespace=s.keycloak_admin_secret_namespace,
                )
            except ApiException as e:
                if not (username and password):
                    if is_not_found(e):
                        raise ConfigurationError(
                            f"Keycloak admin secret {secret_ref} not found",
                            user_action="Create the admin secret or set "
                            "KEYCLOAK_ADMIN_USERNAME/KEYCLOAK_ADMIN_PASSWORD",
                        ) from e
                    raise wrap_api_exception(
                        f"Failed to get Keycloak admin secret {secret_ref}", e
                    ) from e
                self.logger.warning(
                    f"Keycloak admin secret {secret_ref} unreadable, "
                    "using credentials from environment"
                )
            else:
                data = secret.data or {}
                username = _first_value(data, USERNAME_KEYS)
                password = _first_value(data, PASSWORD_KEYS)
                if username is None:
                    raise ConfigurationError(
                        f"secret {secret_ref} missing 'username' or 'admin-username' key"
                    )
                if password is None:
                    raise ConfigurationError(
                        f"secret {secret_ref} missing 'password' or 'admin-password' key"
                    )
                self.logger.info(
                    f"Loaded Keycloak admin credentials from secret {secret_ref}"
                )

        if not username or not password:
            raise ConfigurationError(
                "Keycloak admin credentials not configured",
                user_action="Set KEYCLOAK_ADMIN_SECRET_NAME or "
                "KEYCLOAK_ADMIN_USERNAME/KEYCLOAK_ADMIN_PASSWORD",
            )

        self._username, self._password = username, password
        return username, password

    async def _find_client(
        self, admin: KeycloakAdminClient, client_id: str
    ) -> ClientRepresentation | None:
        clients = await admin.list_clients(self.realm, client_id)
        for candidate in clients:
            if candidate.client_id == client_id:
                return candidate
        return None

    async def _update_existing_client(
        self,
        admin: KeycloakAdminClient,
        existing: ClientRepresentation,
        app: NebariApp,
    ) -> str:
        if not existing.id:
            raise KeycloakAdminError(f"Client {existing.client_id} has no UUID")
        # The secret is reused so live sessions keep working
        client_secret = await admin.get_client_secret(self.realm, existing.id)

        existing.secret = client_secret
        existing.redirect_uris = self.build_redirect_uris(app)
        existing.web_origins = ["*"]
        existing.standard_flow_enabled = True
        await admin.update_client(self.realm, existing)
        return client_secret

    async def _create_new_client(
        self, admin: KeycloakAdminClient, client_id: str, app: NebariApp
    ) -> str:
        client_secret = generate_client_secret()
        new_client = ClientRepresentation(
            client_id=client_id,
            name=f"{app.name} OIDC Client",
            secret=client_secret,
            redirect_uris=self.build_redirect_uris(app),
            web_origins=["*"],
            public_client=False,
            standard_flow_enabled=True,
            direct_access_grants_enabled=False,
            service_accounts_enabled=False,
            protocol="openid-connect",
            enabled=True,
        )
        await admin.create_client(self.realm, new_client)
        return client_secret

    @staticmethod
    def build_redirect_uris(app: NebariApp) -> list[str]:
        redirect_path = (
            app.spec.auth.redirect_path
            if app.spec.auth
            else constants.DEFAULT_OAUTH_CALLBACK_PATH
        )
        return [
            f"https://{app.spec.hostname}{redirect_path}",
            f"http://{app.spec.hostname}{redirect_path}",
        ]

    async def _store_client_secret(self, app: NebariApp, client_secret: str) -> None:
        """Create the credential Secret, or overwrite its single key."""
        secret_name = naming.client_secret_name(
            app.name, app.spec.auth.client_secret_ref if app.spec.auth else None
        )
        data = {constants.CLIENT_SECRET_KEY: encode_secret_value(client_secret)}

        try:
            existing = await call_api(
                self.core_api.read_namespaced_secret,
                name=secret_name,
                namespace=app.namespace,
            )
        except ApiException as e:
            if not is_not_found(e):
                raise wrap_api_exception(
                    f"Failed to check for existing secret {secret_name}", e
                ) from e
            existing = None

        try:
            if existing is None:
                body = {
                    "apiVersion": "v1",
                    "kind": "Secret",
                    "type": "Opaque",
                    "metadata": {
                        "name": secret_name,
                        "namespace": app.namespace,
                        "labels": standard_labels(app.name),
                        "ownerReferences": [owner_reference(app.reference_body())],
                    },
                    "data": data,
                }
                await call_api(
                    self.core_api.create_namespaced_secret,
                    namespace=app.namespace,
                    body=body,
                )
                self.logger.info(f"Created client secret {app.namespace}/{secret_name}")
            else:
                existing.data = data
                await call_api(
                    self.core_api.replace_namespaced_secret,
                    name=secret_name,
                    namespace=app.namespace,
                    body=existing,
                )
                self.logger.debug(f"Updated client secret {app.namespace}/{secret_name}")
        except ApiException as e:
            raise wrap_api_exception(
                f"Failed to store client secret {secret_name}", e
            ) from e


def _first_value(data: dict[str, str], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        if key in data:
            return decode_secret_value(data[key])
    return None
