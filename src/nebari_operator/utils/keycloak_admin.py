"""
Keycloak Admin API client utilities.

This module provides a small async interface to the Keycloak Admin REST API
covering what the operator needs to manage OIDC clients:

- Password-grant login against the administrative realm
- Client lookup by clientId, creation, full update and deletion
- Reading the shared secret of a confidential client
"""

import logging
from typing import Any
from urllib.parse import urljoin

import httpx

from nebari_operator import constants
from nebari_operator.errors import KeycloakAdminError
from nebari_operator.models.keycloak_api import (
    ClientRepresentation,
    CredentialRepresentation,
)

logger = logging.getLogger(__name__)


class KeycloakAdminClient:
    """
    Client for Keycloak Admin API operations.

    One instance is used per provisioning or deprovisioning call; the
    underlying ``httpx.AsyncClient`` is closed when the instance is used as an
    async context manager and exits.
    """

    def __init__(
        self,
        server_url: str,
        verify_ssl: bool = True,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize Keycloak Admin client.

        Args:
            server_url: Base URL of the Keycloak server, including any context path
            verify_ssl: Whether to verify SSL certificates
            timeout: Request timeout in seconds
            transport: Optional httpx transport, used by tests
        """
        self.server_url = server_url.rstrip("/")
        self.access_token: str | None = None
        self._client = httpx.AsyncClient(
            verify=verify_ssl,
            timeout=httpx.Timeout(timeout),
            transport=transport,
            follow_redirects=False,
        )

    async def close(self) -> None:
        self.access_token = None
        await self._client.aclose()

    async def __aenter__(self) -> "KeycloakAdminClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def login(
        self,
        username: str,
        password: str,
        realm: str = constants.KEYCLOAK_ADMIN_REALM,
    ) -> str:
        """
        Obtain an admin access token with the password grant.

        Args:
            username: Admin username
            password: Admin password
            realm: Realm the admin user lives in

        Returns:
            The access token, also kept for subsequent requests

        Raises:
            KeycloakAdminError: If authentication fails
        """
        auth_url = f"{self.server_url}/realms/{realm}/protocol/openid-connect/token"
        auth_data = {
            "username": username,
            "password": password,
            "grant_type": "password",
            "client_id": constants.KEYCLOAK_ADMIN_CLIENT_ID,
        }

        try:
            response = await self._client.post(
                auth_url,
                data=auth_data,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
            response.raise_for_status()
            self.access_token = response.json()["access_token"]
        except httpx.HTTPStatusError as e:
            logger.error(f"Failed to authenticate with Keycloak: {e}")
            raise KeycloakAdminError(
                f"Authentication failed: {e}",
                status_code=e.response.status_code,
                response_body=e.response.text,
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Failed to authenticate with Keycloak: {e}")
            raise KeycloakAdminError(f"Authentication failed: {e}") from e

        logger.debug("Successfully authenticated with Keycloak")
        return self.access_token

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """
        Make an authenticated request to the Keycloak Admin API.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE)
            endpoint: API endpoint (relative to admin base)
            json: JSON request body data
            params: Query parameters

        Returns:
            Response object with body already buffered

        Raises:
            KeycloakAdminError: On transport errors or non-2xx responses
        """
        if not self.access_token:
            raise KeycloakAdminError("Not authenticated, call login() first")

        url = urljoin(f"{self.server_url}/admin/", endpoint.lstrip("/"))
        headers = {"Authorization": f"Bearer {self.access_token}"}

        try:
            response = await self._client.request(
                method=method, url=url, json=json, params=params, headers=headers
            )
            response.raise_for_status()
            return response

        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            response_body = e.response.text or "<no content>"
            logger.error(
                f"Request failed: {method} {url} - {e}",
                extra={
                    "http_status": status_code,
                    "response_body": response_body[:1024],
                },
            )
            raise KeycloakAdminError(
                f"API request failed: {method} {endpoint}",
                status_code=status_code,
                response_body=response_body,
            ) from e

        except httpx.HTTPError as e:
            logger.error(f"Request failed: {method} {url} - {e}")
            raise KeycloakAdminError(f"API request failed: {e}") from e

    async def list_clients(
        self, realm: str, client_id: str | None = None
    ) -> list[ClientRepresentation]:
        """
        List clients of a realm, optionally filtered by clientId.

        Keycloak's ``clientId`` filter is exact unless ``search=true``, so at
        most one client is returned when a filter is given.
        """
        params = {"clientId": client_id} if client_id else None
        response = await self._make_request(
            "GET", f"realms/{realm}/clients", params=params
        )
        return [ClientRepresentation.model_validate(c) for c in response.json()]

    async def get_client_secret(self, realm: str, client_uuid: str) -> str:
        """Read the shared secret of a confidential client."""
        response = await self._make_request(
            "GET", f"realms/{realm}/clients/{client_uuid}/client-secret"
        )
        credential = CredentialRepresentation.model_validate(response.json())
        if not credential.value:
            raise KeycloakAdminError(f"Client {client_uuid} has no secret")
        return credential.value

    async def create_client(
        self, realm: str, client: ClientRepresentation
    ) -> str | None:
        """
        Create a client.

        Returns:
            UUID of the created client taken from the Location header
        """
        logger.info(f"Creating client '{client.client_id}' in realm '{realm}'")
        response = await self._make_request(
            "POST", f"realms/{realm}/clients", json=client.to_api()
        )
        location = response.headers.get("Location", "")
        return location.rsplit("/", 1)[-1] if location else None

    async def update_client(self, realm: str, client: ClientRepresentation) -> None:
        """Replace a client's representation; ``client.id`` selects the client."""
        if not client.id:
            raise KeycloakAdminError(
                f"Cannot update client '{client.client_id}' without its UUID"
            )
        logger.info(f"Updating client '{client.client_id}' in realm '{realm}'")
        await self._make_request(
            "PUT", f"realms/{realm}/clients/{client.id}", json=client.to_api()
        )

    async def delete_client(self, realm: str, client_uuid: str) -> None:
        logger.info(f"Deleting client {client_uuid} from realm '{realm}'")
        await self._make_request("DELETE", f"realms/{realm}/clients/{client_uuid}")
