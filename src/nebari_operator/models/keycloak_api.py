"""
Models for Keycloak Admin REST API payloads.

Only the fields the operator manages are declared. Unknown fields returned by
the server are kept, so a full client update round-trips every server-side
setting untouched.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ClientRepresentation(BaseModel):
    """Keycloak client as exchanged with ``/admin/realms/{realm}/clients``."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str | None = Field(None, description="Internal client UUID")
    client_id: str = Field(..., alias="clientId")
    name: str | None = None
    enabled: bool | None = None
    protocol: str | None = None
    secret: str | None = None
    public_client: bool | None = Field(None, alias="publicClient")
    redirect_uris: list[str] | None = Field(None, alias="redirectUris")
    web_origins: list[str] | None = Field(None, alias="webOrigins")
    standard_flow_enabled: bool | None = Field(None, alias="standardFlowEnabled")
    direct_access_grants_enabled: bool | None = Field(
        None, alias="directAccessGrantsEnabled"
    )
    service_accounts_enabled: bool | None = Field(None, alias="serviceAccountsEnabled")

    def to_api(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class CredentialRepresentation(BaseModel):
    """Response of ``/clients/{id}/client-secret``."""

    model_config = ConfigDict(extra="allow")

    type: str | None = None
    value: str | None = None
