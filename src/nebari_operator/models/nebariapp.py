"""
Pydantic models for NebariApp resources.

This module defines type-safe data models for the NebariApp onboarding intent:
the backend service, path routing, gateway selection and OIDC authentication
settings, plus the status block written back by the operator.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator

from nebari_operator import constants


class ServiceReference(BaseModel):
    """Backend Service that receives traffic, in the NebariApp's namespace."""

    model_config = {"populate_by_name": True}

    name: str = Field(..., min_length=1, description="Name of the Service")
    port: int = Field(..., ge=1, le=65535, description="Port on the Service")


class RouteMatch(BaseModel):
    """Path-based routing rule."""

    model_config = {"populate_by_name": True}

    path_prefix: str = Field(
        ..., alias="pathPrefix", description="Path to match, must start with '/'"
    )
    path_type: Literal["PathPrefix", "Exact"] = Field(
        constants.PATH_TYPE_PREFIX,
        alias="pathType",
        description="How the path is matched",
    )

    @field_validator("path_prefix")
    @classmethod
    def validate_path_prefix(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("pathPrefix must start with '/'")
        return v


class TLSConfig(BaseModel):
    """TLS settings for the routing listener."""

    model_config = {"populate_by_name": True}

    enabled: bool = Field(True, description="Attach to the HTTPS listener")


class RoutingConfig(BaseModel):
    """Routing configuration for the generated HTTPRoute."""

    model_config = {"populate_by_name": True}

    routes: list[RouteMatch] = Field(
        default_factory=list, description="Ordered path matching rules"
    )
    tls: TLSConfig | None = Field(None, description="TLS settings")

    @property
    def tls_enabled(self) -> bool:
        return self.tls is None or self.tls.enabled


class AuthConfig(BaseModel):
    """OIDC authentication settings."""

    model_config = {"populate_by_name": True}

    enabled: bool = Field(False, description="Enforce OIDC authentication")
    provider: str = Field(
        constants.DEFAULT_PROVIDER, description="Identity provider identifier"
    )
    scopes: list[str] = Field(
        default_factory=list, description="OIDC scopes requested at login"
    )
    provision_client: bool = Field(
        True,
        alias="provisionClient",
        description="Let the operator provision the OIDC client",
    )
    issuer_url: str | None = Field(
        None, alias="issuerURL", description="Issuer URL for externally managed providers"
    )
    client_secret_ref: str | None = Field(
        None,
        alias="clientSecretRef",
        description="Existing Secret holding the OIDC client secret",
    )
    redirect_uri: str | None = Field(
        None, alias="redirectURI", description="Callback path overriding the default"
    )

    @property
    def redirect_path(self) -> str:
        return self.redirect_uri or constants.DEFAULT_OAUTH_CALLBACK_PATH

    @property
    def effective_scopes(self) -> list[str]:
        return list(self.scopes) if self.scopes else list(constants.DEFAULT_OIDC_SCOPES)


class NebariAppSpec(BaseModel):
    """
    Specification of a NebariApp.

    The spec is the only input to reconciliation; everything in status is
    re-derived from it on every pass.
    """

    model_config = {"populate_by_name": True}

    hostname: str = Field(..., min_length=1, description="Fully qualified hostname")
    service: ServiceReference = Field(..., description="Backend service")
    routing: RoutingConfig | None = Field(None, description="Routing configuration")
    gateway: Literal["public", "internal"] = Field(
        constants.GATEWAY_PUBLIC, description="Shared gateway to attach to"
    )
    auth: AuthConfig | None = Field(None, description="Authentication configuration")

    @property
    def auth_enabled(self) -> bool:
        return self.auth is not None and self.auth.enabled


class GatewayReference(BaseModel):
    """Gateway the HTTPRoute is attached to."""

    name: str
    namespace: str


class ResourceReference(BaseModel):
    """Reference to a namespaced resource."""

    name: str
    namespace: str | None = None


class Condition(BaseModel):
    """Status condition for a NebariApp resource."""

    model_config = {"populate_by_name": True}

    type: str = Field(..., description="Condition type")
    status: Literal["True", "False", "Unknown"] = Field(
        ..., description="Condition status"
    )
    reason: str = Field(..., description="Machine readable reason")
    message: str = Field("", description="Human-readable message")
    last_transition_time: str = Field(
        ...,
        alias="lastTransitionTime",
        description="Last time the status changed",
    )
    observed_generation: int | None = Field(
        None,
        alias="observedGeneration",
        description="Generation the condition was computed from",
    )


class NebariAppStatus(BaseModel):
    """Status of a NebariApp resource as written by the operator."""

    model_config = {"populate_by_name": True}

    conditions: list[Condition] = Field(
        default_factory=list, description="Status conditions"
    )
    observed_generation: int | None = Field(
        None,
        alias="observedGeneration",
        description="Generation of the spec that was last fully reconciled",
    )
    hostname: str | None = Field(None, description="Mirror of spec.hostname")
    gateway_ref: GatewayReference | None = Field(None, alias="gatewayRef")
    client_secret_ref: ResourceReference | None = Field(None, alias="clientSecretRef")

    def to_patch(self) -> dict[str, Any]:
        """
        Render the status as a merge patch body for the status subresource.

        Unset references are sent as null so a merge patch removes them.
        """
        patch = self.model_dump(by_alias=True, exclude_none=True)
        patch.setdefault("gatewayRef", None)
        patch.setdefault("clientSecretRef", None)
        return patch


class NebariApp(BaseModel):
    """
    Complete NebariApp custom resource model.

    Only the metadata fields the operator reads are modelled explicitly; the
    raw metadata dict is kept for owner references and finalizer handling.
    """

    model_config = {"populate_by_name": True}

    api_version: str = Field(
        f"{constants.NEBARIAPP_GROUP}/{constants.NEBARIAPP_VERSION}",
        alias="apiVersion",
    )
    kind: str = Field(constants.NEBARIAPP_KIND)
    metadata: dict[str, Any] = Field(..., description="Kubernetes metadata")
    spec: NebariAppSpec = Field(..., description="NebariApp specification")
    status: NebariAppStatus = Field(
        default_factory=NebariAppStatus, description="Operator managed status"
    )

    @property
    def name(self) -> str:
        return self.metadata["name"]

    @property
    def namespace(self) -> str:
        return self.metadata["namespace"]

    @property
    def uid(self) -> str | None:
        return self.metadata.get("uid")

    @property
    def generation(self) -> int:
        return int(self.metadata.get("generation") or 0)

    @property
    def finalizers(self) -> list[str]:
        return list(self.metadata.get("finalizers") or [])

    @property
    def being_deleted(self) -> bool:
        return bool(self.metadata.get("deletionTimestamp"))

    def reference_body(self) -> dict[str, Any]:
        """Minimal body used for owner references and Event involvement."""
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": self.metadata,
        }

    @classmethod
    def from_unvalidated(cls, body: dict[str, Any]) -> "NebariApp":
        """
        Build a NebariApp from a body whose spec does not validate.

        Only metadata, the status and ``spec.auth`` (when it still parses) are
        kept; the other spec fields are unset. This is enough to report the
        failure in status and to clean up on deletion.
        """
        spec = body.get("spec") or {}
        try:
            auth = AuthConfig.model_validate(spec["auth"]) if spec.get("auth") else None
        except ValidationError:
            auth = None
        try:
            status = NebariAppStatus.model_validate(body.get("status") or {})
        except ValidationError:
            status = NebariAppStatus()
        return cls.model_construct(
            metadata=body["metadata"],
            spec=NebariAppSpec.model_construct(auth=auth, routing=None),
            status=status,
        )
