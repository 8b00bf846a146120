"""Externally managed OIDC provider (Google, Azure AD, Okta, Dex, ...)."""

from nebari_operator import constants
from nebari_operator.errors import ConfigurationError
from nebari_operator.models.nebariapp import NebariApp

from .base import OIDCProvider


class GenericOIDCProvider(OIDCProvider):
    """
    Provider for any OIDC compliant issuer managed outside the cluster.

    Only the issuer URL from ``spec.auth.issuerURL`` is used; the client and
    its secret are created by whoever runs the identity provider.
    """

    name = constants.PROVIDER_GENERIC_OIDC

    async def get_issuer_url(self, app: NebariApp) -> str:
        issuer_url = app.spec.auth.issuer_url if app.spec.auth else None
        if not issuer_url:
            raise ConfigurationError(
                f"issuerURL is required for {self.name} provider",
                user_action="Set spec.auth.issuerURL to the issuer of your identity provider",
            )
        return issuer_url

    def supports_provisioning(self) -> bool:
        return False

    async def provision_client(self, app: NebariApp) -> None:
        raise ConfigurationError(
            f"{self.name} provider does not support automatic client provisioning",
            user_action="Set spec.auth.provisionClient to false and supply the client secret",
        )

    async def delete_client(self, app: NebariApp) -> None:
        # Clients of external providers are managed externally
        return None
