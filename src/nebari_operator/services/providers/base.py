"""
Identity provider strategy interface.

A provider resolves the OIDC issuer and client identifier for a NebariApp and,
when it supports it, provisions and deprovisions the client in the identity
provider itself.
"""

from abc import ABC, abstractmethod

from nebari_operator.models.nebariapp import NebariApp
from nebari_operator.observability.logging import OperatorLogger
from nebari_operator.utils import naming


class OIDCProvider(ABC):
    """Base class for OIDC provider implementations."""

    #: Identifier used in ``spec.auth.provider``
    name: str = ""

    def __init__(self):
        self.logger = OperatorLogger(self.__class__.__name__)

    @abstractmethod
    async def get_issuer_url(self, app: NebariApp) -> str:
        """
        Issuer URL Envoy fetches OIDC discovery from.

        Raises:
            ConfigurationError: The issuer cannot be determined
        """

    def get_client_id(self, app: NebariApp) -> str:
        return naming.client_id(app.name, app.namespace)

    @abstractmethod
    def supports_provisioning(self) -> bool:
        """Whether provision_client/delete_client manage a real client."""

    @abstractmethod
    async def provision_client(self, app: NebariApp) -> None:
        """
        Create or update the OIDC client and store its secret.

        Raises:
            ProvisioningError: The identity provider or cluster call failed
            ConfigurationError: Provisioning is not possible with this provider
        """

    @abstractmethod
    async def delete_client(self, app: NebariApp) -> None:
        """Remove a provisioned client; a missing client is not an error."""
