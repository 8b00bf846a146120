"""Centralized operator settings using pydantic-settings.

This module provides a single source of truth for all operator configuration
loaded from environment variables. Uses pydantic for automatic validation,
type coercion, and documentation.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from nebari_operator import constants


class Settings(BaseSettings):
    """Operator configuration loaded from environment variables.

    All settings have sensible defaults for production use. Override via
    environment variables as documented per field.
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Operator identification
    operator_name: str = Field(
        default="nebari-operator",
        description="Name of the operator deployment",
        validation_alias="OPERATOR_NAME",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        validation_alias="JSON_LOGS",
        description="Enable JSON formatted logging for structured log aggregation",
    )
    correlation_ids: bool = Field(
        default=True,
        validation_alias="CORRELATION_IDS",
        description="Enable correlation IDs in logs for request tracing",
    )

    # Namespace watching
    namespaces: str = Field(
        default="",
        validation_alias="NEBARI_OPERATOR_NAMESPACES",
        description="Comma-separated list of namespaces to watch (empty = all namespaces)",
    )

    # Metrics and observability
    metrics_port: int = Field(
        default=8081,
        validation_alias="METRICS_PORT",
        description="Port for Prometheus metrics endpoint",
    )
    metrics_host: str = Field(
        default="0.0.0.0",
        validation_alias="METRICS_HOST",
        description="Host address to bind metrics server",
    )

    # Requeue policy
    requeue_interval_seconds: int = Field(
        default=constants.DEFAULT_REQUEUE_INTERVAL,
        validation_alias="REQUEUE_INTERVAL_SECONDS",
        description="Delay before a successfully reconciled NebariApp is re-verified",
    )
    requeue_config_error_seconds: int = Field(
        default=constants.DEFAULT_REQUEUE_CONFIG_ERROR,
        validation_alias="REQUEUE_CONFIG_ERROR_SECONDS",
        description="Retry delay for configuration errors that need human correction",
    )
    requeue_transient_error_seconds: int = Field(
        default=constants.DEFAULT_REQUEUE_TRANSIENT_ERROR,
        validation_alias="REQUEUE_TRANSIENT_ERROR_SECONDS",
        description="Retry delay for transient and dependency-not-ready errors",
    )
    reconcile_timeout_seconds: float = Field(
        default=constants.DEFAULT_RECONCILE_TIMEOUT,
        validation_alias="RECONCILE_TIMEOUT_SECONDS",
        description="Upper bound for a single reconcile pass including remote calls",
    )

    # Gateways
    public_gateway_name: str = Field(
        default=constants.DEFAULT_PUBLIC_GATEWAY_NAME,
        validation_alias="PUBLIC_GATEWAY_NAME",
        description="Gateway used by NebariApps with gateway=public",
    )
    internal_gateway_name: str = Field(
        default=constants.DEFAULT_INTERNAL_GATEWAY_NAME,
        validation_alias="INTERNAL_GATEWAY_NAME",
        description="Gateway used by NebariApps with gateway=internal",
    )
    gateway_namespace: str = Field(
        default=constants.DEFAULT_GATEWAY_NAMESPACE,
        validation_alias="GATEWAY_NAMESPACE",
        description="Namespace holding both shared gateways",
    )

    # Keycloak provider
    keycloak_enabled: bool = Field(
        default=True,
        validation_alias="KEYCLOAK_ENABLED",
        description="Register the managed keycloak OIDC provider",
    )
    keycloak_url: str = Field(
        default="http://keycloak-keycloakx-http.keycloak.svc.cluster.local/auth",
        validation_alias="KEYCLOAK_URL",
        description="Base URL of the Keycloak admin API",
    )
    keycloak_realm: str = Field(
        default=constants.DEFAULT_KEYCLOAK_REALM,
        validation_alias="KEYCLOAK_REALM",
        description="Realm in which NebariApp clients are provisioned",
    )
    keycloak_admin_secret_name: str = Field(
        default=constants.DEFAULT_KEYCLOAK_ADMIN_SECRET_NAME,
        validation_alias="KEYCLOAK_ADMIN_SECRET_NAME",
        description="Secret holding the Keycloak admin credentials",
    )
    keycloak_admin_secret_namespace: str = Field(
        default=constants.DEFAULT_KEYCLOAK_NAMESPACE,
        validation_alias="KEYCLOAK_ADMIN_SECRET_NAMESPACE",
        description="Namespace of the Keycloak admin credentials secret",
    )
    keycloak_admin_username: str = Field(
        default="",
        validation_alias="KEYCLOAK_ADMIN_USERNAME",
        description="Fallback admin username when the credentials secret lacks one",
    )
    keycloak_admin_password: str = Field(
        default="",
        validation_alias="KEYCLOAK_ADMIN_PASSWORD",
        description="Fallback admin password when the credentials secret lacks one",
    )
    keycloak_issuer_service_name: str = Field(
        default=constants.DEFAULT_KEYCLOAK_SERVICE_NAME,
        validation_alias="KEYCLOAK_ISSUER_SERVICE_NAME",
        description="In-cluster Keycloak service used to build issuer URLs",
    )
    keycloak_issuer_service_namespace: str = Field(
        default=constants.DEFAULT_KEYCLOAK_NAMESPACE,
        validation_alias="KEYCLOAK_ISSUER_SERVICE_NAMESPACE",
        description="Namespace of the in-cluster Keycloak service",
    )
    keycloak_issuer_service_port: int = Field(
        default=constants.DEFAULT_KEYCLOAK_SERVICE_PORT,
        validation_alias="KEYCLOAK_ISSUER_SERVICE_PORT",
        description="Port of the in-cluster Keycloak service",
    )
    keycloak_issuer_context_path: str = Field(
        default=constants.DEFAULT_KEYCLOAK_CONTEXT_PATH,
        validation_alias="KEYCLOAK_ISSUER_CONTEXT_PATH",
        description="HTTP context path Keycloak is served under",
    )
    keycloak_verify_ssl: bool = Field(
        default=True,
        validation_alias="KEYCLOAK_VERIFY_SSL",
        description="Verify TLS certificates when talking to the admin API",
    )
    keycloak_timeout_seconds: float = Field(
        default=30.0,
        validation_alias="KEYCLOAK_TIMEOUT_SECONDS",
        description="Timeout for individual admin API requests",
    )

    @property
    def watched_namespaces(self) -> list[str] | None:
        """Parse watched namespaces from comma-separated string.

        Returns:
            List of namespace names, or None to watch all namespaces
        """
        if self.namespaces:
            return [ns.strip() for ns in self.namespaces.split(",") if ns.strip()]
        return None

    def gateway_name_for(self, selector: str) -> str:
        """Map a NebariApp gateway selector onto a concrete Gateway name."""
        if selector == constants.GATEWAY_INTERNAL:
            return self.internal_gateway_name
        return self.public_gateway_name


# Global settings instance - initialized once at module import
settings = Settings()
