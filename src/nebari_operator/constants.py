"""
Constants used throughout the Nebari operator.

This module defines all constant values used by the operator including:
- Custom resource coordinates and the cleanup finalizer
- Derived resource naming suffixes and secret keys
- Condition types, condition reasons and event reasons
- Default OIDC and Keycloak values
"""

# NebariApp custom resource coordinates
NEBARIAPP_GROUP = "reconcilers.nebari.dev"
NEBARIAPP_VERSION = "v1"
NEBARIAPP_PLURAL = "nebariapps"
NEBARIAPP_KIND = "NebariApp"

# Finalizer blocking deletion until the external OIDC client is removed
NEBARIAPP_FINALIZER = "reconcilers.nebari.dev/finalizer"

# Namespace opt-in label, value must be the literal string "true"
MANAGED_NAMESPACE_LABEL = "nebari.dev/managed"

# Gateway API coordinates
GATEWAY_API_GROUP = "gateway.networking.k8s.io"
GATEWAY_API_VERSION = "v1"
GATEWAY_PLURAL = "gateways"
HTTPROUTE_PLURAL = "httproutes"
HTTPROUTE_KIND = "HTTPRoute"

# Envoy Gateway coordinates
ENVOY_GATEWAY_GROUP = "gateway.envoyproxy.io"
ENVOY_GATEWAY_VERSION = "v1alpha1"
SECURITY_POLICY_PLURAL = "securitypolicies"
SECURITY_POLICY_KIND = "SecurityPolicy"

# Gateway selection
GATEWAY_PUBLIC = "public"
GATEWAY_INTERNAL = "internal"
DEFAULT_PUBLIC_GATEWAY_NAME = "nebari-gateway"
DEFAULT_INTERNAL_GATEWAY_NAME = "nebari-internal-gateway"
DEFAULT_GATEWAY_NAMESPACE = "envoy-gateway-system"

# Gateway listener sections
LISTENER_HTTPS = "https"
LISTENER_HTTP = "http"

# Path match types
PATH_TYPE_PREFIX = "PathPrefix"
PATH_TYPE_EXACT = "Exact"

# Resource naming suffixes
HTTPROUTE_SUFFIX = "route"
SECURITY_POLICY_SUFFIX = "security"
CLIENT_SECRET_SUFFIX = "oidc-client"
CLIENT_ID_SUFFIX = "client"

# Secret keys
CLIENT_SECRET_KEY = "client-secret"

# Labels and annotations stamped on derived resources
LABEL_NAME = "app.kubernetes.io/name"
LABEL_INSTANCE = "app.kubernetes.io/instance"
LABEL_MANAGED_BY = "app.kubernetes.io/managed-by"
LABEL_NAME_VALUE = "nebariapp"
LABEL_MANAGED_BY_VALUE = "nebari-operator"
TLS_ENABLED_ANNOTATION = "nebari.dev/tls-enabled"

# Condition types
CONDITION_READY = "Ready"
CONDITION_ROUTING_READY = "RoutingReady"
CONDITION_AUTH_READY = "AuthReady"

# Condition status values
CONDITION_TRUE = "True"
CONDITION_FALSE = "False"
CONDITION_UNKNOWN = "Unknown"

# Ready condition reasons
REASON_RECONCILING = "Reconciling"
REASON_RECONCILE_SUCCESS = "ReconcileSuccess"
REASON_FAILED = "Failed"
REASON_NAMESPACE_NOT_OPTED_IN = "NamespaceNotOptedIn"
REASON_SERVICE_NOT_FOUND = "ServiceNotFound"
REASON_INVALID_SPEC = "InvalidSpec"

# RoutingReady condition reasons
REASON_ROUTING_NOT_CONFIGURED = "RoutingNotConfigured"
REASON_GATEWAY_NOT_FOUND = "GatewayNotFound"
REASON_CREATION_FAILED = "CreationFailed"
REASON_UPDATE_FAILED = "UpdateFailed"
REASON_HTTPROUTE_READY = "HTTPRouteReady"

# AuthReady condition reasons
REASON_AUTH_DISABLED = "AuthDisabled"
REASON_INVALID_PROVIDER = "InvalidProvider"
REASON_PROVISIONING_FAILED = "ProvisioningFailed"
REASON_VALIDATION_FAILED = "ValidationFailed"
REASON_SECURITY_POLICY_FAILED = "SecurityPolicyFailed"
REASON_AUTH_CONFIGURED = "AuthConfigured"
REASON_ROUTING_REQUIRED = "RoutingRequired"

# Event types
EVENT_TYPE_NORMAL = "Normal"
EVENT_TYPE_WARNING = "Warning"

# Event reasons
EVENT_REASON_VALIDATION_SUCCESS = "ValidationSuccess"
EVENT_REASON_NAMESPACE_NOT_OPTED_IN = "NamespaceNotOptedIn"
EVENT_REASON_SERVICE_NOT_FOUND = "ServiceNotFound"
EVENT_REASON_GATEWAY_NOT_FOUND = "GatewayNotFound"
EVENT_REASON_HTTPROUTE_CREATED = "HTTPRouteCreated"
EVENT_REASON_HTTPROUTE_UPDATED = "HTTPRouteUpdated"
EVENT_REASON_HTTPROUTE_DELETED = "HTTPRouteDeleted"
EVENT_REASON_CLIENT_PROVISIONED = "ClientProvisioned"
EVENT_REASON_CLIENT_PROVISION_FAILED = "ClientProvisionFailed"
EVENT_REASON_CLIENT_DELETED = "ClientDeleted"
EVENT_REASON_SECURITY_POLICY_CREATED = "SecurityPolicyCreated"
EVENT_REASON_SECURITY_POLICY_UPDATED = "SecurityPolicyUpdated"
EVENT_REASON_AUTH_CONFIGURED = "AuthConfigured"
EVENT_REASON_AUTH_FAILED = "AuthFailed"
EVENT_REASON_CLEANUP = "Cleanup"

# OIDC providers
PROVIDER_KEYCLOAK = "keycloak"
PROVIDER_GENERIC_OIDC = "generic-oidc"
DEFAULT_PROVIDER = PROVIDER_KEYCLOAK

# OIDC defaults
DEFAULT_OAUTH_CALLBACK_PATH = "/oauth2/callback"
DEFAULT_LOGOUT_PATH = "/logout"
DEFAULT_OIDC_SCOPES = ["openid", "profile", "email"]
CLIENT_SECRET_LENGTH = 32

# Keycloak defaults
KEYCLOAK_ADMIN_REALM = "master"
KEYCLOAK_ADMIN_CLIENT_ID = "admin-cli"
DEFAULT_KEYCLOAK_SERVICE_NAME = "keycloak-keycloakx-http"
DEFAULT_KEYCLOAK_NAMESPACE = "keycloak"
DEFAULT_KEYCLOAK_SERVICE_PORT = 80
DEFAULT_KEYCLOAK_CONTEXT_PATH = "/auth"
DEFAULT_KEYCLOAK_REALM = "nebari"
DEFAULT_KEYCLOAK_ADMIN_SECRET_NAME = "nebari-realm-admin-credentials"

# Requeue delays (in seconds)
DEFAULT_REQUEUE_INTERVAL = 60
DEFAULT_REQUEUE_CONFIG_ERROR = 300
DEFAULT_REQUEUE_TRANSIENT_ERROR = 30
DEFAULT_RECONCILE_TIMEOUT = 120

# Error message templates
ERROR_NAMESPACE_NOT_OPTED_IN = (
    "namespace {} is not opted-in to Nebari management (missing label: {}=true)"
)
ERROR_SERVICE_NOT_FOUND = "service {} not found in namespace {}"
ERROR_SERVICE_PORT_MISMATCH = "service {} does not expose port {}"
ERROR_GATEWAY_NOT_FOUND = "gateway {} not found in namespace {}"
ERROR_MISSING_CLIENT_SECRET = "OIDC client secret '{}' not found in namespace '{}'"
ERROR_CLIENT_SECRET_MISSING_KEY = "OIDC client secret '{}' missing required key '{}'"
