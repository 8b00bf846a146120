"""
Deterministic names for objects derived from a NebariApp.

Every name is a pure function of the NebariApp name (and namespace where
uniqueness has to hold across the whole cluster), so repeated reconcile
passes always address the same objects.
"""

from nebari_operator import constants


def resource_name(app_name: str, suffix: str) -> str:
    return f"{app_name}-{suffix}"


def httproute_name(app_name: str) -> str:
    return resource_name(app_name, constants.HTTPROUTE_SUFFIX)


def security_policy_name(app_name: str) -> str:
    return resource_name(app_name, constants.SECURITY_POLICY_SUFFIX)


def client_secret_name(app_name: str, override: str | None = None) -> str:
    """Credential secret name, ``auth.clientSecretRef`` taking precedence."""
    return override or resource_name(app_name, constants.CLIENT_SECRET_SUFFIX)


def client_id(app_name: str, namespace: str) -> str:
    """
    OIDC client identifier.

    The namespace is part of the identifier: identity providers are shared by
    the whole cluster, so two NebariApps called ``app`` in different
    namespaces must not collide.
    """
    return f"{app_name}-{namespace}-{constants.CLIENT_ID_SUFFIX}"
