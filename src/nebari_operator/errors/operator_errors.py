"""
Operator error hierarchy with categorization and retry logic.

This module defines the error types used throughout the Nebari operator,
providing clear categorization and integration with kopf's retry mechanisms.
Non-retryable errors need a human to fix the NebariApp or its environment and
are requeued on the long configuration-error interval; retryable ones are
requeued on the short transient interval.
"""

import kopf


class OperatorError(Exception):
    """
    Base error class for all operator-related exceptions.

    Provides categorization, retry behavior, and user guidance for resolution.
    """

    def __init__(
        self,
        message: str,
        category: str,
        retryable: bool = True,
        delay: int = 30,
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        """
        Initialize operator error.

        Args:
            message: Human-readable error description
            category: Error category (validation, configuration, dependency, ...)
            retryable: Whether the failure is expected to heal on its own
            delay: Suggested retry delay in seconds
            user_action: What user should do to resolve the issue
            cause: Underlying exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.category = category
        self.retryable = retryable
        self.delay = delay
        self.user_action = user_action
        self.cause = cause

    def as_kopf_error(self):
        """Convert to appropriate kopf exception type."""
        if self.retryable:
            return kopf.TemporaryError(str(self), delay=self.delay)
        else:
            return kopf.PermanentError(str(self))

    def __str__(self) -> str:
        """Enhanced string representation with user guidance."""
        base_msg = super().__str__()
        if self.user_action:
            return f"{base_msg}\nAction required: {self.user_action}"
        return base_msg


class ValidationError(OperatorError):
    """NebariApp environment does not satisfy a precondition.

    ``reason`` carries the condition reason reported on ``Ready``.
    """

    def __init__(self, message: str, reason: str, user_action: str | None = None):
        super().__init__(
            message=message,
            category="validation",
            retryable=False,
            delay=300,
            user_action=user_action
            or "Check resource specification and fix validation errors",
        )
        self.reason = reason


class ConfigurationError(OperatorError):
    """Error in operator or resource configuration."""

    def __init__(
        self, message: str, retryable: bool = False, user_action: str | None = None
    ):
        super().__init__(
            message=message,
            category="configuration",
            retryable=retryable,
            delay=300,
            user_action=user_action or "Review and correct configuration",
        )


class DependencyNotReadyError(OperatorError):
    """A resource the NebariApp depends on does not exist yet."""

    def __init__(self, message: str, user_action: str | None = None):
        super().__init__(
            message=message,
            category="dependency",
            retryable=True,
            delay=30,
            user_action=user_action or "Wait for the dependency to become available",
        )


class ProvisioningError(OperatorError):
    """OIDC client provisioning against an identity provider failed."""

    def __init__(
        self,
        message: str,
        provider: str,
        cause: Exception | None = None,
        retryable: bool = True,
    ):
        super().__init__(
            message=f"{provider} provisioning failed: {message}",
            category="provisioning",
            retryable=retryable,
            delay=30,
            user_action="Check identity provider availability and admin credentials",
            cause=cause,
        )
        self.provider = provider


class ExternalServiceError(OperatorError):
    """Error communicating with external services."""

    def __init__(
        self,
        service: str,
        message: str,
        retryable: bool = True,
        delay: int = 30,
        user_action: str | None = None,
    ):
        action = user_action or f"Check {service} connectivity and credentials"
        super().__init__(
            message=f"{service} error: {message}",
            category="external",
            retryable=retryable,
            delay=delay,
            user_action=action,
        )


class KeycloakAdminError(ExternalServiceError):
    """Error communicating with Keycloak Admin API."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retryable: bool = True,
        response_body: str | None = None,
    ):
        if status_code:
            message = f"HTTP {status_code}: {message}"

        # 4xx errors are generally not retryable (client errors)
        if status_code and 400 <= status_code < 500:
            retryable = False

        super().__init__(
            service="Keycloak Admin API",
            message=message,
            retryable=retryable,
            user_action="Check Keycloak instance status and admin credentials",
        )
        self.status_code = status_code
        self.response_body = response_body


class KubernetesAPIError(ExternalServiceError):
    """Error communicating with Kubernetes API."""

    def __init__(
        self,
        message: str,
        reason: str | None = None,
        status: int | None = None,
        retryable: bool = True,
    ):
        if reason:
            message = f"{message} (reason: {reason})"

        # Some K8s errors are not retryable
        non_retryable_reasons = {"Forbidden", "Unauthorized", "Invalid"}
        if reason in non_retryable_reasons:
            retryable = False

        super().__init__(
            service="Kubernetes API",
            message=message,
            retryable=retryable,
            user_action="Check RBAC permissions and cluster connectivity",
        )
        self.reason = reason
        self.status = status


class CleanupError(OperatorError):
    """Deletion-time cleanup failed; the finalizer must stay in place."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(
            message=message,
            category="cleanup",
            retryable=True,
            delay=30,
            user_action="Resolve the failure; deletion is retried automatically",
            cause=cause,
        )
