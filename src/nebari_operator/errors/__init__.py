"""
Error handling module for the Nebari operator.

This module provides an error hierarchy that integrates with kopf and
classifies failures into configuration errors, dependencies that are not
ready yet, and transient infrastructure errors.
"""

from .operator_errors import (
    CleanupError,
    ConfigurationError,
    DependencyNotReadyError,
    ExternalServiceError,
    KeycloakAdminError,
    KubernetesAPIError,
    OperatorError,
    ProvisioningError,
    ValidationError,
)

__all__ = [
    "OperatorError",
    "ValidationError",
    "ConfigurationError",
    "DependencyNotReadyError",
    "ProvisioningError",
    "ExternalServiceError",
    "KeycloakAdminError",
    "KubernetesAPIError",
    "CleanupError",
]
