"""
Utility modules for the Nebari operator.

Contains helpers for Kubernetes access, naming of derived objects, status
conditions, events, environment validation and the Keycloak Admin API.
"""
