"""
Nebari Operator - onboards applications onto a shared ingress gateway.

A NebariApp resource declares a hostname, a backend service, optional path
routing and optional OIDC authentication. The operator keeps the derived
objects in sync:
- HTTPRoute attached to the public or internal gateway
- Envoy SecurityPolicy enforcing OIDC login
- Keycloak client and its credential secret (when auto-provisioned)
"""

__version__ = "0.1.0"
