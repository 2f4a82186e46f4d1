"""Authentication and authorization utilities."""

from .keycloak import AuthError, Identity, KeycloakConfig, KeycloakDirectory, Session
from .session import Unauthenticated, get_directory, optional_identity, require_identity

__all__ = [
    "AuthError",
    "Identity",
    "KeycloakConfig",
    "KeycloakDirectory",
    "Session",
    "Unauthenticated",
    "get_directory",
    "optional_identity",
    "require_identity",
]
