"""Keycloak Admin API fixture library.

This package provisions test fixtures through the Keycloak Admin API.

Architecture:
- client.py: HTTP client with admin authentication and auto-refresh
- exceptions.py: Typed exceptions (409 -> conflict, 404 -> not found)
- outcomes.py: Idempotent create semantics shared by all services
- realm.py: Realm lifecycle
- oidc_clients.py: OAuth/OIDC clients inside a realm
- identity_providers.py: External identity providers (brokering)
- users.py: User fixtures (account, credential, optional IDP link)
- user_profile.py: User-profile schema merging
- federation.py: Federated identity links and link outcomes

Usage:
    from kcfixtures.core.keycloak import KeycloakClient, UserService

    client = KeycloakClient("http://keycloak:8080")
    client.authenticate_admin("admin", "password")

    users = UserService(client)
    users.create("medad-allow", resolved_user_template)
"""
from .client import (
    KeycloakClient,
    create_client_with_token,
    REQUEST_TIMEOUT,
)
from .exceptions import (
    KeycloakError,
    KeycloakAPIError,
    ResourceConflictError,
    ResourceNotFoundError,
    ProvisionError,
)
from .outcomes import CreationOutcome
from .realm import RealmService
from .oidc_clients import ClientService
from .identity_providers import IdentityProviderService
from .users import UserService
from .user_profile import UserProfileService
from .federation import (
    FederatedIdentityService,
    LinkingOutcome,
    LinkObservation,
    RejectionReason,
)

__all__ = [
    # Client
    "KeycloakClient",
    "create_client_with_token",
    "REQUEST_TIMEOUT",

    # Exceptions
    "KeycloakError",
    "KeycloakAPIError",
    "ResourceConflictError",
    "ResourceNotFoundError",
    "ProvisionError",

    # Outcomes
    "CreationOutcome",
    "LinkingOutcome",
    "LinkObservation",
    "RejectionReason",

    # Services
    "RealmService",
    "ClientService",
    "IdentityProviderService",
    "UserService",
    "UserProfileService",
    "FederatedIdentityService",
]
