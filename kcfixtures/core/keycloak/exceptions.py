"""Keycloak-specific exceptions for fixture provisioning."""
from __future__ import annotations

from typing import Optional


class KeycloakError(Exception):
    """Base exception for all Keycloak operations."""
    pass


class KeycloakAPIError(KeycloakError):
    """HTTP error from Keycloak Admin API.

    Attributes:
        status_code: HTTP status code
        message: Error message from response
        endpoint: API endpoint that failed
    """

    def __init__(self, status_code: int, message: str, endpoint: str):
        self.status_code = status_code
        self.message = message
        self.endpoint = endpoint
        super().__init__(f"[{status_code}] {endpoint}: {message}")


class ResourceConflictError(KeycloakAPIError):
    """409 from the Admin API - the resource (or link) already exists."""
    pass


class ResourceNotFoundError(KeycloakAPIError):
    """404 from the Admin API - the target resource does not exist."""
    pass


class ProvisionError(KeycloakError):
    """A provisioning step failed for a reason other than a conflict.

    The fixture set is in an undefined state; callers abort the scenario.

    Attributes:
        cause: Underlying exception (also chained as __cause__)
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)

    @property
    def status_code(self) -> Optional[int]:
        """HTTP status of the underlying API failure, when there is one."""
        return getattr(self.cause, "status_code", None)


def error_for_status(status_code: int, message: str, endpoint: str) -> KeycloakAPIError:
    """Build the most specific API error for a failed response."""
    if status_code == 409:
        return ResourceConflictError(status_code, message, endpoint)
    if status_code == 404:
        return ResourceNotFoundError(status_code, message, endpoint)
    return KeycloakAPIError(status_code, message, endpoint)
