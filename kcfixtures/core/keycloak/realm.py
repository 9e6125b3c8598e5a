"""Keycloak realm provisioning operations."""
from __future__ import annotations
import logging
from typing import Any, List, Optional

from .client import KeycloakClient
from .exceptions import ProvisionError, ResourceNotFoundError
from .outcomes import CreationOutcome, create_or_detect_conflict, provisioning_step, template_body

logger = logging.getLogger(__name__)


class RealmService:
    """Service for managing Keycloak realms from realm templates."""

    def __init__(self, client: KeycloakClient):
        """Initialize realm service.

        Args:
            client: Authenticated Keycloak client
        """
        self.client = client

    def create(self, template: Any) -> CreationOutcome:
        """Create the realm described by a resolved realm template.

        Args:
            template: ResolvedTemplate (or plain mapping) with a ``realm`` field

        Returns:
            CREATED, or ALREADY_EXISTS when the realm name is taken

        Raises:
            ProvisionError: Any non-conflict failure
        """
        payload = template_body(template)
        realm = payload.get("realm")
        if not realm:
            raise ProvisionError("Realm template has no 'realm' field")
        outcome, _ = create_or_detect_conflict(
            self.client, "/admin/realms", payload, tag="realm", label=f"Realm '{realm}'"
        )
        return outcome

    def exists(self, realm: str) -> bool:
        """Check whether the realm exists. Not-found is a normal False.

        Raises:
            ProvisionError: The existence check itself failed
        """
        return self.get_representation(realm) is not None

    def get_representation(self, realm: str) -> Optional[dict]:
        """Return the realm representation, or None if the realm is absent."""
        try:
            with provisioning_step("realm", f"Reading realm '{realm}'", passthrough=(ResourceNotFoundError,)):
                resp = self.client.get(f"/admin/realms/{realm}")
        except ResourceNotFoundError:
            return None
        return resp.json()

    def update(self, template: Any) -> None:
        """Replace an existing realm's configuration with the template body.

        Raises:
            ProvisionError: Realm absent or update rejected
        """
        payload = template_body(template)
        realm = payload.get("realm")
        if not realm:
            raise ProvisionError("Realm template has no 'realm' field")
        with provisioning_step("realm", f"Updating realm '{realm}'"):
            self.client.put(f"/admin/realms/{realm}", json=payload)
        logger.info("[realm] Realm '%s' updated", realm)

    def list_names(self) -> List[str]:
        """Return the names of all realms visible to the admin token."""
        with provisioning_step("realm", "Listing realms"):
            resp = self.client.get("/admin/realms")
        return [rep.get("realm") for rep in resp.json() or [] if rep.get("realm")]

    def delete(self, realm: str) -> bool:
        """Delete a non-master realm.

        Returns:
            True if deleted, False if it did not exist (or is master)

        Raises:
            ProvisionError: Delete failed for another reason
        """
        if realm == "master":
            logger.warning("[realm] Refusing to delete the master realm")
            return False
        try:
            with provisioning_step("realm", f"Deleting realm '{realm}'", passthrough=(ResourceNotFoundError,)):
                self.client.delete(f"/admin/realms/{realm}")
        except ResourceNotFoundError:
            logger.warning("[realm] Realm '%s' not found", realm)
            return False
        logger.info("[realm] Realm '%s' deleted", realm)
        return True
