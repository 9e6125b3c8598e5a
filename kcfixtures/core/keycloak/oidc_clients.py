"""Keycloak OAuth/OIDC client provisioning operations."""
from __future__ import annotations
import logging
from typing import Any, Optional

from .client import KeycloakClient
from .exceptions import ProvisionError, ResourceNotFoundError
from .outcomes import CreationOutcome, create_or_detect_conflict, provisioning_step, template_body

logger = logging.getLogger(__name__)


class ClientService:
    """Service for managing OAuth clients inside a realm."""

    def __init__(self, client: KeycloakClient):
        """Initialize client service.

        Args:
            client: Authenticated Keycloak client
        """
        self.client = client

    def get(self, realm: str, client_id: str) -> Optional[dict]:
        """Return the client representation matching client_id, if it exists.

        A missing realm counts as a missing client.
        """
        try:
            with provisioning_step("client", f"Looking up client '{client_id}'", passthrough=(ResourceNotFoundError,)):
                resp = self.client.get(f"/admin/realms/{realm}/clients", params={"clientId": client_id})
        except ResourceNotFoundError:
            return None
        for rep in resp.json() or []:
            if rep.get("clientId") == client_id:
                return rep
        return None

    def create(self, realm: str, template: Any) -> CreationOutcome:
        """Create the client described by a resolved client template.

        Raises:
            ProvisionError: Any non-conflict failure
        """
        payload = template_body(template)
        client_id = payload.get("clientId")
        if not client_id:
            raise ProvisionError("Client template has no 'clientId' field")
        outcome, _ = create_or_detect_conflict(
            self.client,
            f"/admin/realms/{realm}/clients",
            payload,
            tag="client",
            label=f"Client '{client_id}' in realm '{realm}'",
        )
        return outcome

    def exists(self, realm: str, client_id: str) -> bool:
        """Check whether a client with this clientId exists in the realm."""
        return self.get(realm, client_id) is not None

    def delete(self, realm: str, client_id: str) -> bool:
        """Delete a client by clientId.

        Returns:
            True if deleted, False if no such client
        """
        rep = self.get(realm, client_id)
        if not rep:
            logger.warning("[client] Client '%s' not found in realm '%s'", client_id, realm)
            return False
        try:
            with provisioning_step("client", f"Deleting client '{client_id}'", passthrough=(ResourceNotFoundError,)):
                self.client.delete(f"/admin/realms/{realm}/clients/{rep['id']}")
        except ResourceNotFoundError:
            return False
        logger.info("[client] Client '%s' deleted from realm '%s'", client_id, realm)
        return True

    def redirect_uri(self, realm: str, client_id: str) -> Optional[str]:
        """Return the client's first redirect URI (what a UI flow lands on)."""
        rep = self.get(realm, client_id)
        if not rep:
            return None
        uris = rep.get("redirectUris") or []
        return uris[0] if uris else None

    @staticmethod
    def build_representation(
        client_id: str,
        name: str,
        secret: str,
        redirect_uri: str,
    ) -> dict:
        """Body for a confidential client with a single redirect URI."""
        return {
            "clientId": client_id,
            "name": name,
            "enabled": True,
            "protocol": "openid-connect",
            "publicClient": False,
            "secret": secret,
            "standardFlowEnabled": True,
            "redirectUris": [redirect_uri],
            "webOrigins": ["+"],
        }
