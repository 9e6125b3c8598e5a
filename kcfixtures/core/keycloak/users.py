"""Keycloak user fixture operations."""
from __future__ import annotations
import logging
from typing import Any, List, Optional

from .client import KeycloakClient
from .exceptions import ProvisionError, ResourceNotFoundError
from .federation import FederatedIdentityService
from .outcomes import CreationOutcome, create_or_detect_conflict, provisioning_step, template_body

logger = logging.getLogger(__name__)

# Template fields that drive follow-up steps instead of the create body
PASSWORD_FIELD = "password"
FEDERATED_IDENTITY_FIELD = "federatedIdentity"
HARNESS_ONLY_FIELDS = ("testName",)


class UserService:
    """Service for managing user fixtures (account, credential, optional IDP link)."""

    def __init__(self, client: KeycloakClient, links: Optional[FederatedIdentityService] = None):
        """
        Args:
            client: Authenticated Keycloak client
            links: Linker used for federatedIdentity blocks (built from client if omitted)
        """
        self.client = client
        self.links = links or FederatedIdentityService(client)

    def get_user_by_username(self, realm: str, username: str) -> Optional[dict]:
        """Return the user representation that exactly matches the username.

        A missing realm counts as a missing user.
        """
        try:
            with provisioning_step("user", f"Looking up user '{username}'", passthrough=(ResourceNotFoundError,)):
                resp = self.client.get(
                    f"/admin/realms/{realm}/users",
                    params={"username": username, "exact": "true"},
                )
        except ResourceNotFoundError:
            return None
        for user in resp.json() or []:
            if user.get("username") == username:
                return user
        return None

    def user_id(self, realm: str, username: str) -> Optional[str]:
        """Return the server-assigned id of a user, or None if absent."""
        user = self.get_user_by_username(realm, username)
        return user.get("id") if user else None

    def exists(self, realm: str, username: str) -> bool:
        """Check whether a user exists in the realm."""
        return self.get_user_by_username(realm, username) is not None

    def create(self, realm: str, template: Any) -> CreationOutcome:
        """Ensure a user fixture exists: account, permanent password, optional link.

        The three steps form one operation. If the username is already taken
        nothing else is touched. If the account gets created but a later step
        fails, the account is deleted again before ProvisionError is raised.

        Args:
            realm: Target realm
            template: Resolved user template (``password`` and optional
                ``federatedIdentity`` fields are consumed here)

        Raises:
            ProvisionError: Any non-conflict failure
        """
        payload = template_body(template)
        password = payload.pop(PASSWORD_FIELD, None)
        federated = payload.pop(FEDERATED_IDENTITY_FIELD, None)
        for field in HARNESS_ONLY_FIELDS:
            payload.pop(field, None)
        username = payload.get("username")
        if not username:
            raise ProvisionError("User template has no 'username' field")
        link_blocks = self._federated_blocks(federated, username)

        outcome, resp = create_or_detect_conflict(
            self.client,
            f"/admin/realms/{realm}/users",
            payload,
            tag="user",
            label=f"User '{username}' in realm '{realm}'",
        )
        if not outcome.created:
            return outcome

        user_id = self._created_id(resp) or self.user_id(realm, username)
        if not user_id:
            raise ProvisionError(f"User '{username}' was created but its id could not be resolved")

        try:
            if password is not None:
                self.set_password(realm, user_id, password, temporary=False)
            for block in link_blocks:
                self.links.link(
                    realm,
                    user_id,
                    block["identityProvider"],
                    block["federatedUserId"],
                    block["federatedUsername"],
                )
        except ProvisionError:
            self._discard_partial(realm, user_id, username)
            raise
        return outcome

    def create_user(
        self,
        realm: str,
        username: str,
        email: str,
        first: str,
        last: str,
        password: str,
    ) -> CreationOutcome:
        """Create an enabled, email-verified user without a template."""
        return self.create(realm, {
            "username": username,
            "email": email,
            "firstName": first,
            "lastName": last,
            "enabled": True,
            "emailVerified": True,
            PASSWORD_FIELD: password,
        })

    def set_password(self, realm: str, user_id: str, password: str, temporary: bool = False) -> None:
        """Reset the user's password credential.

        Raises:
            ProvisionError: The reset was rejected or the request failed
        """
        with provisioning_step("user", f"Setting credential for user id '{user_id}'"):
            self.client.put(
                f"/admin/realms/{realm}/users/{user_id}/reset-password",
                json={"type": "password", "temporary": temporary, "value": password},
            )
        logger.info("[user] Password set for user id '%s'", user_id)

    def _discard_partial(self, realm: str, user_id: str, username: str) -> None:
        """Best-effort removal of an account whose follow-up steps failed."""
        try:
            with provisioning_step("user", f"Removing incomplete user '{username}'", passthrough=(ResourceNotFoundError,)):
                self.client.delete(f"/admin/realms/{realm}/users/{user_id}")
        except ResourceNotFoundError:
            return
        except ProvisionError as exc:
            logger.error("[user] Incomplete user '%s' left in realm '%s': %s", username, realm, exc)
            return
        logger.warning("[user] Removed incomplete user '%s' from realm '%s'", username, realm)

    def delete(self, realm: str, username: str) -> bool:
        """Delete a user by username.

        Returns:
            True if deleted, False if no such user
        """
        user_id = self.user_id(realm, username)
        if not user_id:
            logger.warning("[user] User '%s' not found in realm '%s'", username, realm)
            return False
        try:
            with provisioning_step("user", f"Deleting user '{username}'", passthrough=(ResourceNotFoundError,)):
                self.client.delete(f"/admin/realms/{realm}/users/{user_id}")
        except ResourceNotFoundError:
            return False
        logger.info("[user] User '%s' deleted from realm '%s'", username, realm)
        return True

    @staticmethod
    def _created_id(resp) -> Optional[str]:
        location = (resp.headers or {}).get("Location") if resp is not None else None
        if not location:
            return None
        return location.rstrip("/").rsplit("/", 1)[-1] or None

    @staticmethod
    def _federated_blocks(federated: Any, username: str) -> List[dict]:
        if federated is None:
            return []
        blocks = federated if isinstance(federated, list) else [federated]
        normalized = []
        for block in blocks:
            if not isinstance(block, dict):
                raise ProvisionError(f"User '{username}' has a malformed federatedIdentity block")
            alias = block.get("identityProvider")
            fed_id = block.get("federatedUserId", block.get("userId"))
            fed_name = block.get("federatedUsername", block.get("userName"))
            if not alias or not fed_id:
                raise ProvisionError(
                    f"User '{username}' federatedIdentity needs identityProvider and federatedUserId"
                )
            normalized.append({
                "identityProvider": alias,
                "federatedUserId": str(fed_id),
                "federatedUsername": str(fed_name if fed_name is not None else fed_id),
            })
        return normalized
