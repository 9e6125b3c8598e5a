"""Federated identity links between local users and external IDP identities.

A link is the relation ``(realm, user id, idp alias) -> (federated user id,
federated username)``. The Admin API allows at most one link per user and
alias; a duplicate link attempt answers 409, which is reported here as
"already linked" rather than as a failure.

The brokering flows that produce or reject links (auto-link, manual link with
confirmation, registration) run inside Keycloak. This module only sets up
their preconditions and reads back their postconditions.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from .client import KeycloakClient
from .exceptions import ResourceConflictError, ResourceNotFoundError
from .outcomes import provisioning_step

logger = logging.getLogger(__name__)


class LinkingOutcome(str, Enum):
    """Fixture-level view of how a local account relates to an IDP identity."""

    NO_LINK = "no_link"
    AUTO_LINKED = "auto_linked"
    MANUALLY_LINKED_PENDING_CONFIRMATION = "manually_linked_pending_confirmation"
    MANUALLY_LINKED_CONFIRMED = "manually_linked_confirmed"
    OVERRIDDEN = "overridden"
    REJECTED = "rejected"


class RejectionReason(str, Enum):
    UNVERIFIED = "unverified"
    NOT_ELIGIBLE = "not_eligible"
    EXISTING_USERS_ONLY = "existing_users_only"


@dataclass(frozen=True)
class LinkObservation:
    """What the server reports for one (user, alias) pair after a flow ran."""

    outcome: LinkingOutcome
    federated_user_id: Optional[str] = None
    federated_username: Optional[str] = None


class FederatedIdentityService:
    """Creates, queries, and removes federated identity links."""

    def __init__(self, client: KeycloakClient):
        """Initialize the linker.

        Args:
            client: Authenticated Keycloak client (carries the explicit base URL)
        """
        self.client = client

    def _links_path(self, realm: str, user_id: str) -> str:
        return f"/admin/realms/{realm}/users/{user_id}/federated-identity"

    def list_links(self, realm: str, user_id: str) -> List[dict]:
        """Return every federated identity link of a user ([] if the user is absent)."""
        try:
            with provisioning_step("link", f"Listing links of user '{user_id}'", passthrough=(ResourceNotFoundError,)):
                resp = self.client.get(self._links_path(realm, user_id))
        except ResourceNotFoundError:
            return []
        return resp.json() or []

    def get_link(self, realm: str, user_id: str, idp_alias: str) -> Optional[dict]:
        for link in self.list_links(realm, user_id):
            if link.get("identityProvider") == idp_alias:
                return link
        return None

    def has_link(self, realm: str, user_id: str, idp_alias: str) -> bool:
        """Check whether the user is linked to the given IDP alias.

        Always re-queried: a browser flow running in Keycloak may have created
        or removed the link since the last call.
        """
        return self.get_link(realm, user_id, idp_alias) is not None

    def link(
        self,
        realm: str,
        user_id: str,
        idp_alias: str,
        federated_user_id: str,
        federated_username: str,
    ) -> bool:
        """Attach an external identity to a local user.

        Returns:
            True if the link was created, False if it already existed (409)

        Raises:
            ProvisionError: Any non-conflict failure
        """
        payload = {
            "identityProvider": idp_alias,
            "userId": federated_user_id,
            "userName": federated_username,
        }
        try:
            with provisioning_step(
                "link",
                f"Linking user '{user_id}' to '{idp_alias}'",
                passthrough=(ResourceConflictError,),
            ):
                self.client.post(f"{self._links_path(realm, user_id)}/{idp_alias}", json=payload)
        except ResourceConflictError:
            logger.warning("[link] User '%s' is already linked to '%s'", user_id, idp_alias)
            return False
        logger.info(
            "[link] User '%s' -> IDP '%s' -> federated id '%s'",
            user_id, idp_alias, federated_user_id,
        )
        return True

    def unlink(self, realm: str, user_id: str, idp_alias: str) -> bool:
        """Remove the link to an IDP alias.

        Returns:
            True if removed, False if there was no link
        """
        try:
            with provisioning_step(
                "link",
                f"Unlinking user '{user_id}' from '{idp_alias}'",
                passthrough=(ResourceNotFoundError,),
            ):
                self.client.delete(f"{self._links_path(realm, user_id)}/{idp_alias}")
        except ResourceNotFoundError:
            logger.warning("[link] User '%s' has no link to '%s'", user_id, idp_alias)
            return False
        logger.info("[link] User '%s' unlinked from '%s'", user_id, idp_alias)
        return True

    def override_link(
        self,
        realm: str,
        user_id: str,
        idp_alias: str,
        federated_user_id: str,
        federated_username: str,
    ) -> bool:
        """Re-point an existing local account at a different external identity."""
        previous = self.get_link(realm, user_id, idp_alias)
        if previous and previous.get("userId") == federated_user_id:
            logger.info("[link] User '%s' already points at '%s'", user_id, federated_user_id)
            return False
        if previous:
            self.unlink(realm, user_id, idp_alias)
        return self.link(realm, user_id, idp_alias, federated_user_id, federated_username)

    def federated_user_id(self, realm: str, username: str, idp_alias: str) -> Optional[str]:
        """Resolve a local username to the federated id it is linked to.

        Returns:
            The federated user id, or None if the user or the link is absent
        """
        from .users import UserService

        user_id = UserService(self.client).user_id(realm, username)
        if not user_id:
            return None
        link = self.get_link(realm, user_id, idp_alias)
        return link.get("userId") if link else None

    @staticmethod
    def link_changed(previous_id: Optional[str], current_id: Optional[str]) -> bool:
        """An override took effect when the current id is non-empty and new."""
        return bool(current_id) and current_id != previous_id

    def observe(
        self,
        realm: str,
        username: str,
        idp_alias: str,
        previous_id: Optional[str] = None,
        linked_as: LinkingOutcome = LinkingOutcome.AUTO_LINKED,
    ) -> LinkObservation:
        """Map the current server state of a link onto LinkingOutcome.

        Args:
            previous_id: Federated id captured before an override flow, if any
            linked_as: Outcome to report for a present, unchanged link; the
                caller knows which brokering flow it drove
        """
        from .users import UserService

        user_id = UserService(self.client).user_id(realm, username)
        link = self.get_link(realm, user_id, idp_alias) if user_id else None
        if not link:
            return LinkObservation(LinkingOutcome.NO_LINK)
        current_id = link.get("userId")
        if previous_id is not None and self.link_changed(previous_id, current_id):
            outcome = LinkingOutcome.OVERRIDDEN
        else:
            outcome = linked_as
        return LinkObservation(outcome, current_id, link.get("userName"))
