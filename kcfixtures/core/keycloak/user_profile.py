"""Realm user-profile schema merging.

The Admin API only replaces the user-profile schema as a whole, so attribute
changes are merged client-side and written back with a single PUT:

    unaffected original attributes (original order)
    + new or replaced attributes (caller order, last definition per name wins)
"""
from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from .client import KeycloakClient
from .exceptions import ProvisionError
from .outcomes import provisioning_step

if TYPE_CHECKING:
    from ..templates import TemplateStore

logger = logging.getLogger(__name__)


def normalize_attribute_defs(defs: Any) -> List[Dict[str, Any]]:
    """Accept ``{"attributes": [...]}``, a list, or one attribute object.

    Raises:
        ValueError: Unsupported shape or a definition without ``name``
    """
    if isinstance(defs, dict) and "attributes" in defs:
        items = defs["attributes"]
    elif isinstance(defs, dict) and "name" in defs:
        items = [defs]
    elif isinstance(defs, (list, tuple)):
        items = list(defs)
    else:
        raise ValueError(
            "Attribute definitions must be {'attributes': [...]}, a list, or a single attribute with 'name'"
        )
    if not isinstance(items, list):
        raise ValueError("'attributes' must be a list")

    normalized = []
    for index, item in enumerate(items):
        if not isinstance(item, dict) or not item.get("name"):
            raise ValueError(f"Attribute definition #{index} has no 'name'")
        normalized.append(item)
    return normalized


class UserProfileService:
    """Reads and merges a realm's user-profile (attribute schema)."""

    def __init__(self, client: KeycloakClient):
        """Initialize the profile merger.

        Args:
            client: Authenticated Keycloak client (carries the explicit base URL)
        """
        self.client = client

    def _profile_path(self, realm: str) -> str:
        return f"/admin/realms/{realm}/users/profile"

    def get_schema(self, realm: str) -> dict:
        """Fetch the realm's current user-profile schema.

        Raises:
            ProvisionError: Fetch failed (absent realm included)
        """
        with provisioning_step("profile", f"Fetching user profile of realm '{realm}'"):
            resp = self.client.get(self._profile_path(realm))
        return resp.json() or {}

    def attribute_names(self, realm: str) -> List[str]:
        return [attr.get("name") for attr in self.get_schema(realm).get("attributes") or []]

    @staticmethod
    def merge(schema: dict, defs: List[Dict[str, Any]]) -> dict:
        """Return a merged copy of ``schema``; names stay unique."""
        attributes = list(schema.get("attributes") or [])
        for definition in defs:
            name = definition["name"]
            attributes = [attr for attr in attributes if attr.get("name") != name]
            attributes.append(definition)
        merged = dict(schema)
        merged["attributes"] = attributes
        return merged

    def merge_attributes(self, realm: str, defs: Any, lenient: bool = False) -> Optional[dict]:
        """Merge attribute definitions into the realm's user profile.

        Args:
            realm: Target realm
            defs: Attribute definitions (see normalize_attribute_defs)
            lenient: Log fetch/write failures and return None instead of raising

        Returns:
            The schema that was written, or None after a lenient failure

        Raises:
            ValueError: Malformed definitions (raised before any network call)
            ProvisionError: Fetch or write failed and lenient is False
        """
        attributes = normalize_attribute_defs(defs)
        try:
            merged = self.merge(self.get_schema(realm), attributes)
            with provisioning_step("profile", f"Writing user profile of realm '{realm}'"):
                self.client.put(self._profile_path(realm), json=merged)
        except ProvisionError as exc:
            if not lenient:
                raise
            logger.warning("[profile] Skipping user profile update for realm '%s': %s", realm, exc)
            return None

        logger.info(
            "[profile] Realm '%s' user profile merged: %s",
            realm, ", ".join(attr["name"] for attr in attributes),
        )
        return merged

    def merge_from_template(
        self,
        realm: str,
        source_id: str,
        store: "TemplateStore",
        lenient: bool = False,
    ) -> Optional[dict]:
        """Apply the realm's entry from a user-profile document.

        Raises:
            TemplateNotFoundError: No profile entry for the realm
        """
        profile = store.profile_for_realm(source_id, realm)
        return self.merge_attributes(realm, profile, lenient=lenient)
