"""Template store for declarative Keycloak fixtures.

Fixture documents are plain JSON files, one per resource kind::

    {
      "users": [ {"username": "testuser1", ...}, ... ],
      "userMappings": {"user1": "testuser1"}
    }

Documents are parsed again on every lookup. Templates are read-only fixtures,
so nothing is cached between calls.
"""
from __future__ import annotations
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"


class TemplateError(Exception):
    """Base exception for template loading and lookup."""
    pass


class TemplateSourceError(TemplateError):
    """Template source is missing, unreadable, or not valid JSON."""
    pass


class TemplateNotFoundError(TemplateError):
    """No template in the source matches the requested key."""
    pass


@dataclass(frozen=True)
class CollectionKind:
    """Describes where one resource kind lives inside a fixture document."""

    name: str
    array_field: str
    key_field: str
    mapping_field: str


REALMS = CollectionKind("realm", "realms", "realm", "realmMapping")
CLIENTS = CollectionKind("client", "clients", "clientId", "clientMappings")
IDENTITY_PROVIDERS = CollectionKind("identity provider", "identityProviders", "alias", "idProviderMappings")
USERS = CollectionKind("user", "users", "username", "userMappings")
PROFILES = CollectionKind("user profile", "profiles", "realmName", "profileMapping")


@dataclass(frozen=True)
class Template:
    """One unresolved fixture entry as loaded from its source document."""

    kind: CollectionKind
    key: str
    raw_body: Dict[str, Any]
    source_id: str = ""


@dataclass(frozen=True)
class ResolvedTemplate:
    """A template with its placeholders substituted; owned by one caller."""

    kind: CollectionKind
    key: str
    body: Dict[str, Any]


class TemplateStore:
    """Loads fixture documents from a directory and looks entries up by key."""

    def __init__(self, base_dir: Union[str, Path, None] = None):
        """Initialize the store.

        Args:
            base_dir: Directory holding fixture documents (defaults to the
                bundled kcfixtures/templates directory)
        """
        self.base_dir = Path(base_dir) if base_dir else DEFAULT_TEMPLATE_DIR

    def _locate(self, source_id: str) -> Path:
        path = Path(source_id)
        if not path.is_absolute():
            path = self.base_dir / path
        if not path.is_file():
            raise TemplateSourceError(f"Template source not found: {path}")
        return path

    def _read_document(self, source_id: str) -> Any:
        path = self._locate(source_id)
        try:
            with path.open(encoding="utf-8") as fh:
                return json.load(fh)
        except (OSError, UnicodeDecodeError) as exc:
            raise TemplateSourceError(f"Cannot read template source {path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise TemplateSourceError(f"Template source {path} is not valid JSON: {exc}") from exc

    def load_collection(self, source_id: str, kind: CollectionKind) -> List[Template]:
        """Parse a source document and return its entries in document order.

        The entries come from the kind's top-level array field. A document that
        is itself an array, or a single object carrying the key field, is
        accepted as well.

        Raises:
            TemplateSourceError: Source missing, unparseable, or malformed
        """
        document = self._read_document(source_id)

        if isinstance(document, dict) and kind.array_field in document:
            entries = document[kind.array_field]
            if not isinstance(entries, list):
                raise TemplateSourceError(
                    f"'{kind.array_field}' in {source_id} must be an array"
                )
        elif isinstance(document, list):
            entries = document
        elif isinstance(document, dict) and kind.key_field in document:
            entries = [document]
        else:
            entries = []

        templates: List[Template] = []
        seen: set[str] = set()
        for index, entry in enumerate(entries):
            if not isinstance(entry, dict) or kind.key_field not in entry:
                raise TemplateSourceError(
                    f"Entry #{index} of '{kind.array_field}' in {source_id} has no '{kind.key_field}'"
                )
            key = str(entry[kind.key_field])
            if key in seen:
                raise TemplateSourceError(
                    f"Duplicate {kind.name} key '{key}' in {source_id}"
                )
            seen.add(key)
            templates.append(Template(kind=kind, key=key, raw_body=entry, source_id=source_id))

        logger.debug("[templates] Loaded %d %s template(s) from %s", len(templates), kind.name, source_id)
        return templates

    def find_by_key(
        self,
        source_id: str,
        key: str,
        kind: CollectionKind,
        field: Optional[str] = None,
    ) -> Template:
        """Return the entry whose key field equals ``key``.

        Args:
            source_id: Document name (relative to base_dir) or absolute path
            key: Value to match
            kind: Collection description
            field: Compare this field instead of the kind's primary key field

        Raises:
            TemplateNotFoundError: No entry matches
        """
        for template in self.load_collection(source_id, kind):
            value = template.key if field is None else template.raw_body.get(field)
            if value is not None and str(value) == key:
                logger.debug("[templates] Found %s '%s' in %s", kind.name, key, source_id)
                return template
        raise TemplateNotFoundError(f"No {kind.name} template '{key}' in {source_id}")

    def load_mapping(self, source_id: str, mapping_field: str) -> Dict[str, str]:
        """Return the shortcut-key mapping stored beside the collection.

        An absent mapping field yields an empty mapping.

        Raises:
            TemplateSourceError: Source missing/unparseable or mapping is not an object
        """
        document = self._read_document(source_id)
        if not isinstance(document, dict) or mapping_field not in document:
            return {}
        mapping = document[mapping_field]
        if not isinstance(mapping, dict):
            raise TemplateSourceError(f"'{mapping_field}' in {source_id} must be an object")
        return {str(k): str(v) for k, v in mapping.items()}

    def find_by_mapping_key(self, source_id: str, mapping_key: str, kind: CollectionKind) -> Template:
        """Resolve a shortcut key through the kind's mapping, then look it up.

        Raises:
            TemplateNotFoundError: Unknown shortcut or unknown target key
        """
        mapping = self.load_mapping(source_id, kind.mapping_field)
        target = mapping.get(mapping_key)
        if target is None:
            raise TemplateNotFoundError(
                f"No {kind.mapping_field} entry '{mapping_key}' in {source_id} "
                f"(available: {sorted(mapping)})"
            )
        logger.debug("[templates] Mapping '%s' -> '%s'", mapping_key, target)
        return self.find_by_key(source_id, target, kind)

    def profile_for_realm(self, source_id: str, realm: str) -> Any:
        """Return the ``userProfile`` body configured for a realm.

        Raises:
            TemplateNotFoundError: No profile entry for the realm, or it has no userProfile
        """
        template = self.find_by_key(source_id, realm, PROFILES)
        profile = template.raw_body.get("userProfile")
        if not isinstance(profile, (dict, list)):
            raise TemplateNotFoundError(f"Profile entry for realm '{realm}' in {source_id} has no userProfile")
        return profile
