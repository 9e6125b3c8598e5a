"""
Provisioning Session - one context object per fixture run

Ties together configuration, the admin client, the template store and the
per-resource services, so a test run builds it once and passes it around
instead of sharing module-level state between scenarios.

Architecture:
    CLI (scripts/provision.py) ──┐
                                 ├──> ProvisioningSession ──> kcfixtures.core.keycloak ──> Keycloak
    pytest fixtures ─────────────┘

Flow per resource:
    template lookup (key or shortcut) -> placeholder resolution -> create
    -> audit event
"""

from __future__ import annotations
import logging
from contextlib import contextmanager
from typing import Iterator, Mapping, Optional

from kcfixtures.config.settings import ProvisioningConfig, load_settings
from kcfixtures.core.keycloak import (
    ClientService,
    CreationOutcome,
    FederatedIdentityService,
    IdentityProviderService,
    KeycloakClient,
    ProvisionError,
    RealmService,
    UserProfileService,
    UserService,
)
from kcfixtures.core.placeholders import resolve
from kcfixtures.core.templates import (
    CLIENTS,
    IDENTITY_PROVIDERS,
    REALMS,
    USERS,
    CollectionKind,
    ResolvedTemplate,
    Template,
    TemplateNotFoundError,
    TemplateStore,
)
from scripts import audit

logger = logging.getLogger(__name__)


class ProvisioningSession:
    """Explicit provisioning context: config, admin client, store, services."""

    def __init__(
        self,
        config: ProvisioningConfig,
        client: Optional[KeycloakClient] = None,
        store: Optional[TemplateStore] = None,
    ):
        """Build a session.

        Args:
            config: Run configuration
            client: Admin client (built from config.keycloak_url if omitted)
            store: Template store (built from config.template_dir if omitted)
        """
        self.config = config
        self.client = client or KeycloakClient(config.keycloak_url, timeout=config.request_timeout)
        self.store = store or TemplateStore(config.template_dir)

        self.realms = RealmService(self.client)
        self.clients = ClientService(self.client)
        self.identity_providers = IdentityProviderService(self.client)
        self.links = FederatedIdentityService(self.client)
        self.users = UserService(self.client, links=self.links)
        self.profiles = UserProfileService(self.client)

    @classmethod
    def from_settings(cls) -> "ProvisioningSession":
        return cls(load_settings())

    def authenticate(self) -> None:
        """Obtain the admin token used by every service of this session."""
        self.client.authenticate_admin(
            self.config.admin_username,
            self.config.admin_password,
            realm=self.config.admin_realm,
            client_id=self.config.admin_client_id,
        )
        logger.info("[auth] Session authenticated against %s", self.config.keycloak_url)

    # ─────────────────────────────────────────────────────────────────────────
    # Template resolution
    # ─────────────────────────────────────────────────────────────────────────

    def find_template(self, source_id: str, key: str, kind: CollectionKind) -> Template:
        """Look a template up by key, falling back to the mapping shortcuts.

        Raises:
            TemplateNotFoundError: Neither the key nor a shortcut matches
        """
        try:
            return self.store.find_by_key(source_id, key, kind)
        except TemplateNotFoundError:
            if key not in self.store.load_mapping(source_id, kind.mapping_field):
                raise
            return self.store.find_by_mapping_key(source_id, key, kind)

    def resolve_template(
        self,
        source_id: str,
        key: str,
        kind: CollectionKind,
        substitutions: Optional[Mapping[str, str]] = None,
    ) -> ResolvedTemplate:
        """find_template followed by placeholder resolution."""
        return resolve(self.find_template(source_id, key, kind), substitutions or {})

    @contextmanager
    def _audited(self, event_type: str, kind: str, key: str, realm: Optional[str]) -> Iterator[None]:
        try:
            yield
        except ProvisionError as exc:
            audit.safe_log_event(
                event_type, kind, key, realm=realm, outcome="failed", details={"error": str(exc)}
            )
            raise

    def _record(self, event_type: str, kind: str, key: str, realm: Optional[str], outcome: str, **details) -> None:
        audit.safe_log_event(event_type, kind, key, realm=realm, outcome=outcome, details=details)

    # ─────────────────────────────────────────────────────────────────────────
    # Resources
    # ─────────────────────────────────────────────────────────────────────────

    def provision_realm(self, source_id: str, key: str) -> CreationOutcome:
        """Create a realm from its template.

        Raises:
            TemplateError: Template source or key problem
            ProvisionError: Non-conflict API failure
        """
        raw = self.find_template(source_id, key, REALMS)
        template = resolve(raw, self.config.placeholder_substitutions(raw.key))
        with self._audited("create", "realm", template.key, None):
            outcome = self.realms.create(template)
        self._record("create", "realm", template.key, None, outcome.value)
        return outcome

    def provision_realm_with_profile(self, realm_source: str, profile_source: str, key: str) -> CreationOutcome:
        """Create a realm, then merge its user-profile attributes.

        The profile merge runs for an already existing realm too; merging the
        same attributes again leaves the schema unchanged.
        """
        outcome = self.provision_realm(realm_source, key)
        realm = self.find_template(realm_source, key, REALMS).key
        self.merge_profile(realm, profile_source)
        return outcome

    def merge_profile(self, realm: str, source_id: str) -> Optional[dict]:
        """Merge the realm's profile entry from a profile document."""
        with self._audited("profile_merge", "profile", realm, realm):
            merged = self.profiles.merge_from_template(
                realm, source_id, self.store, lenient=self.config.lenient_profile
            )
        self._record("profile_merge", "profile", realm, realm, "merged" if merged is not None else "skipped")
        return merged

    def provision_client(self, realm: str, source_id: str, client_id: str) -> CreationOutcome:
        template = self.resolve_template(
            source_id, client_id, CLIENTS, self.config.placeholder_substitutions(realm)
        )
        with self._audited("create", "client", template.key, realm):
            outcome = self.clients.create(realm, template)
        self._record("create", "client", template.key, realm, outcome.value)
        return outcome

    def provision_identity_provider(
        self,
        realm: str,
        source_id: str,
        alias: str,
        substitutions: Optional[Mapping[str, str]] = None,
    ) -> CreationOutcome:
        """Create an identity provider with runtime URLs substituted.

        Explicit ``substitutions`` win over the configured URLs.
        """
        values = self.config.placeholder_substitutions(realm)
        values.update(substitutions or {})
        template = self.resolve_template(source_id, alias, IDENTITY_PROVIDERS, values)
        with self._audited("create", "idp", template.key, realm):
            outcome = self.identity_providers.create(realm, template)
        self._record("create", "idp", template.key, realm, outcome.value)
        return outcome

    def provision_user(self, realm: str, source_id: str, username: str) -> CreationOutcome:
        """Create a user fixture (account, credential, optional link)."""
        template = self.resolve_template(
            source_id, username, USERS, self.config.placeholder_substitutions(realm)
        )
        with self._audited("create", "user", template.key, realm):
            outcome = self.users.create(realm, template)
        linked = template.body.get("federatedIdentity")
        self._record(
            "create", "user", template.key, realm, outcome.value,
            federated=bool(linked) and outcome.created,
        )
        return outcome

    def delete_realm(self, realm: str) -> bool:
        with self._audited("delete", "realm", realm, None):
            deleted = self.realms.delete(realm)
        self._record("delete", "realm", realm, None, "deleted" if deleted else "absent")
        return deleted

    # ─────────────────────────────────────────────────────────────────────────
    # Federated identity links by username
    # ─────────────────────────────────────────────────────────────────────────

    def _require_user_id(self, realm: str, username: str) -> str:
        user_id = self.users.user_id(realm, username)
        if not user_id:
            raise ProvisionError(f"User '{username}' not found in realm '{realm}'")
        return user_id

    def link_user(
        self,
        realm: str,
        username: str,
        idp_alias: str,
        federated_user_id: str,
        federated_username: str,
        override: bool = False,
    ) -> bool:
        """Link (or re-point, with override) a user's identity for an IDP alias."""
        event_type = "override_link" if override else "link"
        with self._audited(event_type, "link", username, realm):
            user_id = self._require_user_id(realm, username)
            if override:
                changed = self.links.override_link(
                    realm, user_id, idp_alias, federated_user_id, federated_username
                )
            else:
                changed = self.links.link(realm, user_id, idp_alias, federated_user_id, federated_username)
        self._record(
            event_type, "link", username, realm, "linked" if changed else "unchanged",
            identity_provider=idp_alias,
        )
        return changed

    def unlink_user(self, realm: str, username: str, idp_alias: str) -> bool:
        with self._audited("unlink", "link", username, realm):
            user_id = self.users.user_id(realm, username)
            removed = self.links.unlink(realm, user_id, idp_alias) if user_id else False
        self._record("unlink", "link", username, realm, "unlinked" if removed else "absent", identity_provider=idp_alias)
        return removed

    def has_link(self, realm: str, username: str, idp_alias: str) -> bool:
        """Whether the user currently has a link for the alias (False if no such user)."""
        user_id = self.users.user_id(realm, username)
        return bool(user_id) and self.links.has_link(realm, user_id, idp_alias)

    def federated_user_id(self, realm: str, username: str, idp_alias: str) -> Optional[str]:
        return self.links.federated_user_id(realm, username, idp_alias)

    # ─────────────────────────────────────────────────────────────────────────
    # Scenario isolation
    # ─────────────────────────────────────────────────────────────────────────

    @contextmanager
    def scenario(self, realm_source: str, realm_key: str) -> Iterator[str]:
        """Provision a realm for one scenario and always delete it afterwards.

        Yields:
            The realm name

        Usage:
            with session.scenario("realm-configs.json", "medad-allow") as realm:
                session.provision_user(realm, "users.json", "testuser1")
        """
        realm = self.find_template(realm_source, realm_key, REALMS).key
        failed = False
        try:
            self.provision_realm(realm_source, realm_key)
            yield realm
        except BaseException:
            failed = True
            raise
        finally:
            try:
                self.delete_realm(realm)
            except ProvisionError as exc:
                if not failed:
                    raise
                logger.error("[realm] Cleanup of '%s' failed after scenario error: %s", realm, exc)
