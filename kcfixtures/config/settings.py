"""Provisioning settings read from the environment and Docker secrets."""
from __future__ import annotations
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_KEYCLOAK_URL = "http://localhost:8080"
DEFAULT_REQUEST_TIMEOUT = 10.0
SECRETS_DIR = "/run/secrets"


def _read_secret(secret_name: str, *env_vars: str) -> str | None:
    """Return a secret from the Docker secrets mount, else from the first set env var.

    Blank secret files are ignored so an empty mount does not mask the
    environment.
    """
    mounted = Path(SECRETS_DIR) / secret_name
    if mounted.is_file():
        try:
            value = mounted.read_text().strip()
        except OSError as exc:
            logger.warning("[settings] Cannot read %s/%s: %s", SECRETS_DIR, secret_name, exc)
        else:
            if value:
                logger.debug("[settings] %s taken from %s", secret_name, SECRETS_DIR)
                return value

    for name in env_vars:
        value = os.environ.get(name)
        if value:
            logger.debug("[settings] %s taken from %s", secret_name, name)
            return value
    return None


def _first_env(*names: str, default: str = "") -> str:
    for name in names:
        value = os.environ.get(name)
        if value:
            return value
    return default


def _env_flag(name: str, default: bool = False) -> bool:
    return os.environ.get(name, str(default)).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ProvisioningConfig:
    """Provisioning run configuration container."""
    # Keycloak admin endpoint
    keycloak_url: str = DEFAULT_KEYCLOAK_URL
    admin_realm: str = "master"
    admin_client_id: str = "admin-cli"

    # Admin credentials
    admin_username: str = "admin"
    admin_password: str = "admin"

    # Fixture templates (None -> bundled kcfixtures/templates)
    template_dir: Optional[str] = None

    # HTTP
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT

    # Runtime URLs substituted into templates
    uaepass_base_url: str = ""
    uaepass_internal_url: str = ""

    # Profile merge failures are logged instead of raised
    lenient_profile: bool = False

    def placeholder_substitutions(self, realm: str | None = None) -> Dict[str, str]:
        """Build the placeholder map for this run.

        Empty URLs are left out so their tokens stay untouched.

        Args:
            realm: Target realm, substituted for ``${realm.name}`` when given
        """
        values = {
            "uaepass.base.url": self.uaepass_base_url,
            "uaepass.internal.url": self.uaepass_internal_url,
            "keycloak.url": self.keycloak_url,
        }
        substitutions = {key: value for key, value in values.items() if value}
        if realm:
            substitutions["realm.name"] = realm
        return substitutions


def load_settings() -> ProvisioningConfig:
    """Load provisioning settings from environment and /run/secrets."""
    keycloak_url = os.environ.get("KEYCLOAK_URL", DEFAULT_KEYCLOAK_URL).rstrip("/")

    admin_password = (
        _read_secret("keycloak_admin_password", "KC_BOOTSTRAP_ADMIN_PASSWORD", "KEYCLOAK_ADMIN_PASSWORD")
        or "admin"
    )

    timeout_raw = os.environ.get("KEYCLOAK_REQUEST_TIMEOUT", "").strip()
    try:
        request_timeout = float(timeout_raw) if timeout_raw else DEFAULT_REQUEST_TIMEOUT
    except ValueError as exc:
        raise RuntimeError(f"KEYCLOAK_REQUEST_TIMEOUT must be a number, got '{timeout_raw}'") from exc
    if request_timeout <= 0:
        raise RuntimeError("KEYCLOAK_REQUEST_TIMEOUT must be positive")

    config = ProvisioningConfig(
        keycloak_url=keycloak_url,
        admin_realm=os.environ.get("KEYCLOAK_ADMIN_REALM", "master"),
        admin_client_id=os.environ.get("KEYCLOAK_ADMIN_CLIENT_ID", "admin-cli"),
        admin_username=_first_env("KC_BOOTSTRAP_ADMIN_USERNAME", "KEYCLOAK_ADMIN", default="admin"),
        admin_password=admin_password,
        template_dir=os.environ.get("FIXTURE_TEMPLATE_DIR") or None,
        request_timeout=request_timeout,
        uaepass_base_url=os.environ.get("UAEPASS_BASE_URL", "").rstrip("/"),
        uaepass_internal_url=os.environ.get("UAEPASS_INTERNAL_URL", "").rstrip("/"),
        lenient_profile=_env_flag("FIXTURE_LENIENT_PROFILE"),
    )
    logger.info(
        "[settings] keycloak=%s; admin_realm=%s; templates=%s",
        config.keycloak_url, config.admin_realm, config.template_dir or "bundled",
    )
    return config
