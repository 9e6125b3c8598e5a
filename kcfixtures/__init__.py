"""Declarative Keycloak test fixture provisioning.

To provision from the bundled templates:
    from kcfixtures.core.provisioning_service import ProvisioningSession

    session = ProvisioningSession.from_settings()
    session.authenticate()
    session.provision_realm("realm-configs.json", "medad")

To use Keycloak services directly:
    from kcfixtures.core.keycloak import KeycloakClient, RealmService
"""

__version__ = "0.1.0"
