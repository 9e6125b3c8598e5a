"""Core fixture provisioning logic.

Module Structure:
    - templates.py      : JSON fixture documents, lookup by key or shortcut
    - placeholders.py   : ``${namespace.key}`` substitution
    - keycloak/         : Admin API client and per-resource services
    - provisioning_service.py : Session object tying config, store and services

Usage Pattern:
    Import explicitly when needed:
        from kcfixtures.core.templates import TemplateStore, USERS
        from kcfixtures.core.placeholders import resolve
        from kcfixtures.core.provisioning_service import ProvisioningSession
"""
