"""Provision Keycloak test fixtures from JSON templates.

This module serves as a CLI wrapper around ProvisioningSession.

Examples:
    python -m scripts.provision realm --source realm-configs.json --key medad
    python -m scripts.provision idp --realm medad --source idp-configs.json --alias uaepass \\
        --set uaepass.base.url=http://localhost:9000/idshub
    python -m scripts.provision has-link --realm medad --username testuser1 --alias uaepass
"""
from __future__ import annotations
import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

import requests

SCRIPT_DIR = Path(__file__).parent
PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from kcfixtures.config.settings import load_settings
from kcfixtures.core.keycloak import KeycloakError
from kcfixtures.core.provisioning_service import ProvisioningSession
from kcfixtures.core.templates import TemplateError


def _parse_assignments(pairs: list[str]) -> dict[str, str]:
    values = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise argparse.ArgumentTypeError(f"Expected key=value, got '{pair}'")
        values[key.strip()] = value
    return values


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Keycloak fixture provisioning helper")
    parser.add_argument("--kc-url", help="Keycloak base URL (default: KEYCLOAK_URL)")
    parser.add_argument("--admin-user", help="Admin username (default: KC_BOOTSTRAP_ADMIN_USERNAME)")
    parser.add_argument("--admin-pass", help="Admin password (default: secret file or environment)")
    parser.add_argument("--template-dir", help="Directory holding fixture documents")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="cmd")

    sr = sub.add_parser("realm", help="Create a realm from a template")
    sr.add_argument("--source", default="realm-configs.json")
    sr.add_argument("--key", required=True, help="Realm name or realmMapping shortcut")
    sr.add_argument("--profile-source", help="Also merge the realm's user profile from this document")

    sc = sub.add_parser("client", help="Create an OIDC client from a template")
    sc.add_argument("--realm", required=True)
    sc.add_argument("--source", default="client-configs.json")
    sc.add_argument("--client-id", required=True)

    si = sub.add_parser("idp", help="Create an identity provider from a template")
    si.add_argument("--realm", required=True)
    si.add_argument("--source", default="idp-configs.json")
    si.add_argument("--alias", required=True)
    si.add_argument("--set", dest="substitutions", action="append", default=[],
                    metavar="KEY=VALUE", help="Placeholder value, e.g. uaepass.base.url=http://...")

    su = sub.add_parser("user", help="Create a user fixture from a template")
    su.add_argument("--realm", required=True)
    su.add_argument("--source", default="users.json")
    su.add_argument("--username", required=True)

    sp = sub.add_parser("profile", help="Merge user-profile attributes into a realm")
    sp.add_argument("--realm", required=True)
    sp.add_argument("--source", default="user-profile-configs.json")

    sl = sub.add_parser("link", help="Link a user to an external identity")
    sl.add_argument("--realm", required=True)
    sl.add_argument("--username", required=True)
    sl.add_argument("--alias", required=True)
    sl.add_argument("--federated-id", required=True)
    sl.add_argument("--federated-username", required=True)
    sl.add_argument("--override", action="store_true", help="Replace an existing link for the alias")

    su2 = sub.add_parser("unlink", help="Remove a user's link to an identity provider")
    su2.add_argument("--realm", required=True)
    su2.add_argument("--username", required=True)
    su2.add_argument("--alias", required=True)

    sh = sub.add_parser("has-link", help="Exit 0 when the user is linked, 1 otherwise")
    sh.add_argument("--realm", required=True)
    sh.add_argument("--username", required=True)
    sh.add_argument("--alias", required=True)

    dr = sub.add_parser("delete-realm")
    dr.add_argument("--realm", required=True)

    return parser


def _session_from_args(args: argparse.Namespace) -> ProvisioningSession:
    config = load_settings()
    overrides = {}
    if args.kc_url:
        overrides["keycloak_url"] = args.kc_url.rstrip("/")
    if args.admin_user:
        overrides["admin_username"] = args.admin_user
    if args.admin_pass:
        overrides["admin_password"] = args.admin_pass
    if args.template_dir:
        overrides["template_dir"] = args.template_dir
    return ProvisioningSession(replace(config, **overrides))


def _run(args: argparse.Namespace, session: ProvisioningSession) -> int:
    if args.cmd == "realm":
        if args.profile_source:
            outcome = session.provision_realm_with_profile(args.source, args.profile_source, args.key)
        else:
            outcome = session.provision_realm(args.source, args.key)
        print(f"[realm] {args.key}: {outcome.value}")
    elif args.cmd == "client":
        outcome = session.provision_client(args.realm, args.source, args.client_id)
        print(f"[client] {args.client_id}: {outcome.value}")
    elif args.cmd == "idp":
        values = _parse_assignments(args.substitutions)
        outcome = session.provision_identity_provider(args.realm, args.source, args.alias, values)
        print(f"[idp] {args.alias}: {outcome.value}")
    elif args.cmd == "user":
        outcome = session.provision_user(args.realm, args.source, args.username)
        print(f"[user] {args.username}: {outcome.value}")
    elif args.cmd == "profile":
        merged = session.merge_profile(args.realm, args.source)
        print(f"[profile] {args.realm}: {'merged' if merged is not None else 'skipped'}")
    elif args.cmd == "link":
        changed = session.link_user(
            args.realm, args.username, args.alias,
            args.federated_id, args.federated_username, override=args.override,
        )
        print(f"[link] {args.username} -> {args.alias}: {'linked' if changed else 'unchanged'}")
    elif args.cmd == "unlink":
        removed = session.unlink_user(args.realm, args.username, args.alias)
        print(f"[link] {args.username} -/-> {args.alias}: {'unlinked' if removed else 'no link'}")
    elif args.cmd == "has-link":
        linked = session.has_link(args.realm, args.username, args.alias)
        print(f"[link] {args.username} -> {args.alias}: {'linked' if linked else 'not linked'}")
        return 0 if linked else 1
    elif args.cmd == "delete-realm":
        deleted = session.delete_realm(args.realm)
        print(f"[realm] {args.realm}: {'deleted' if deleted else 'not found'}")
    return 0


def main() -> None:
    """Command-line entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.cmd:
        parser.print_help()
        return

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        stream=sys.stderr,
    )

    try:
        session = _session_from_args(args)
        session.authenticate()
        status = _run(args, session)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))
    except (KeycloakError, TemplateError, ValueError, requests.RequestException) as e:
        print(f"[{args.cmd}] Error: {e}", file=sys.stderr)
        sys.exit(1)
    except RuntimeError as e:
        print(f"[settings] Error: {e}", file=sys.stderr)
        sys.exit(1)
    if status:
        sys.exit(status)


if __name__ == "__main__":
    main()
