"""Pytest shared fixtures: an in-memory Keycloak Admin API behind requests."""
import copy
import json
import pathlib
import sys
import uuid
from typing import Optional
from urllib.parse import urlsplit

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
import requests

from kcfixtures.config.settings import ProvisioningConfig
from kcfixtures.core.keycloak import KeycloakClient
from kcfixtures.core.provisioning_service import ProvisioningSession
from kcfixtures.core.templates import TemplateStore
from scripts import audit

KC_URL = "http://kc.test"
UAEPASS_BASE_URL = "http://host:9000/idshub"
UAEPASS_INTERNAL_URL = "http://uaepass:9000/idshub"

DEFAULT_PROFILE = {
    "attributes": [
        {"name": "username", "displayName": "${username}"},
        {"name": "email", "displayName": "${email}"},
        {"name": "firstName", "displayName": "${firstName}"},
        {"name": "lastName", "displayName": "${lastName}"},
    ],
    "groups": [{"name": "user-metadata", "displayHeader": "User metadata"}],
}


class FakeResponse:
    def __init__(self, status_code: int = 200, payload=None, url: str = "", headers: Optional[dict] = None):
        self.status_code = status_code
        self._payload = payload
        self.url = url
        self.headers = headers or {}
        self.text = json.dumps(payload) if payload is not None else ""

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(response=self)


class FakeKeycloak:
    """Just enough of the Keycloak Admin API for fixture provisioning.

    ``fail(method, path_suffix, status)`` makes the next matching calls
    answer with an error status; ``calls`` records (method, path, body).
    """

    def __init__(self):
        self.realms = {"master": {"realm": "master", "enabled": True}}
        self.clients = {"master": []}
        self.idps = {"master": {}}
        self.users = {"master": {}}
        self.links = {}
        self.profiles = {"master": copy.deepcopy(DEFAULT_PROFILE)}
        self.passwords = {}
        self.calls = []
        self.failures = []
        self.token_requests = 0

    # ── test controls ──────────────────────────────────────────────────────
    def fail(self, method: str, path_suffix: str, status: int = 500, times: int = 1) -> None:
        self.failures.append([method.upper(), path_suffix, status, times])

    def calls_to(self, method: str, path_suffix: str = "") -> list:
        return [c for c in self.calls if c[0] == method.upper() and c[1].endswith(path_suffix)]

    def _injected_failure(self, method: str, path: str) -> Optional[int]:
        for failure in self.failures:
            f_method, suffix, status, times = failure
            if f_method == method and path.endswith(suffix) and times > 0:
                failure[3] -= 1
                return status
        return None

    # ── dispatch ───────────────────────────────────────────────────────────
    def handle(self, method: str, url: str, params=None, body=None) -> FakeResponse:
        path = urlsplit(url).path
        self.calls.append((method, path, copy.deepcopy(body)))

        status = self._injected_failure(method, path)
        if status is not None:
            return FakeResponse(status, {"error": "injected failure"}, url)

        if path.endswith("/protocol/openid-connect/token") and method == "POST":
            self.token_requests += 1
            if (body or {}).get("password") == "wrong":
                return FakeResponse(401, {"error": "invalid_grant"}, url)
            return FakeResponse(200, {"access_token": "test-token", "expires_in": 300}, url)

        parts = [p for p in path.split("/") if p]
        if parts[:2] != ["admin", "realms"]:
            return FakeResponse(404, {"error": "unknown endpoint"}, url)
        return self._admin(method, parts[2:], params or {}, body, url)

    def _admin(self, method, parts, params, body, url) -> FakeResponse:
        if not parts:
            if method == "GET":
                return FakeResponse(200, list(self.realms.values()), url)
            if method == "POST":
                name = body["realm"]
                if name in self.realms:
                    return FakeResponse(409, {"errorMessage": "Conflict detected. See logs for details"}, url)
                self.realms[name] = copy.deepcopy(body)
                self.clients[name] = []
                self.idps[name] = {}
                self.users[name] = {}
                self.profiles[name] = copy.deepcopy(DEFAULT_PROFILE)
                return FakeResponse(201, None, url, {"Location": f"{KC_URL}/admin/realms/{name}"})

        realm, rest = parts[0], parts[1:]
        if realm not in self.realms:
            return FakeResponse(404, {"error": "Realm not found."}, url)

        if not rest:
            if method == "GET":
                return FakeResponse(200, self.realms[realm], url)
            if method == "PUT":
                self.realms[realm].update(copy.deepcopy(body))
                return FakeResponse(204, None, url)
            if method == "DELETE":
                for store in (self.realms, self.clients, self.idps, self.users, self.profiles):
                    store.pop(realm, None)
                return FakeResponse(204, None, url)

        if rest[0] == "clients":
            return self._clients(method, realm, rest[1:], params, body, url)
        if rest[:2] == ["identity-provider", "instances"]:
            return self._idps(method, realm, rest[2:], body, url)
        if rest[0] == "users":
            return self._users(method, realm, rest[1:], params, body, url)
        return FakeResponse(404, {"error": "unknown endpoint"}, url)

    def _clients(self, method, realm, rest, params, body, url):
        clients = self.clients[realm]
        if not rest:
            if method == "GET":
                wanted = params.get("clientId")
                return FakeResponse(200, [c for c in clients if wanted is None or c["clientId"] == wanted], url)
            if method == "POST":
                if any(c["clientId"] == body["clientId"] for c in clients):
                    return FakeResponse(409, {"errorMessage": "Client already exists"}, url)
                rep = dict(copy.deepcopy(body), id=str(uuid.uuid4()))
                clients.append(rep)
                return FakeResponse(201, None, url, {"Location": f"{url}/{rep['id']}"})
        if len(rest) == 1 and method == "DELETE":
            for rep in clients:
                if rep["id"] == rest[0]:
                    clients.remove(rep)
                    return FakeResponse(204, None, url)
            return FakeResponse(404, {"error": "Could not find client"}, url)
        return FakeResponse(404, {"error": "unknown endpoint"}, url)

    def _idps(self, method, realm, rest, body, url):
        idps = self.idps[realm]
        if not rest and method == "POST":
            if body["alias"] in idps:
                return FakeResponse(409, {"errorMessage": "Identity Provider already exists"}, url)
            idps[body["alias"]] = copy.deepcopy(body)
            return FakeResponse(201, None, url, {"Location": f"{url}/{body['alias']}"})
        if len(rest) == 1:
            alias = rest[0]
            if alias not in idps:
                return FakeResponse(404, {"error": "Could not find identity provider"}, url)
            if method == "GET":
                return FakeResponse(200, idps[alias], url)
            if method == "DELETE":
                del idps[alias]
                return FakeResponse(204, None, url)
        return FakeResponse(404, {"error": "unknown endpoint"}, url)

    def _users(self, method, realm, rest, params, body, url):
        users = self.users[realm]
        if not rest:
            if method == "GET":
                wanted = params.get("username")
                return FakeResponse(200, [u for u in users.values() if wanted is None or u["username"] == wanted], url)
            if method == "POST":
                if any(u["username"] == body["username"] for u in users.values()):
                    return FakeResponse(409, {"errorMessage": "User exists with same username"}, url)
                user_id = str(uuid.uuid4())
                users[user_id] = dict(copy.deepcopy(body), id=user_id)
                return FakeResponse(201, None, url, {"Location": f"{url}/{user_id}"})

        if rest[0] == "profile" and len(rest) == 1:
            if method == "GET":
                return FakeResponse(200, copy.deepcopy(self.profiles[realm]), url)
            if method == "PUT":
                names = [a.get("name") for a in body.get("attributes", [])]
                if len(names) != len(set(names)):
                    return FakeResponse(400, {"errorMessage": "Duplicated attribute"}, url)
                self.profiles[realm] = copy.deepcopy(body)
                return FakeResponse(200, body, url)

        user_id = rest[0]
        if user_id not in users:
            return FakeResponse(404, {"error": "User not found"}, url)
        sub = rest[1:]
        if not sub and method == "DELETE":
            del users[user_id]
            self.links.pop((realm, user_id), None)
            return FakeResponse(204, None, url)
        if sub == ["reset-password"] and method == "PUT":
            self.passwords[(realm, user_id)] = copy.deepcopy(body)
            return FakeResponse(204, None, url)
        if sub and sub[0] == "federated-identity":
            links = self.links.setdefault((realm, user_id), {})
            if len(sub) == 1 and method == "GET":
                return FakeResponse(200, list(links.values()), url)
            if len(sub) == 2:
                alias = sub[1]
                if method == "POST":
                    if alias in links:
                        return FakeResponse(409, {"errorMessage": "User is already linked with provider"}, url)
                    links[alias] = {
                        "identityProvider": alias,
                        "userId": body["userId"],
                        "userName": body["userName"],
                    }
                    return FakeResponse(204, None, url)
                if method == "DELETE":
                    if alias not in links:
                        return FakeResponse(404, {"error": "Link not found"}, url)
                    del links[alias]
                    return FakeResponse(204, None, url)
        return FakeResponse(404, {"error": "unknown endpoint"}, url)

    # ── helpers for assertions ─────────────────────────────────────────────
    def user_by_name(self, realm: str, username: str) -> Optional[dict]:
        for user in self.users.get(realm, {}).values():
            if user["username"] == username:
                return user
        return None

    def seed_realm(self, name: str, **extra) -> None:
        self.handle("POST", f"{KC_URL}/admin/realms", body={"realm": name, **extra})
        self.calls.clear()


# ─────────────────────────────────────────────────────────────────────────────
# Network Guard Rails
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True)
def _block_network(monkeypatch, request):
    """Fail any real HTTP call; tests marked ``integration`` may reach a live server."""
    if request.node.get_closest_marker("integration"):
        return

    def _refuse(url, *args, **kwargs):
        raise RuntimeError(f"Unexpected network access in unit test: {url}")

    for name in ("get", "post", "put", "delete"):
        monkeypatch.setattr(requests, name, _refuse)


@pytest.fixture(autouse=True)
def _isolated_audit(monkeypatch, tmp_path):
    """Keep audit events out of the working tree."""
    audit_dir = tmp_path / "audit"
    monkeypatch.setattr(audit, "AUDIT_LOG_DIR", audit_dir)
    monkeypatch.setattr(audit, "AUDIT_LOG_FILE", audit_dir / "provisioning-events.jsonl")
    monkeypatch.delenv("FIXTURE_AUDIT_SIGNING_KEY", raising=False)
    return audit_dir


# ─────────────────────────────────────────────────────────────────────────────
# Fake Admin API
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture()
def fake_keycloak(monkeypatch, _block_network):
    """Install an in-memory Keycloak behind requests.get/post/put/delete."""
    fake = FakeKeycloak()

    def _get(url, params=None, **kwargs):
        return fake.handle("GET", url, params=params)

    def _post(url, json=None, data=None, params=None, **kwargs):
        return fake.handle("POST", url, params=params, body=json if json is not None else data)

    def _put(url, json=None, params=None, **kwargs):
        return fake.handle("PUT", url, params=params, body=json)

    def _delete(url, params=None, **kwargs):
        return fake.handle("DELETE", url, params=params)

    monkeypatch.setattr(requests, "get", _get)
    monkeypatch.setattr(requests, "post", _post)
    monkeypatch.setattr(requests, "put", _put)
    monkeypatch.setattr(requests, "delete", _delete)
    return fake


@pytest.fixture()
def kc_client(fake_keycloak):
    """Admin client authenticated against the fake."""
    client = KeycloakClient(KC_URL)
    client.authenticate_admin("admin", "admin")
    fake_keycloak.calls.clear()
    return client


@pytest.fixture()
def template_store():
    """Store over the bundled fixture documents."""
    return TemplateStore()


def make_config(**overrides) -> ProvisioningConfig:
    base = dict(
        keycloak_url=KC_URL,
        admin_realm="master",
        admin_client_id="admin-cli",
        admin_username="admin",
        admin_password="admin",
        template_dir=None,
        request_timeout=5.0,
        uaepass_base_url=UAEPASS_BASE_URL,
        uaepass_internal_url=UAEPASS_INTERNAL_URL,
        lenient_profile=False,
    )
    base.update(overrides)
    return ProvisioningConfig(**base)


@pytest.fixture()
def session(fake_keycloak):
    """Authenticated provisioning session over the fake."""
    provisioning = ProvisioningSession(make_config())
    provisioning.authenticate()
    fake_keycloak.calls.clear()
    return provisioning


def write_json(path: pathlib.Path, document) -> pathlib.Path:
    path.write_text(json.dumps(document), encoding="utf-8")
    return path


@pytest.fixture()
def config_factory():
    """Build a ProvisioningConfig pointing at the fake, with overrides."""
    return make_config
