"""Low-level HTTP client for the Keycloak Admin API.

Handles admin authentication, token refresh, and status-to-exception mapping.
The base URL is always passed in explicitly; nothing else in the package
derives it from another object.
"""
from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

import requests

from .exceptions import KeycloakAPIError, error_for_status

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10
# Refresh this many seconds before the advertised expiry
TOKEN_REFRESH_MARGIN = 10


class KeycloakClient:
    """Bearer-token session against one Keycloak server.

    Usage:
        client = KeycloakClient("http://localhost:8080")
        client.authenticate_admin("admin", "admin")
        response = client.get("/admin/realms/medad")
    """

    def __init__(self, base_url: str, timeout: float = REQUEST_TIMEOUT):
        """
        Args:
            base_url: Keycloak base URL (e.g. http://localhost:8080)
            timeout: Per-request timeout in seconds
        """
        if not base_url:
            raise ValueError("Keycloak base URL is required")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._access_token: Optional[str] = None
        self._expires_at: Optional[datetime] = None
        self._credentials: Dict[str, str] = {}

    @property
    def is_authenticated(self) -> bool:
        return self._access_token is not None

    def authenticate_admin(
        self,
        username: str,
        password: str,
        realm: str = "master",
        client_id: str = "admin-cli",
    ) -> str:
        """Run the password grant and keep the credentials for later refreshes.

        Args:
            username: Admin username
            password: Admin password
            realm: Realm holding the admin account
            client_id: Public client used for the password grant

        Returns:
            Access token

        Raises:
            KeycloakAPIError: The token endpoint answered with anything but 200
        """
        self._credentials = {
            "username": username,
            "password": password,
            "realm": realm,
            "client_id": client_id,
        }
        self._fetch_token()
        logger.debug("[auth] Admin token acquired from realm '%s'", realm)
        return self._access_token

    def _fetch_token(self) -> None:
        creds = self._credentials
        token_url = f"{self.base_url}/realms/{creds['realm']}/protocol/openid-connect/token"
        form = {
            "grant_type": "password",
            "client_id": creds["client_id"],
            "username": creds["username"],
            "password": creds["password"],
        }
        resp = requests.post(token_url, data=form, timeout=self.timeout)
        if resp.status_code != 200:
            raise KeycloakAPIError(resp.status_code, resp.text, token_url)
        payload = resp.json()
        self._access_token = payload["access_token"]
        self._expires_at = datetime.now() + timedelta(seconds=int(payload.get("expires_in", 60)))

    def _auth_headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        if self._access_token is None or self._expires_at is None:
            raise KeycloakAPIError(401, "Not authenticated - call authenticate_admin first", "")

        near_expiry = datetime.now() >= self._expires_at - timedelta(seconds=TOKEN_REFRESH_MARGIN)
        # Pre-issued tokens carry no credentials to refresh with
        if near_expiry and self._credentials:
            logger.debug("[auth] Refreshing admin token")
            self._fetch_token()

        headers = dict(extra or {})
        headers["Authorization"] = f"Bearer {self._access_token}"
        return headers

    def _send(self, send: Callable[..., requests.Response], path: str, **kwargs: Any) -> requests.Response:
        headers = self._auth_headers(kwargs.pop("headers", None))
        resp = send(f"{self.base_url}{path}", headers=headers, timeout=self.timeout, **kwargs)
        if resp.status_code >= 400:
            raise error_for_status(resp.status_code, resp.text, resp.url)
        return resp

    # Status >= 400 raises: 404 -> ResourceNotFoundError, 409 -> ResourceConflictError,
    # anything else -> KeycloakAPIError.

    def get(self, path: str, params: Optional[Dict] = None, **kwargs) -> requests.Response:
        return self._send(requests.get, path, params=params, **kwargs)

    def post(self, path: str, json: Optional[Any] = None, data: Optional[Dict] = None, **kwargs) -> requests.Response:
        return self._send(requests.post, path, json=json, data=data, **kwargs)

    def put(self, path: str, json: Optional[Any] = None, **kwargs) -> requests.Response:
        return self._send(requests.put, path, json=json, **kwargs)

    def delete(self, path: str, **kwargs) -> requests.Response:
        return self._send(requests.delete, path, **kwargs)


def create_client_with_token(base_url: str, token: str, expires_in: int = 3600) -> KeycloakClient:
    """Wrap an already issued admin token; the client never refreshes it.

    Args:
        base_url: Keycloak base URL
        token: Access token obtained elsewhere
        expires_in: Seconds the token stays usable
    """
    client = KeycloakClient(base_url)
    client._access_token = token
    client._expires_at = datetime.now() + timedelta(seconds=expires_in)
    return client
