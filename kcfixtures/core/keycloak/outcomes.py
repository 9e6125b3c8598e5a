"""Idempotent create semantics shared by every resource service.

The Admin API answers a duplicate create with 409. That single signal maps to
``CreationOutcome.ALREADY_EXISTS``; every other failure becomes a
``ProvisionError`` that aborts the caller's workflow.
"""
from __future__ import annotations
import copy
import logging
from contextlib import contextmanager
from enum import Enum
from typing import Any, Iterator

import requests

from .client import KeycloakClient
from .exceptions import KeycloakAPIError, ProvisionError, ResourceConflictError

logger = logging.getLogger(__name__)


class CreationOutcome(str, Enum):
    """Result of an idempotent create call."""

    CREATED = "created"
    ALREADY_EXISTS = "already_exists"

    @property
    def created(self) -> bool:
        return self is CreationOutcome.CREATED


@contextmanager
def provisioning_step(tag: str, description: str, passthrough: tuple = ()) -> Iterator[None]:
    """Convert API and transport failures inside the block into ProvisionError.

    Exceptions listed in ``passthrough`` (typically ResourceNotFoundError)
    propagate unchanged so the caller can treat them as a normal outcome.
    """
    try:
        yield
    except ProvisionError:
        raise
    except (KeycloakAPIError, requests.RequestException) as exc:
        if passthrough and isinstance(exc, passthrough):
            raise
        logger.error("[%s] %s failed: %s", tag, description, exc)
        raise ProvisionError(f"{description} failed: {exc}", exc) from exc


def create_or_detect_conflict(
    client: KeycloakClient,
    path: str,
    payload: Any,
    *,
    tag: str,
    label: str,
) -> tuple[CreationOutcome, requests.Response | None]:
    """POST a representation, mapping 409 to ALREADY_EXISTS.

    Args:
        client: Authenticated Keycloak client
        path: Collection endpoint to POST to
        payload: Resource representation
        tag: Log tag (e.g. "realm")
        label: Human description used in logs and errors (e.g. "Realm 'medad'")

    Returns:
        (outcome, response) - response is None on conflict

    Raises:
        ProvisionError: For any non-conflict failure
    """
    try:
        resp = client.post(path, json=payload)
    except ResourceConflictError:
        logger.warning("[%s] %s already exists", tag, label)
        return CreationOutcome.ALREADY_EXISTS, None
    except (KeycloakAPIError, requests.RequestException) as exc:
        logger.error("[%s] Creating %s failed: %s", tag, label, exc)
        raise ProvisionError(f"Creating {label} failed: {exc}", exc) from exc
    logger.info("[%s] %s created", tag, label)
    return CreationOutcome.CREATED, resp


def template_body(template: Any) -> dict:
    """Return a private copy of a resolved template body (or a plain mapping)."""
    body = getattr(template, "body", template)
    if not isinstance(body, dict):
        raise TypeError(f"Expected a resolved template or mapping, got {type(template).__name__}")
    return copy.deepcopy(body)
