"""Placeholder substitution for fixture templates.

Templates carry ``${namespace.key}`` tokens for values that are only known at
run time, e.g. ``${uaepass.base.url}`` or ``${realm.name}``. Tokens without
an entry in the substitution map are left as they are.
"""
from __future__ import annotations
import logging
import re
from typing import Any, Mapping

from .templates import ResolvedTemplate, Template

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\$\{([^${}]+)\}")


def substitute(text: str, substitutions: Mapping[str, str]) -> str:
    """Replace known ``${...}`` tokens inside a single string."""

    def _replace(match: re.Match) -> str:
        name = match.group(1)
        if name in substitutions:
            return str(substitutions[name])
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(_replace, text)


def resolve_value(value: Any, substitutions: Mapping[str, str]) -> Any:
    """Return a copy of ``value`` with tokens substituted at every depth.

    Strings are substituted, mapping keys included; dicts and lists are
    rebuilt; every other scalar is returned unchanged.
    """
    if isinstance(value, str):
        return substitute(value, substitutions)
    if isinstance(value, dict):
        return {
            substitute(k, substitutions) if isinstance(k, str) else k: resolve_value(v, substitutions)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [resolve_value(item, substitutions) for item in value]
    return value


def unresolved_tokens(value: Any) -> set[str]:
    """Collect the names of placeholders still present anywhere in ``value``."""
    found: set[str] = set()
    if isinstance(value, str):
        found.update(PLACEHOLDER_PATTERN.findall(value))
    elif isinstance(value, dict):
        for k, v in value.items():
            found |= unresolved_tokens(k)
            found |= unresolved_tokens(v)
    elif isinstance(value, (list, tuple)):
        for item in value:
            found |= unresolved_tokens(item)
    return found


def resolve(template: Template, substitutions: Mapping[str, str]) -> ResolvedTemplate:
    """Produce a resolved copy of ``template``; the template is not modified."""
    body = resolve_value(template.raw_body, substitutions)
    remaining = unresolved_tokens(body)
    if remaining:
        logger.debug(
            "[templates] %s '%s' keeps unresolved placeholders: %s",
            template.kind.name, template.key, sorted(remaining),
        )
    key = str(body.get(template.kind.key_field, template.key))
    return ResolvedTemplate(kind=template.kind, key=key, body=body)
