"""
Template resolution for endpoint paths and request bodies.
"""

import re
from typing import Any, Dict, Mapping, Optional

import httpx


PLACEHOLDER_PATTERN = re.compile(r"\{(\w+)\}")


class MalformedTarget(ValueError):
    """Raised when a base URL and path cannot form a valid absolute URL."""
    pass


def resolve(template: str, variables: Mapping[str, str]) -> str:
    """
    Replace every `{name}` in `template` with its value from `variables`.

    Names without a value are left as the literal `{name}`.
    """
    def _substitute(match: "re.Match[str]") -> str:
        name = match.group(1)
        value = variables.get(name)
        return match.group(0) if value is None else str(value)

    return PLACEHOLDER_PATTERN.sub(_substitute, template)


def resolve_body(template: Any, variables: Mapping[str, str]) -> Any:
    """Resolve placeholders in every string of a body template."""
    if isinstance(template, str):
        return resolve(template, variables)
    if isinstance(template, dict):
        return {key: resolve_body(value, variables) for key, value in template.items()}
    if isinstance(template, list):
        return [resolve_body(item, variables) for item in template]
    return template


def build_url(
    base_url: str,
    path: str,
    query_params: Optional[Dict[str, Optional[str]]] = None,
) -> str:
    """
    Join `base_url` and `path` with exactly one slash and append query parameters.

    Query parameters whose value is None are omitted.

    Raises:
        MalformedTarget: If the result is not an absolute http(s) URL
    """
    joined = base_url.rstrip("/") + "/" + path.lstrip("/")

    try:
        url = httpx.URL(joined)
        for name, value in (query_params or {}).items():
            if value is not None:
                url = url.copy_set_param(name, value)
    except (httpx.InvalidURL, TypeError, ValueError) as e:
        raise MalformedTarget(f"Cannot build URL from {base_url!r} and {path!r}: {e}") from e

    if url.scheme not in ("http", "https") or not url.host:
        raise MalformedTarget(f"Not an absolute http(s) URL: {joined}")

    return str(url)
