"""Helpers for redacting the provider API key from logs and error text."""

from __future__ import annotations

import re
from typing import Any

REDACTED = "[REDACTED]"

_SENSITIVE_KEY_RE = re.compile(r"(api[_-]?key|token|secret|authorization)", re.IGNORECASE)
_KEY_VALUE_SECRET_RE = re.compile(
    r"""(?ix)
    \b
    (
      api[_-]?key|
      token|
      secret|
      authorization
    )
    (\s*[:=]\s*)
    ([^\s,;&"']+)
    """
)


def sanitize_text(text: str) -> str:
    """Redact credentials embedded in plain text, including URL query strings."""
    return _KEY_VALUE_SECRET_RE.sub(lambda m: f"{m.group(1)}{m.group(2)}{REDACTED}", text)


def sanitize_for_logging(value: Any) -> Any:
    """Recursively redact sensitive values in nested structures."""
    if isinstance(value, dict):
        sanitized: dict[Any, Any] = {}
        for key, child in value.items():
            if _SENSITIVE_KEY_RE.search(str(key)):
                sanitized[key] = REDACTED if child is not None else None
            else:
                sanitized[key] = sanitize_for_logging(child)
        return sanitized
    if isinstance(value, list):
        return [sanitize_for_logging(item) for item in value]
    if isinstance(value, tuple):
        return tuple(sanitize_for_logging(item) for item in value)
    if isinstance(value, str):
        return sanitize_text(value)
    return value
