"""Single-line sync progress logs and safe error strings."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

import httpx

# Base keys always come first and always in this order, so per-page lines of different
# stages line up when tailing the log.
BASE_KEY_ORDER = (
    "server",
    "page",
    "processed",
    "inserted",
    "updated",
    "errors",
    "processMs",
    "totalProcessed",
)

_SENSITIVE_KEY_RE = re.compile(
    r"^(authorization|cookie|set-cookie|password|pass|pwd|token|api[_-]?key|secret|x-emby-token)$",
    re.IGNORECASE,
)
_SENSITIVE_INLINE_RE = re.compile(
    r"(api[_-]?key|token|password|authorization)(\s*[=:]\s*)(\"[^\"]*\"|[^&\s,;]+)",
    re.IGNORECASE,
)
MAX_ERROR_LENGTH = 500


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def format_sync_log_line(prefix: str, fields: Mapping[str, Any]) -> str:
    """Render a `[prefix] key=value ...` progress line.

    Args:
        prefix: Stage name, e.g. "items-sync"
        fields: Base keys (see BASE_KEY_ORDER) plus any extra keys

    Returns:
        Base keys in fixed order, then extra keys sorted by name;
        extra keys with a None value are skipped

    Example:
        >>> format_sync_log_line("items-sync", {"server": "home", "page": 1, ...,
        ...                                     "libraryId": "abc", "fetchMs": 120})
        '[items-sync] server=home page=1 ... totalProcessed=1000 fetchMs=120 libraryId=abc'
    """
    parts = [f"[{prefix}]"]
    for key in BASE_KEY_ORDER:
        parts.append(f"{key}={_format_value(fields.get(key, 0))}")

    for key in sorted(k for k in fields if k not in BASE_KEY_ORDER):
        value = fields[key]
        if value is None:
            continue
        parts.append(f"{key}={_format_value(value)}")

    return " ".join(parts)


def redact_sensitive(value: Any, max_depth: int = 5, _depth: int = 0) -> Any:
    """Return a copy of a (nested) mapping/list with secret-looking keys masked."""
    if _depth >= max_depth:
        return "[Truncated]"
    if isinstance(value, Mapping):
        return {
            k: "[REDACTED]"
            if _SENSITIVE_KEY_RE.match(str(k))
            else redact_sensitive(v, max_depth, _depth + 1)
            for k, v in value.items()
        }
    if isinstance(value, list | tuple):
        return [redact_sensitive(v, max_depth, _depth + 1) for v in value]
    return value


def redact_text(text: str) -> str:
    """Mask inline `api_key=...` / `token: ...` fragments in free text."""
    return _SENSITIVE_INLINE_RE.sub(r"\1\2[REDACTED]", text)


# Hey future me, every error string that ends up in SyncResult.errors goes through here.
# Those strings are shown in the UI and written to logs, and httpx errors happily include
# the full request URL - with api_key=... in the query string. Redact, then truncate.
def format_error(error: BaseException | str) -> str:
    """Turn an exception into a short, secret-free, human-readable string."""
    if isinstance(error, str):
        message = error
    elif isinstance(error, httpx.HTTPStatusError):
        request = error.request
        message = (
            f"HTTP {error.response.status_code} for "
            f"{request.method} {str(request.url).split('?', 1)[0]}"
        )
    else:
        message = str(error) or type(error).__name__

    message = redact_text(message)
    if len(message) > MAX_ERROR_LENGTH:
        extra = len(message) - MAX_ERROR_LENGTH
        message = f"{message[:MAX_ERROR_LENGTH]}…[truncated {extra} chars]"
    return message
