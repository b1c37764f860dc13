"""Secret redaction for partner credentials in logs and persisted errors.

Connection records carry login passwords and bearer tokens. Anything that
is logged, stored in ``last_sync_error`` or echoed in an API error goes
through one of the helpers here first.
"""

import re
from urllib.parse import urlsplit, urlunsplit

# Substring patterns matched case-insensitively against dict keys
_DEFAULT_SENSITIVE_PATTERNS = frozenset({
    "password", "token", "authorization", "secret", "credential",
})

# Keys whose entire value is redacted regardless of type
_CONTAINER_KEYS = frozenset({"headers", "credentials"})

_REDACTED = "***REDACTED***"


def _is_sensitive_key(key: str, sensitive_patterns: frozenset[str]) -> bool:
    key_lower = key.lower()
    return any(pattern in key_lower for pattern in sensitive_patterns)


def redact_for_logging(
    obj: dict,
    sensitive_patterns: frozenset[str] = _DEFAULT_SENSITIVE_PATTERNS,
) -> dict:
    """Return a copy of ``obj`` with credential values replaced.

    Args:
        obj: Dict to redact (not mutated).
        sensitive_patterns: Substrings whose matching keys are redacted.

    Returns:
        New dict with sensitive values replaced by '***REDACTED***'.
        Nested dicts and lists of dicts are handled recursively.
    """
    result = {}
    for key, value in obj.items():
        if key.lower() in _CONTAINER_KEYS or _is_sensitive_key(key, sensitive_patterns):
            result[key] = _REDACTED
        elif isinstance(value, dict):
            result[key] = redact_for_logging(value, sensitive_patterns)
        elif isinstance(value, list):
            result[key] = [
                redact_for_logging(item, sensitive_patterns) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            result[key] = value
    return result


# Free-text patterns: Bearer headers, JSON pairs, key=value pairs.
_SENSITIVE_KEYWORDS = (
    r"password|auth_?token|access_token|token|authorization|secret"
)
_SENSITIVE_VALUE_PATTERNS = re.compile(
    r"(?i)"
    r"(?:"
    r"(?:authorization\s*[=:]\s*)?Bearer\s+[A-Za-z0-9\-._~+/]+=*"
    r"|"
    r'"(?:' + _SENSITIVE_KEYWORDS + r')"\s*:\s*"[^"]*"'
    r"|"
    r"(?:" + _SENSITIVE_KEYWORDS + r")\s*[=:]\s*\"[^\"]*\""
    r"|"
    r"(?:" + _SENSITIVE_KEYWORDS + r")\s*[=:]\s*[^\s&]+"
    r")",
)


def sanitize_error_message(msg: str | None, max_length: int = 500) -> str | None:
    """Sanitize an error message before it is stored on a connection.

    Args:
        msg: Error message to sanitize (None passes through).
        max_length: Maximum length of the sanitized message.

    Returns:
        Sanitized and truncated message, or None.
    """
    if msg is None:
        return None
    sanitized = _SENSITIVE_VALUE_PATTERNS.sub(_REDACTED, msg)
    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length - 3] + "..."
    return sanitized


def redact_url(url: str) -> str:
    """Drop userinfo and query string from a partner URL for logging."""
    try:
        parts = urlsplit(url)
        netloc = parts.hostname or ""
        if parts.port:
            netloc = f"{netloc}:{parts.port}"
    except ValueError:
        return _REDACTED
    query = _REDACTED if parts.query else ""
    return urlunsplit((parts.scheme, netloc, parts.path, query, ""))
