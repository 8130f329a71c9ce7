"""Log sanitization module for preventing secret leakage.

Upstream requests carry the API key in the form body, and requests/urllib3
exceptions sometimes echo request data back. Everything that reaches a log
line or an error message about an upstream call goes through this module.

Design Philosophy:
- Security first: err on side of over-redaction
- Pattern-based: not brittle keyword matching
- Fail-safe: if in doubt, mask it
"""

import re
from re import Pattern
from typing import Any


class LogSanitizer:
    """Sanitize sensitive data from logs and error messages.

    All methods are class methods and can be called without instantiation.
    """

    REDACTED = "[REDACTED]"
    MASKED = "****"

    # Order matters: more specific patterns should come first
    SECRET_PATTERNS: dict[str, Pattern] = {
        "api_key_env": re.compile(
            r"((?:DIMCACHE_API_KEY|CLOAKING_API_KEY|API_KEY)[\"']?\s*[:=]\s*[\"']?)([^\s\"'&,\)]+)"
        ),
        "api_key_assignment": re.compile(
            r'(api[_-]?key["\']?\s*[:=]\s*["\']?)([^\s"\'&,\)]+)', re.IGNORECASE
        ),
        "password": re.compile(r'(password["\']?\s*[:=]\s*["\']?)([^\s"\'&,\)]+)', re.IGNORECASE),
        "authorization_bearer": re.compile(r"(Authorization:\s*Bearer\s+)([^\s]+)", re.IGNORECASE),
        "token_assignment": re.compile(
            r'([^a-zA-Z]token["\']?\s*[:=]\s*["\']?)([^\s"\'&,\)]+)', re.IGNORECASE
        ),
    }

    SENSITIVE_KEYS = frozenset(
        {
            "api_key",
            "apikey",
            "password",
            "secret",
            "token",
            "authorization",
        }
    )

    @classmethod
    def sanitize(cls, message: str) -> str:
        """Sanitize message by redacting sensitive patterns.

        Args:
            message: The message to sanitize

        Returns:
            Sanitized message with secrets replaced by [REDACTED]

        Examples:
            >>> LogSanitizer.sanitize("api_key=abc123&page=1")
            'api_key=[REDACTED]&page=1'
        """
        if not isinstance(message, str):
            message = str(message)

        result = message
        for pattern in cls.SECRET_PATTERNS.values():
            result = pattern.sub(r"\1" + cls.REDACTED, result)
        return result

    @classmethod
    def mask_secret(cls, secret: str | None, visible: int = 4) -> str:
        """Mask a secret, keeping only a short prefix for identification.

        Examples:
            >>> LogSanitizer.mask_secret("abcdef123456")
            'abcd****'
            >>> LogSanitizer.mask_secret(None)
            'Missing'
        """
        if not secret:
            return "Missing"
        if len(secret) <= visible * 2:
            return cls.MASKED
        return secret[:visible] + cls.MASKED

    @classmethod
    def sanitize_dict(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Sanitize dictionary values recursively.

        Args:
            data: Dictionary to sanitize (e.g. an outgoing form body)

        Returns:
            New dictionary with sensitive values redacted

        Examples:
            >>> LogSanitizer.sanitize_dict({"api_key": "abc", "page": 1})
            {'api_key': '[REDACTED]', 'page': 1}
        """
        result: dict[str, Any] = {}
        for key, value in data.items():
            key_lower = str(key).lower()
            if any(word in key_lower for word in cls.SENSITIVE_KEYS):
                result[key] = cls.REDACTED
            elif isinstance(value, dict):
                result[key] = cls.sanitize_dict(value)
            elif isinstance(value, str):
                result[key] = cls.sanitize(value)
            elif isinstance(value, list | tuple):
                result[key] = type(value)(
                    cls.sanitize_dict(item)
                    if isinstance(item, dict)
                    else cls.sanitize(item)
                    if isinstance(item, str)
                    else item
                    for item in value
                )
            else:
                result[key] = value
        return result

    @classmethod
    def sanitize_exception(cls, exc: BaseException) -> str:
        """Sanitize exception message, truncating very long ones.

        Examples:
            >>> LogSanitizer.sanitize_exception(ValueError("bad api_key=xyz"))
            'bad api_key=[REDACTED]'
        """
        message = cls.sanitize(str(exc))
        if len(message) > 500:
            message = message[:500] + "..."
        return message


__all__ = ["LogSanitizer"]
