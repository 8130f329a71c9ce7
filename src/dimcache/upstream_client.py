"""Upstream Client Module - Fetch lookup tables from the upstream API.

Provides the fetch function the cache consumes: fetch(endpoint, params)
returns the decoded JSON response, whose "data" field holds the lookup table.

Security Requirements:
- API key from the environment, never from the config file
- API key masked in every log line
- Timeout on every API call

Public API (the "studs"):
    UpstreamClient: Callable fetch function backed by requests
    UpstreamFetchError: Upstream request failed or returned garbage
    encode_form: Encode params as PHP-style form fields
"""

import logging
import os
from collections.abc import Mapping
from typing import Any

import requests

from dimcache.log_sanitizer import LogSanitizer
from dimcache.retry_handler import (
    RetryableHTTPError,
    retry_with_exponential_backoff,
    should_retry_http_error,
)

logger = logging.getLogger(__name__)

API_KEY_ENV_VARS = ("DIMCACHE_API_KEY", "API_KEY", "CLOAKING_API_KEY")


class UpstreamFetchError(Exception):
    """Raised when an upstream request fails or returns an unusable response."""

    pass


def api_key_from_env() -> str | None:
    """Read the upstream API key from the first set environment variable."""
    for name in API_KEY_ENV_VARS:
        value = os.environ.get(name)
        if value:
            return value
    return None


def encode_form(params: Mapping[str, Any], api_key: str) -> list[tuple[str, str]]:
    """Encode request params as form fields.

    The API key comes first. List values use PHP array notation
    (name[0], name[1], ...) because the upstream parses bodies that way.

    Args:
        params: Request parameters
        api_key: Upstream API key

    Returns:
        Ordered list of (field, value) pairs

    Example:
        >>> encode_form({"ids": [3, 4], "page": 1}, "k")
        [('api_key', 'k'), ('ids[0]', '3'), ('ids[1]', '4'), ('page', '1')]
    """
    fields: list[tuple[str, str]] = [("api_key", api_key)]
    for name, value in params.items():
        if isinstance(value, list | tuple):
            fields.extend((f"{name}[{index}]", str(item)) for index, item in enumerate(value))
        else:
            fields.append((name, str(value)))
    return fields


class UpstreamClient:
    """Form-POST client for the lookup table API.

    Instances are callable, so a client can be passed wherever the cache
    expects a fetch function.

    Example:
        >>> client = UpstreamClient("https://cloaking.house/api", api_key="...")
        >>> client("/countries", {})["data"][:2]
        [{'code': 'US', ...}, {'code': 'CN', ...}]
    """

    DEFAULT_BASE_URL = "https://cloaking.house/api"
    DEFAULT_TIMEOUT = 30
    DEFAULT_MAX_RETRIES = 5
    DEFAULT_RETRY_DELAY = 2.0

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        session: requests.Session | None = None,
    ):
        """Initialize upstream client.

        Args:
            base_url: API base URL (default: https://cloaking.house/api)
            api_key: API key (default: from DIMCACHE_API_KEY, API_KEY or CLOAKING_API_KEY)
            timeout: Request timeout in seconds (default: 30)
            max_retries: Attempts per request (default: 5)
            retry_delay: Initial backoff delay in seconds (default: 2.0)
            session: requests session to reuse (default: new session)
        """
        self.base_url = (base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else api_key_from_env()
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self.max_retries = max_retries or self.DEFAULT_MAX_RETRIES
        self.retry_delay = self.DEFAULT_RETRY_DELAY if retry_delay is None else retry_delay
        self.session = session or requests.Session()

    def __call__(self, endpoint: str, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        return self.fetch(endpoint, params)

    def fetch(self, endpoint: str, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """POST to an upstream endpoint and decode the JSON response.

        Args:
            endpoint: Endpoint path, e.g. "/countries"
            params: Extra form parameters

        Returns:
            Decoded JSON object (lookup data under "data")

        Raises:
            UpstreamFetchError: If the key is missing, the request fails after
                retries, or the response is not a JSON object
        """
        if not self.api_key:
            raise UpstreamFetchError(
                "API key not configured. Set one of: " + ", ".join(API_KEY_ENV_VARS)
            )

        url = f"{self.base_url}{endpoint}"
        form = encode_form(params or {}, self.api_key)

        logger.debug(
            f"Upstream request: {url} (api_key: {LogSanitizer.mask_secret(self.api_key)}, "
            f"params: {LogSanitizer.sanitize_dict(dict(params or {}))})"
        )

        post = retry_with_exponential_backoff(
            max_attempts=self.max_retries,
            initial_delay=self.retry_delay,
            jitter=False,
        )(self._post)

        try:
            response = post(url, form)
        except RetryableHTTPError as e:
            raise UpstreamFetchError(
                f"Upstream request to {endpoint} failed: {LogSanitizer.sanitize_exception(e)}"
            ) from e
        except requests.RequestException as e:
            raise UpstreamFetchError(
                f"Upstream request to {endpoint} failed: {LogSanitizer.sanitize_exception(e)}"
            ) from e

        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamFetchError(f"Upstream response from {endpoint} is not JSON: {e}") from e

        if not isinstance(payload, dict):
            raise UpstreamFetchError(
                f"Upstream response from {endpoint} is not a JSON object: {type(payload).__name__}"
            )

        logger.debug(f"Upstream response from {endpoint}: status={payload.get('status')}")
        return payload

    def _post(self, url: str, form: list[tuple[str, str]]) -> requests.Response:
        response = self.session.post(url, data=form, timeout=self.timeout)

        if should_retry_http_error(response.status_code):
            raise RetryableHTTPError(response.status_code, LogSanitizer.sanitize(response.text))

        if not response.ok:
            raise UpstreamFetchError(
                f"Upstream request failed: {response.status_code} "
                f"{LogSanitizer.sanitize(response.text[:200])}"
            )

        return response

    def close(self) -> None:
        self.session.close()


__all__ = [
    "API_KEY_ENV_VARS",
    "UpstreamClient",
    "UpstreamFetchError",
    "api_key_from_env",
    "encode_form",
]
