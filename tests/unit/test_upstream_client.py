"""Unit tests for the upstream lookup API client.

Tests cover:
- Form encoding (api_key first, PHP array notation)
- API key resolution from the environment
- Retries on transient failures, immediate failure otherwise
- Response validation and secret masking
"""

from unittest.mock import Mock

import pytest
import requests

from dimcache.upstream_client import (
    UpstreamClient,
    UpstreamFetchError,
    api_key_from_env,
    encode_form,
)

API_KEY = "test-api-key-123456"


def make_response(status_code=200, payload=None, text="", json_error=None):
    response = Mock(spec=requests.Response)
    response.status_code = status_code
    response.ok = status_code < 400
    response.text = text
    if json_error is not None:
        response.json.side_effect = json_error
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def session():
    return Mock(spec=requests.Session)


@pytest.fixture
def client(session):
    return UpstreamClient(
        base_url="https://api.example.test/api/",
        api_key=API_KEY,
        max_retries=3,
        retry_delay=0,
        session=session,
    )


class TestEncodeForm:
    """Test form body encoding."""

    def test_api_key_first(self):
        assert encode_form({}, "k") == [("api_key", "k")]

    def test_scalars_and_lists(self):
        fields = encode_form({"ids": [3, 4], "page": 1}, "k")
        assert fields == [("api_key", "k"), ("ids[0]", "3"), ("ids[1]", "4"), ("page", "1")]

    def test_tuple_values_use_array_notation(self):
        assert encode_form({"codes": ("US",)}, "k")[1] == ("codes[0]", "US")

    def test_empty_list_adds_no_fields(self):
        assert encode_form({"ids": []}, "k") == [("api_key", "k")]


class TestApiKeyFromEnv:
    def test_missing(self):
        assert api_key_from_env() is None

    def test_precedence(self, monkeypatch):
        monkeypatch.setenv("CLOAKING_API_KEY", "third")
        monkeypatch.setenv("API_KEY", "second")
        assert api_key_from_env() == "second"

        monkeypatch.setenv("DIMCACHE_API_KEY", "first")
        assert api_key_from_env() == "first"

    def test_client_uses_env_key(self, monkeypatch, session):
        monkeypatch.setenv("DIMCACHE_API_KEY", "from-env")
        assert UpstreamClient(session=session).api_key == "from-env"


class TestUpstreamClient:
    """Test fetch behaviour against a mocked requests session."""

    def test_defaults(self, session):
        client = UpstreamClient(api_key=API_KEY, session=session)
        assert client.base_url == "https://cloaking.house/api"
        assert client.timeout == 30
        assert client.max_retries == 5
        assert client.retry_delay == 2.0

    def test_fetch_posts_form_and_returns_payload(self, client, session):
        payload = {"status": "success", "data": [{"code": "US"}]}
        session.post.return_value = make_response(payload=payload)

        result = client.fetch("/countries", {"page": 2})

        assert result == payload
        session.post.assert_called_once_with(
            "https://api.example.test/api/countries",
            data=[("api_key", API_KEY), ("page", "2")],
            timeout=30,
        )

    def test_client_is_a_fetch_function(self, client, session):
        session.post.return_value = make_response(payload={"data": [1]})
        assert client("/devices", {}) == {"data": [1]}

    def test_missing_api_key(self, session):
        client = UpstreamClient(session=session)

        with pytest.raises(UpstreamFetchError, match="API key not configured"):
            client.fetch("/countries")

        session.post.assert_not_called()

    def test_retries_server_errors(self, client, session):
        session.post.side_effect = [
            make_response(status_code=503, text="busy"),
            make_response(status_code=500, text="oops"),
            make_response(payload={"data": ["ok"]}),
        ]

        assert client.fetch("/devices") == {"data": ["ok"]}
        assert session.post.call_count == 3

    def test_retries_network_errors(self, client, session):
        session.post.side_effect = [
            requests.ConnectionError("reset"),
            requests.Timeout("slow"),
            make_response(payload={"data": ["ok"]}),
        ]

        assert client.fetch("/devices")["data"] == ["ok"]

    def test_gives_up_after_max_retries(self, client, session):
        session.post.return_value = make_response(status_code=502, text="bad gateway")

        with pytest.raises(UpstreamFetchError, match="502"):
            client.fetch("/devices")

        assert session.post.call_count == 3

    def test_network_failure_after_retries(self, client, session):
        session.post.side_effect = requests.ConnectionError("unreachable")

        with pytest.raises(UpstreamFetchError, match="unreachable"):
            client.fetch("/devices")

    def test_client_errors_not_retried(self, client, session):
        session.post.return_value = make_response(status_code=401, text="invalid key")

        with pytest.raises(UpstreamFetchError, match="401"):
            client.fetch("/devices")

        assert session.post.call_count == 1

    def test_non_json_response(self, client, session):
        session.post.return_value = make_response(json_error=ValueError("Expecting value"))

        with pytest.raises(UpstreamFetchError, match="not JSON"):
            client.fetch("/devices")

    def test_non_object_response(self, client, session):
        session.post.return_value = make_response(payload=["not", "an", "object"])

        with pytest.raises(UpstreamFetchError, match="not a JSON object"):
            client.fetch("/devices")

    def test_api_key_never_logged(self, client, session, caplog):
        caplog.set_level("DEBUG", logger="dimcache")
        session.post.side_effect = requests.ConnectionError(f"failed: api_key={API_KEY}")

        with pytest.raises(UpstreamFetchError) as exc_info:
            client.fetch("/devices", {"api_key": "override"})

        assert API_KEY not in caplog.text
        assert API_KEY not in str(exc_info.value)

    def test_close_closes_session(self, client, session):
        client.close()
        session.close.assert_called_once()
