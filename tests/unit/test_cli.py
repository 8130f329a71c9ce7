"""Tests for the dimcache command-line interface.

Upstream access is replaced with a CountingFetch so no network is used.
"""

import json
import logging
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from dimcache.cache.expiry_policy import LookupDomain
from dimcache.cache.lookup_cache import LookupCache
from dimcache.cli import _format_duration, main
from dimcache.upstream_client import UpstreamFetchError


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def cli_cache_dir(tmp_path):
    return tmp_path / "cli-cache"


@pytest.fixture
def config_path(tmp_path, cli_cache_dir):
    path = tmp_path / "config.toml"
    path.write_text(f'cache_dir = "{cli_cache_dir}"\nmax_retries = 1\n')
    path.chmod(0o600)
    return str(path)


@pytest.fixture
def upstream(fetch):
    """Patch UpstreamClient so commands use the counting fetch."""
    with patch("dimcache.cli.UpstreamClient") as client_class:
        client_class.return_value.side_effect = fetch
        yield client_class


@pytest.fixture(autouse=True)
def reset_dimcache_logger():
    yield
    logging.getLogger("dimcache").setLevel(logging.NOTSET)


class TestFormatDuration:
    @pytest.mark.parametrize(
        "ms, expected",
        [
            (7 * 86_400_000, "7d 0h"),
            (90 * 60_000, "1h 30m"),
            (45 * 60_000, "45m"),
            (-2 * 3_600_000, "-2h 0m"),
            (0, "0m"),
        ],
    )
    def test_format(self, ms, expected):
        assert _format_duration(ms) == expected


class TestMainGroup:
    def test_help(self, runner):
        result = runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        for command in ["stats", "get", "clear", "warmup", "refresh", "serve"]:
            assert command in result.output

    def test_missing_config_file(self, runner, tmp_path):
        result = runner.invoke(main, ["--config", str(tmp_path / "missing.toml"), "stats"])

        assert result.exit_code == 1
        assert "Config file not found" in result.output

    def test_invalid_config_value(self, runner, tmp_path):
        path = tmp_path / "bad.toml"
        path.write_text("refresh_interval = -1\n")
        path.chmod(0o600)

        result = runner.invoke(main, ["--config", str(path), "stats"])

        assert result.exit_code == 1
        assert "refresh_interval" in result.output


class TestStatsCommand:
    def test_empty_cache(self, runner, config_path, cli_cache_dir):
        result = runner.invoke(main, ["--config", config_path, "stats"])

        assert result.exit_code == 0
        assert "countries" in result.output
        assert "Cache directory:" in result.output
        assert "Cache is empty" in result.output

    def test_lists_cached_keys(self, runner, config_path, cli_cache_dir):
        LookupCache(cache_dir=cli_cache_dir).set("flows", [1])

        result = runner.invoke(main, ["--config", config_path, "stats"])

        assert result.exit_code == 0
        assert "flows" in result.output
        assert "yes" in result.output
        assert "Cache is empty" not in result.output


class TestGetCommand:
    def test_hit_prints_json(self, runner, config_path, cli_cache_dir):
        LookupCache(cache_dir=cli_cache_dir).set("countries", [{"code": "US"}])

        result = runner.invoke(main, ["--config", config_path, "get", "countries"])

        assert result.exit_code == 0
        assert json.loads(result.output) == [{"code": "US"}]

    def test_miss_exits_1(self, runner, config_path):
        result = runner.invoke(main, ["--config", config_path, "get", "countries"])

        assert result.exit_code == 1
        assert "Cache miss: countries" in result.output


class TestClearCommand:
    def test_clear_key(self, runner, config_path, cli_cache_dir):
        cache = LookupCache(cache_dir=cli_cache_dir)
        cache.set("countries", ["US"])
        cache.set("devices", ["mobile"])

        result = runner.invoke(main, ["--config", config_path, "clear", "countries"])

        assert result.exit_code == 0
        assert "Cache cleared: countries" in result.output
        assert LookupCache(cache_dir=cli_cache_dir).stats().durable_keys == {"devices"}

    def test_clear_all(self, runner, config_path, cli_cache_dir):
        LookupCache(cache_dir=cli_cache_dir).set("countries", ["US"])

        result = runner.invoke(main, ["--config", config_path, "clear", "--all"])

        assert result.exit_code == 0
        assert LookupCache(cache_dir=cli_cache_dir).stats().is_empty

    @pytest.mark.parametrize("args", [[], ["countries", "--all"]])
    def test_requires_exactly_one_target(self, runner, config_path, args):
        result = runner.invoke(main, ["--config", config_path, "clear", *args])

        assert result.exit_code == 1
        assert "exactly one" in result.output


class TestWarmupCommand:
    def test_warmup_fills_cache(self, runner, config_path, cli_cache_dir, upstream, fetch):
        result = runner.invoke(main, ["--config", config_path, "warmup"])

        assert result.exit_code == 0
        assert f"{len(LookupDomain)} refreshed" in result.output
        assert len(fetch.calls) == len(LookupDomain)
        assert LookupCache(cache_dir=cli_cache_dir).get("devices") is not None
        upstream.return_value.close.assert_called_once()

    def test_client_built_from_config(self, runner, config_path, upstream):
        runner.invoke(main, ["--config", config_path, "warmup"])

        kwargs = upstream.call_args.kwargs
        assert kwargs["base_url"] == "https://cloaking.house/api"
        assert kwargs["max_retries"] == 1

    def test_failures_exit_1(self, runner, config_path, upstream):
        upstream.return_value.side_effect = UpstreamFetchError("API key not configured")

        result = runner.invoke(main, ["--config", config_path, "warmup"])

        assert result.exit_code == 1
        assert "API key not configured" in result.output


class TestRefreshCommand:
    def test_refresh_only_fetches_stale_keys(
        self, runner, config_path, cli_cache_dir, upstream, fetch
    ):
        LookupCache(cache_dir=cli_cache_dir).set("countries", ["US"])

        result = runner.invoke(main, ["--config", config_path, "refresh"])

        assert result.exit_code == 0
        assert "/countries" not in fetch.calls
        assert len(fetch.calls) == len(LookupDomain) - 1


class TestServeCommand:
    def test_serve_warms_and_stops_on_interrupt(self, runner, config_path, upstream, fetch):
        with patch("dimcache.cli._wait_for_interrupt", side_effect=KeyboardInterrupt):
            result = runner.invoke(main, ["--config", config_path, "serve"])

        assert result.exit_code == 0
        assert "Auto refresh running every 3600s" in result.output
        assert "Stopping auto refresh" in result.output
        assert len(fetch.calls) == len(LookupDomain)
        upstream.return_value.close.assert_called_once()


class TestConfigCommands:
    def test_init_writes_default_config(self, runner, isolate_user_state):
        result = runner.invoke(main, ["config", "init"])

        path = isolate_user_state / ".dimcache" / "config.toml"
        assert result.exit_code == 0
        assert f"Config written: {path}" in result.output
        assert (path.stat().st_mode & 0o777) == 0o600
        assert "refresh_interval = 3600" in path.read_text()

    def test_init_custom_path(self, runner, tmp_path):
        target = tmp_path / "etc" / "dimcache.toml"

        result = runner.invoke(main, ["config", "init", "--path", str(target)])

        assert result.exit_code == 0
        assert "max_retries = 5" in target.read_text()

    def test_init_refuses_to_overwrite(self, runner, config_path):
        result = runner.invoke(main, ["config", "init", "--path", config_path])

        assert result.exit_code == 1
        assert "already exists" in result.output
        assert "max_retries = 1" in open(config_path).read()

    def test_init_force_overwrites(self, runner, config_path):
        result = runner.invoke(main, ["config", "init", "--path", config_path, "--force"])

        assert result.exit_code == 0
        assert "max_retries = 5" in open(config_path).read()

    def test_show_prints_effective_config(self, runner, config_path, cli_cache_dir):
        result = runner.invoke(main, ["--config", config_path, "config", "show"])

        assert result.exit_code == 0
        assert f'cache_dir = "{cli_cache_dir}"' in result.output
        assert "max_retries = 1" in result.output
