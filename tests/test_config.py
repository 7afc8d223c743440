"""Tests for global configuration module."""

import os
import unittest
from unittest.mock import patch

import pytest

from traccarkit._config import (
    TRACCAR,
    AuthConfig,
    BatchConfig,
    CacheConfig,
    ConfigEntry,
    ConfigEnvVarError,
    ConfigValidationError,
    EnvVars,
    HttpConfig,
    PushConfig,
    RateLimitConfig,
    RetryConfig,
    TraccarConfig,
    parse_int_tuple,
    parse_str_tuple,
    parse_ttl_map,
)


class TestDefaults(unittest.TestCase):
    """Tests for default configuration values."""

    def setUp(self):
        TRACCAR.reset()

    def tearDown(self):
        TRACCAR.reset()

    def test_http_defaults(self):
        """Should point at a local server with a 30s timeout."""
        self.assertEqual(TRACCAR.config.http.base_url, "http://localhost:8082")
        self.assertEqual(TRACCAR.config.http.request_timeout, 30.0)

    def test_rate_limit_defaults(self):
        """Should allow 100 requests per minute with a bounded queue."""
        config = TRACCAR.config.rate_limit
        self.assertTrue(config.enabled)
        self.assertEqual(config.max_requests, 100)
        self.assertEqual(config.time_window, 60.0)
        self.assertTrue(config.queue_requests)
        self.assertEqual(config.max_queue_size, 50)

    def test_retry_defaults(self):
        """Should retry 3 times on the transient status codes."""
        config = TRACCAR.config.retry
        self.assertEqual(config.max_retries, 3)
        self.assertEqual(config.retry_delay, 1.0)
        self.assertEqual(config.retry_status_codes, (408, 429, 502, 503, 504))

    def test_cache_defaults(self):
        """Should cache in memory for 15 minutes and never cache the session endpoint."""
        config = TRACCAR.config.cache
        self.assertEqual(config.default_ttl, 900.0)
        self.assertIsNone(config.directory)
        self.assertIn("/api/session", config.non_cacheable_endpoints)

    def test_push_defaults(self):
        """Should reconnect 5 times, 5 seconds apart."""
        config = TRACCAR.config.push
        self.assertEqual(config.max_reconnect_attempts, 5)
        self.assertEqual(config.reconnect_delay, 5.0)
        self.assertTrue(config.auto_reconnect)

    def test_has_credentials_false_by_default(self):
        """Should report no credentials when nothing is configured."""
        self.assertFalse(TRACCAR.config.auth.has_credentials())


class TestTraccarConfigure(unittest.TestCase):
    """Tests for TRACCAR.configure()."""

    def setUp(self):
        TRACCAR.reset()

    def tearDown(self):
        TRACCAR.reset()

    def test_overrides_only_given_fields(self):
        """Should change the given fields and keep the other defaults."""
        TRACCAR.configure(retry={"max_retries": 5})

        self.assertEqual(TRACCAR.config.retry.max_retries, 5)
        self.assertEqual(TRACCAR.config.retry.retry_delay, 1.0)

    def test_returns_the_new_config(self):
        """Should return the configured TraccarConfig."""
        result = TRACCAR.configure(push={"auto_reconnect": False})

        self.assertIsInstance(result, TraccarConfig)
        self.assertIs(result, TRACCAR.config)

    def test_unknown_field_raises_value_error(self):
        """Should reject typos in field names."""
        with self.assertRaises(ValueError) as ctx:
            TRACCAR.configure(cache={"default_tll": 10})

        self.assertIn("default_tll", str(ctx.exception))

    def test_cache_directory_accepts_none(self):
        """Should allow resetting the cache directory back to in-memory."""
        TRACCAR.configure(cache={"directory": "/tmp/traccar"})
        self.assertEqual(TRACCAR.config.cache.directory, "/tmp/traccar")

        TRACCAR.configure(cache={"directory": None})
        self.assertIsNone(TRACCAR.config.cache.directory)

    def test_presets_can_be_used_with_configure(self):
        """Should accept a preset converted to a dict."""
        preset = RateLimitConfig.conservative_preset()

        TRACCAR.configure(rate_limit={"max_requests": preset.max_requests, "retry_delay": preset.retry_delay})

        self.assertEqual(TRACCAR.config.rate_limit.max_requests, 30)
        self.assertEqual(TRACCAR.config.rate_limit.retry_delay, 2.0)


class TestValidation(unittest.TestCase):
    """Tests for config validation."""

    def setUp(self):
        TRACCAR.reset()

    def tearDown(self):
        TRACCAR.reset()

    def test_zero_time_window_is_rejected(self):
        """Should reject a zero rate limit window."""
        with self.assertRaises(ConfigValidationError) as ctx:
            TRACCAR.configure(rate_limit={"time_window": 0})

        self.assertEqual(ctx.exception.section, "rate_limit")
        self.assertEqual(ctx.exception.field, "time_window")
        self.assertIn("[rate_limit]", str(ctx.exception))

    def test_zero_max_requests_is_allowed(self):
        """Should accept max_requests=0 (reject every request)."""
        TRACCAR.configure(rate_limit={"max_requests": 0})

        self.assertEqual(TRACCAR.config.rate_limit.max_requests, 0)

    def test_base_url_must_be_http(self):
        """Should reject a base URL without an http(s) scheme."""
        with self.assertRaises(ConfigValidationError):
            HttpConfig(base_url="ftp://server").validate()

    def test_empty_credentials_are_rejected(self):
        """Should reject empty-string credentials."""
        with self.assertRaises(ConfigValidationError):
            AuthConfig(token="").validate()

    def test_invalid_status_code_is_rejected(self):
        """Should reject retry status codes outside the HTTP range."""
        with self.assertRaises(ConfigValidationError) as ctx:
            RetryConfig(retry_status_codes=(503, 999)).validate()

        self.assertIn("999", str(ctx.exception))

    def test_non_positive_endpoint_ttl_is_rejected(self):
        """Should reject a per-endpoint TTL of 0."""
        with self.assertRaises(ConfigValidationError):
            CacheConfig(endpoint_ttls={"/api/devices": 0}).validate()

    def test_push_heartbeat_must_be_positive(self):
        """Should reject a zero heartbeat interval."""
        with self.assertRaises(ConfigValidationError):
            PushConfig(heartbeat_interval=0).validate()

    def test_batch_workers_must_be_positive(self):
        """Should reject an empty worker pool."""
        with self.assertRaises(ConfigValidationError):
            BatchConfig(max_workers=0).validate()

    def test_presets_are_valid_configs(self):
        """Every preset should pass validation."""
        for preset in (
            RateLimitConfig.traccar_default_preset(),
            RateLimitConfig.conservative_preset(),
            RateLimitConfig.aggressive_preset(),
            BatchConfig.traccar_default_preset(),
        ):
            with self.subTest(preset=preset):
                preset.validate()


class TestEnvVars(unittest.TestCase):
    """Tests for environment variable override."""

    def setUp(self):
        TRACCAR.reset()

    def tearDown(self):
        TRACCAR.reset()

    @patch.dict(os.environ, {"TRACCAR_BASE_URL": "https://demo.traccar.org"})
    def test_base_url_env_var(self):
        """Should read the server URL from TRACCAR_BASE_URL."""
        TRACCAR.reset()
        self.assertEqual(TRACCAR.config.http.base_url, "https://demo.traccar.org")

    @patch.dict(os.environ, {"TRACCAR_RATE_LIMIT_MAX_REQUESTS": "42", "TRACCAR_RATE_LIMIT_TIME_WINDOW": "12.5"})
    def test_numeric_conversion(self):
        """Should convert env var strings to int and float."""
        TRACCAR.reset()
        self.assertEqual(TRACCAR.config.rate_limit.max_requests, 42)
        self.assertEqual(TRACCAR.config.rate_limit.time_window, 12.5)

    @patch.dict(os.environ, {"TRACCAR_PUSH_AUTO_RECONNECT": "false", "TRACCAR_CACHE_ENABLED": "yes"})
    def test_bool_conversion(self):
        """Should treat true/1/yes as True and anything else as False."""
        TRACCAR.reset()
        self.assertFalse(TRACCAR.config.push.auto_reconnect)
        self.assertTrue(TRACCAR.config.cache.enabled)

    @patch.dict(os.environ, {"TRACCAR_RETRY_RETRY_STATUS_CODES": "500, 503"})
    def test_custom_converter(self):
        """Should use the converter declared in the field metadata."""
        TRACCAR.reset()
        self.assertEqual(TRACCAR.config.retry.retry_status_codes, (500, 503))

    @patch.dict(os.environ, {"TRACCAR_CACHE_ENDPOINT_TTLS": "/api/devices=300,/api/positions=30"})
    def test_endpoint_ttls_env_var(self):
        """Should parse per-endpoint TTLs from path=seconds pairs."""
        TRACCAR.reset()
        self.assertEqual(TRACCAR.config.cache.endpoint_ttls, {"/api/devices": 300.0, "/api/positions": 30.0})

    @patch.dict(os.environ, {"TRACCAR_RATE_LIMIT_MAX_REQUESTS": "lots"})
    def test_invalid_value_raises_config_env_var_error(self):
        """Should raise ConfigEnvVarError naming the variable."""
        with self.assertRaises(ConfigEnvVarError) as ctx:
            TRACCAR.reset()

        self.assertEqual(ctx.exception.env_var, "TRACCAR_RATE_LIMIT_MAX_REQUESTS")
        self.assertIn("lots", str(ctx.exception))

    @patch.dict(os.environ, {"TRACCAR_RETRY_MAX_RETRIES": ""})
    def test_empty_env_var_is_ignored(self):
        """Should treat an empty variable as unset."""
        TRACCAR.reset()
        self.assertEqual(TRACCAR.config.retry.max_retries, 3)

    @patch.dict(os.environ, {"TRACCAR_RETRY_MAX_RETRIES": "7", "TRACCAR_RETRY_RETRY_DELAY": "2.5"})
    def test_env_vars_used_as_fallback(self):
        """Env vars should be used for fields NOT provided to configure()."""
        TRACCAR.configure(retry={"max_retries": 1}, allow_env_override=True)
        self.assertEqual(TRACCAR.config.retry.max_retries, 1)
        self.assertEqual(TRACCAR.config.retry.retry_delay, 2.5)

    @patch.dict(os.environ, {"TRACCAR_RETRY_RETRY_DELAY": "2.5"})
    def test_configure_without_env_override(self):
        """Should ignore env vars when allow_env_override=False."""
        TRACCAR.configure(retry={"max_retries": 1}, allow_env_override=False)
        self.assertEqual(TRACCAR.config.retry.retry_delay, 1.0)

    @patch.dict(os.environ, {"TRACCAR_AUTH_USERNAME": "admin@example.com", "TRACCAR_AUTH_PASSWORD": "secret"})
    def test_auth_from_env_vars(self):
        """Should read credentials from env vars."""
        TRACCAR.reset()
        self.assertTrue(TRACCAR.config.auth.has_credentials())

    def test_env_vars_get_returns_none_when_unset(self):
        """Should return None for unset variables."""
        self.assertIsNone(EnvVars.get("TRACCAR_SURELY_NOT_SET_ANYWHERE"))


class TestParsers:
    """Tests for env var value parsers."""

    def test_parse_int_tuple(self):
        assert parse_int_tuple("408,429, 503") == (408, 429, 503)
        assert parse_int_tuple("") == ()

    def test_parse_str_tuple(self):
        assert parse_str_tuple(" /api/devices , ,/api/events") == ("/api/devices", "/api/events")

    def test_parse_ttl_map_pairs(self):
        assert parse_ttl_map("/api/devices=300, /api/positions=30") == {
            "/api/devices": 300.0,
            "/api/positions": 30.0,
        }

    def test_parse_ttl_map_json(self):
        assert parse_ttl_map('{"/api/devices": 60}') == {"/api/devices": 60.0}

    def test_parse_ttl_map_rejects_missing_separator(self):
        with pytest.raises(ValueError, match="missing '='"):
            parse_ttl_map("/api/devices")


class TestConfigEntry:
    """Tests for ConfigEntry formatting."""

    def test_masks_long_secret(self):
        assert ConfigEntry("token", "abcd-secret-efgh", "user").formatted_value == "abcd********efgh"

    def test_masks_short_secret(self):
        assert ConfigEntry("password", "short", "user").formatted_value == "********t"
        assert ConfigEntry("password", "ab", "user").formatted_value == "********"

    def test_does_not_mask_regular_fields(self):
        assert ConfigEntry("username", "admin@example.com", "user").formatted_value == "admin@example.com"

    def test_truncates_long_values(self):
        formatted = ConfigEntry("base_url", "https://" + "a" * 100, "user").formatted_value

        assert len(formatted) == 50
        assert formatted.endswith("...")

    def test_none_is_rendered(self):
        assert ConfigEntry("directory", None, "default").formatted_value == "None"


class TestTraccarExplain(unittest.TestCase):
    """Tests for TRACCAR.explain()."""

    def setUp(self):
        TRACCAR.reset()

    def tearDown(self):
        TRACCAR.reset()

    def _capture_explain(self) -> str:
        lines: list[str] = []
        TRACCAR.explain(output=lines.append)
        return "\n".join(lines)

    def test_lists_every_section(self):
        """Should print a header per section."""
        output = self._capture_explain()

        for section in ("[sdk]", "[http]", "[auth]", "[rate_limit]", "[batch]", "[cache]", "[retry]", "[push]"):
            self.assertIn(section, output)

    def test_shows_user_source(self):
        """Should mark values set via configure() with '✎ user'."""
        TRACCAR.configure(retry={"max_retries": 9})

        output = self._capture_explain()

        self.assertIn("✎ user", output)

    @patch.dict(os.environ, {"TRACCAR_BASE_URL": "https://demo.traccar.org"})
    def test_shows_env_source(self):
        """Should mark values read from the environment with the variable name."""
        TRACCAR.reset()

        output = self._capture_explain()

        self.assertIn("env:TRACCAR_BASE_URL", output)

    def test_masks_password(self):
        """Should never print secrets in clear text."""
        TRACCAR.configure(auth={"username": "admin@example.com", "password": "my-very-secret-password"})

        output = self._capture_explain()

        self.assertNotIn("my-very-secret-password", output)
        self.assertIn("admin@example.com", output)


class TestImmutability(unittest.TestCase):
    """Tests for frozen config dataclasses."""

    def test_sections_are_frozen(self):
        """Should not allow assignment on config sections."""
        config = RetryConfig()
        with self.assertRaises(AttributeError):
            config.max_retries = 10  # type: ignore

    def test_with_overrides_returns_new_instance(self):
        """Should leave the original untouched."""
        original = PushConfig()
        updated = original.with_overrides({"reconnect_delay": 1.0})

        self.assertEqual(original.reconnect_delay, 5.0)
        self.assertEqual(updated.reconnect_delay, 1.0)

    def test_with_overrides_ignores_none_values(self):
        """Should filter out None overrides by default."""
        config = RetryConfig().with_overrides({"max_retries": None})

        self.assertEqual(config.max_retries, 3)


if __name__ == "__main__":
    unittest.main()
