"""Unit tests for configuration loading."""

import json

import pytest

from lrs_analytics.config import AnalyticsConfig, load_config, parse_lrs_instances
from lrs_analytics.errors import ConfigurationError


@pytest.mark.unit
class TestLoadConfig:
    """Test cases for load_config."""

    def test_defaults(self):
        """Test defaults with an empty environment."""
        config = load_config({})
        assert config.lrs_max_retries == 3
        assert config.cache_ttl_results_s == 300
        assert config.stale_data_ttl_s == 86400
        assert config.graceful_degradation_enabled is True
        assert config.lrs_instances == ()

    def test_overrides(self):
        """Test env overrides and their casts."""
        config = load_config({
            "LRS_MAX_RETRIES": "5",
            "CIRCUIT_BREAKER_TIMEOUT": "15000",
            "GRACEFUL_DEGRADATION_ENABLED": "false",
            "LOG_LEVEL": "debug",
        })
        assert config.lrs_max_retries == 5
        assert config.cb_recovery_timeout_s == 15.0
        assert config.graceful_degradation_enabled is False
        assert config.log_level == "DEBUG"

    def test_invalid_value_is_ignored(self):
        """Test that an uncastable value keeps the default."""
        assert load_config({"LRS_MAX_RETRIES": "many"}).lrs_max_retries == 3

    def test_ttl_for_category(self):
        """Test per-category TTLs with the default fallback."""
        config = AnalyticsConfig()
        assert config.ttl_for_category("results") == 300
        assert config.ttl_for_category("health") == 60
        assert config.ttl_for_category(None) == 3600


@pytest.mark.unit
class TestParseLRSInstances:
    """Test cases for the three instance sources."""

    def test_json_instances(self):
        """Test the LRS_INSTANCES JSON array."""
        raw = json.dumps([
            {
                "id": "hs-ke",
                "name": "HS Kempten",
                "endpoint": "https://lrs.hs-kempten.example/xapi/",
                "timeoutMs": 2000,
                "auth": {"type": "basic", "key": "k", "secret": "s"},
            },
            {"id": "tenant-b", "endpoint": "https://b.example/xapi", "auth": {"type": "bearer", "token": "t"}},
        ])
        instances = parse_lrs_instances({"LRS_INSTANCES": raw})
        assert [i.id for i in instances] == ["hs-ke", "tenant-b"]
        assert instances[0].endpoint == "https://lrs.hs-kempten.example/xapi"
        assert instances[0].auth.username == "k"
        assert instances[0].timeout_ms == 2000
        assert instances[1].name == "tenant-b"

    def test_duplicate_ids_rejected(self):
        """Test that two instances cannot share an id."""
        item = {"id": "a", "endpoint": "https://a.example", "auth": {"type": "bearer", "token": "t"}}
        with pytest.raises(ConfigurationError, match="Duplicate"):
            parse_lrs_instances({"LRS_INSTANCES": json.dumps([item, item])})

    def test_invalid_id_rejected(self):
        """Test that ids must be lower-kebab-case."""
        item = {"id": "Tenant_A", "endpoint": "https://a.example", "auth": {"type": "bearer", "token": "t"}}
        with pytest.raises(ConfigurationError, match="kebab"):
            parse_lrs_instances({"LRS_INSTANCES": json.dumps([item])})

    def test_prefixed_instances(self):
        """Test LRS_<ID>_* variable blocks."""
        instances = parse_lrs_instances({
            "LRS_HS_KE_ENDPOINT": "https://lrs.example/xapi",
            "LRS_HS_KE_AUTH_TYPE": "basic",
            "LRS_HS_KE_USERNAME": "u",
            "LRS_HS_KE_PASSWORD": "p",
        })
        assert len(instances) == 1
        assert instances[0].id == "hs-ke"
        assert instances[0].auth.password == "p"

    def test_prefixed_missing_auth_type(self):
        """Test that a prefixed block needs an auth type."""
        with pytest.raises(ConfigurationError, match="LRS_X_AUTH_TYPE"):
            parse_lrs_instances({"LRS_X_ENDPOINT": "https://lrs.example"})

    def test_legacy_single_instance(self):
        """Test the legacy LRS_DOMAIN variables."""
        instances = parse_lrs_instances({
            "LRS_DOMAIN": "https://lrs.example/xapi",
            "LRS_USER": "u",
            "LRS_SECRET": "s",
        })
        assert instances[0].id == "default"
        assert instances[0].auth.type == "basic"

    def test_secrets_redacted(self):
        """Test that redacted() hides credentials."""
        instances = parse_lrs_instances({"LRS_DOMAIN": "https://lrs.example", "LRS_USER": "u", "LRS_SECRET": "s"})
        assert instances[0].redacted()["auth"]["password"] == "***"
